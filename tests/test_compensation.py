from decimal import Decimal

import pytest
from django.utils import timezone

from orders.compensation import CompensationEngine
from orders.constants import ActorType, OrderAction, OrderStatus, PaymentMethod, PaymentStatus
from orders.errors import InvalidStateTransition, PaymentGatewayError
from orders.inventory import InventoryLedger
from orders.models import Order, OrderLog, Payment, Product
from orders.repositories import OrderRepository, PaymentRepository
from orders.uow import unit_of_work

from .conftest import FakeResponse

pytestmark = pytest.mark.django_db


@pytest.fixture
def delivered_momo_order(orchestrator, reconciler, place_order, signed_ipn, admin, shipper):
    result = place_order(PaymentMethod.MOMO)
    reconciler.handle_ipn(signed_ipn(result.payment.order_ref, 410000, trans_id="4088878653"))
    orchestrator.confirm(result.order.pk, admin)
    orchestrator.pickup(result.order.pk, shipper)
    orchestrator.deliver(result.order.pk, shipper)
    return result


def test_return_paid_momo_order_refunds(orchestrator, delivered_momo_order, products, session, customer):
    order_id = delivered_momo_order.order.pk
    orchestrator.return_order(order_id, customer, reason="defeito")

    body = session.post.call_args.kwargs["json"]
    assert session.post.call_args.args[0].endswith("/refund")
    assert body["transId"] == 4088878653
    assert body["amount"] == 410000

    original = Payment.objects.get(pk=delivered_momo_order.payment.pk)
    assert original.status == PaymentStatus.REFUNDED
    assert original.amount == Decimal("410000")
    assert "refund" in original.gateway_response

    refund = Payment.objects.get(parent=original)
    assert refund.amount == Decimal("-410000")
    assert refund.status == PaymentStatus.COMPLETED
    assert refund.order_ref.startswith("REFUND_")
    assert refund.external_transaction_id == "990001"
    assert refund.is_refund

    order = Order.objects.get(pk=order_id)
    assert order.status == OrderStatus.RETURNED
    assert [p.stock for p in Product.objects.filter(pk__in=[p.pk for p in products]).order_by("pk")] == [10, 3]

    actions = list(OrderLog.objects.filter(order=order).values_list("action", flat=True))
    assert actions[-2:] == [OrderAction.RETURNED, OrderAction.REFUNDED]
    refunded = OrderLog.objects.get(order=order, action=OrderAction.REFUNDED)
    assert refunded.actor_type == ActorType.SYSTEM
    assert refunded.metadata["refund_amount"] == "410000.00"
    assert refunded.metadata["manual_settlement"] is False


def test_refund_failure_rolls_back_return(orchestrator, delivered_momo_order, products, session, customer):
    session.post.side_effect = None
    session.post.return_value = FakeResponse({"resultCode": 1080, "message": "Refund failed"})
    order_id = delivered_momo_order.order.pk

    with pytest.raises(PaymentGatewayError):
        orchestrator.return_order(order_id, customer)

    order = Order.objects.get(pk=order_id)
    assert order.status == OrderStatus.DELIVERED
    assert order.compensated_at is None
    assert Payment.objects.get(pk=delivered_momo_order.payment.pk).status == PaymentStatus.COMPLETED
    assert not Payment.objects.filter(parent__isnull=False).exists()
    assert [p.stock for p in Product.objects.filter(pk__in=[p.pk for p in products]).order_by("pk")] == [8, 2]
    assert not OrderLog.objects.filter(order=order, action=OrderAction.RETURNED).exists()


def test_cancel_paid_momo_order_refunds(orchestrator, reconciler, place_order, signed_ipn, customer):
    result = place_order(PaymentMethod.MOMO)
    reconciler.handle_ipn(signed_ipn(result.payment.order_ref, 410000))
    orchestrator.cancel(result.order.pk, customer)

    assert Payment.objects.get(pk=result.payment.pk).status == PaymentStatus.REFUNDED
    assert Payment.objects.get(parent_id=result.payment.pk).amount == Decimal("-410000")


def test_return_completed_cod_order_needs_manual_settlement(orchestrator, place_order, admin, shipper, customer):
    order = place_order().order
    orchestrator.confirm(order.pk, admin)
    orchestrator.pickup(order.pk, shipper)
    orchestrator.deliver(order.pk, shipper)
    orchestrator.customer_confirm(order.pk, customer)

    orchestrator.return_order(order.pk, customer, reason="não serviu")

    refund = Payment.objects.get(order=order, parent__isnull=False)
    assert refund.method == PaymentMethod.CASH
    assert refund.status == PaymentStatus.PENDING
    assert refund.amount == Decimal("-410000")
    assert refund.gateway_response == {"manual_settlement": True, "reason": "não serviu"}
    log = OrderLog.objects.get(order=order, action=OrderAction.REFUNDED)
    assert log.metadata["manual_settlement"] is True


def test_compensation_runs_once(place_order, gateway, products):
    order = place_order().order
    orders, payments = OrderRepository(), PaymentRepository()
    engine = CompensationEngine(InventoryLedger(), orders, payments, gateway)

    with unit_of_work(None, timezone.now) as uow:
        locked = orders.lock(order.pk)
        engine.compensate(uow, locked, payments.current(locked), cancel_pending=True)

    with pytest.raises(InvalidStateTransition):
        with unit_of_work(None, timezone.now) as uow:
            locked = orders.lock(order.pk)
            engine.compensate(uow, locked, payments.current(locked), cancel_pending=True)

    assert [p.stock for p in Product.objects.filter(pk__in=[p.pk for p in products]).order_by("pk")] == [10, 3]
