from datetime import timedelta
from io import StringIO

import pytest
import requests
from django.core.management import call_command
from django.utils import timezone

from orders.constants import (
    ActorType,
    NotificationOutcome,
    NotificationSource,
    OrderAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from orders.errors import ValidationError
from orders.models import OrderLog, Payment, PaymentNotification
from orders.reconciler import PaymentReconciler, map_result_code

from .conftest import FakeResponse

pytestmark = pytest.mark.django_db


@pytest.fixture
def momo_order(place_order):
    return place_order(PaymentMethod.MOMO)


def _payment_logs(order):
    return OrderLog.objects.filter(order=order).exclude(action=OrderAction.CREATED)


@pytest.mark.parametrize("code,status", [
    (0, PaymentStatus.COMPLETED),
    (1006, PaymentStatus.CANCELLED),
    (2000, PaymentStatus.CANCELLED),
    (9000, PaymentStatus.CANCELLED),
    (1005, PaymentStatus.EXPIRED),
    (8000, PaymentStatus.EXPIRED),
    (1000, PaymentStatus.FAILED),
    (7000, PaymentStatus.FAILED),
    (1001, PaymentStatus.FAILED),
    (99, PaymentStatus.FAILED),
])
def test_map_result_code(code, status):
    assert map_result_code(code) == status


def test_ipn_success_completes_payment(reconciler, momo_order, signed_ipn):
    payment = momo_order.payment
    ack = reconciler.handle_ipn(signed_ipn(payment.order_ref, 410000, trans_id="555"))
    assert ack["resultCode"] == 0
    assert ack["outcome"] == NotificationOutcome.APPLIED

    payment.refresh_from_db()
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.external_transaction_id == "555"
    assert payment.paid_at is not None
    assert payment.gateway_response["last_result_code"] == 0
    assert "ipn" in payment.gateway_response

    order = momo_order.order
    order.refresh_from_db()
    assert order.status == OrderStatus.PENDING_CONFIRMATION

    log = _payment_logs(order).get()
    assert log.action == OrderAction.PAYMENT_COMPLETED
    assert log.actor_type == ActorType.PAYMENT_GATEWAY
    assert log.actor_name == "MoMo"
    assert log.from_status == log.to_status == OrderStatus.PENDING_CONFIRMATION
    assert log.metadata["payment_status_from"] == PaymentStatus.PENDING

    note = PaymentNotification.objects.get()
    assert note.source == NotificationSource.IPN
    assert note.outcome == NotificationOutcome.APPLIED
    assert note.result_code == 0


def test_duplicate_ipn_is_idempotent(reconciler, momo_order, signed_ipn):
    payload = signed_ipn(momo_order.payment.order_ref, 410000)
    reconciler.handle_ipn(payload)
    ack = reconciler.handle_ipn(dict(payload))
    assert ack["outcome"] == NotificationOutcome.DUPLICATE
    assert _payment_logs(momo_order.order).count() == 1
    assert PaymentNotification.objects.filter(outcome=NotificationOutcome.DUPLICATE).count() == 1


def test_bad_signature_is_acknowledged_and_recorded(reconciler, momo_order, signed_ipn):
    payload = signed_ipn(momo_order.payment.order_ref, 410000)
    payload["signature"] = "0" * 64
    ack = reconciler.handle_ipn(payload)
    assert ack == {"resultCode": 0, "message": "Notificação recebida", "outcome": NotificationOutcome.REJECTED}

    payment = Payment.objects.get(pk=momo_order.payment.pk)
    assert payment.status == PaymentStatus.PENDING
    assert not _payment_logs(momo_order.order).exists()
    note = PaymentNotification.objects.get()
    assert note.outcome == NotificationOutcome.REJECTED
    assert note.order_ref == payment.order_ref
    assert note.error


def test_non_dict_payload_is_rejected(reconciler):
    ack = reconciler.handle_ipn(["not", "a", "dict"])
    assert ack["outcome"] == NotificationOutcome.REJECTED


def test_failed_after_completed_is_ignored(reconciler, momo_order, signed_ipn):
    ref = momo_order.payment.order_ref
    reconciler.handle_ipn(signed_ipn(ref, 410000))
    ack = reconciler.handle_ipn(signed_ipn(ref, 410000, result_code=1001))
    assert ack["outcome"] == NotificationOutcome.IGNORED

    payment = Payment.objects.get(pk=momo_order.payment.pk)
    assert payment.status == PaymentStatus.COMPLETED
    assert _payment_logs(momo_order.order).count() == 1


def test_amount_mismatch_changes_nothing(reconciler, momo_order, signed_ipn):
    ack = reconciler.handle_ipn(signed_ipn(momo_order.payment.order_ref, 1000))
    assert ack["outcome"] == NotificationOutcome.FAILED

    payment = Payment.objects.get(pk=momo_order.payment.pk)
    assert payment.status == PaymentStatus.PENDING
    assert not _payment_logs(momo_order.order).exists()
    assert "difere" in PaymentNotification.objects.get().error


def test_unknown_order_ref_is_recorded_as_failed(reconciler, signed_ipn):
    ack = reconciler.handle_ipn(signed_ipn("ORDER_404_1", 10000))
    assert ack["resultCode"] == 0
    assert ack["outcome"] == NotificationOutcome.FAILED


def test_cancelled_by_user(reconciler, momo_order, signed_ipn):
    reconciler.handle_ipn(signed_ipn(momo_order.payment.order_ref, 410000, result_code=1006, trans_id=""))
    payment = Payment.objects.get(pk=momo_order.payment.pk)
    assert payment.status == PaymentStatus.CANCELLED
    assert payment.paid_at is None
    assert _payment_logs(momo_order.order).get().action == OrderAction.PAYMENT_CANCELLED


@pytest.mark.parametrize("code,status,action", [
    (9000, PaymentStatus.CANCELLED, OrderAction.PAYMENT_CANCELLED),
    (7000, PaymentStatus.FAILED, OrderAction.PAYMENT_FAILED),
    (1000, PaymentStatus.FAILED, OrderAction.PAYMENT_FAILED),
])
def test_ipn_non_success_codes_close_the_payment(reconciler, momo_order, signed_ipn, code, status, action):
    ack = reconciler.handle_ipn(signed_ipn(momo_order.payment.order_ref, 410000, result_code=code, trans_id=""))
    assert ack["outcome"] == NotificationOutcome.APPLIED
    assert Payment.objects.get(pk=momo_order.payment.pk).status == status
    assert _payment_logs(momo_order.order).get().action == action


def test_success_after_cancel_is_flagged_for_refund(reconciler, orchestrator, momo_order, customer,
                                                    signed_ipn, caplog):
    orchestrator.cancel(momo_order.order.pk, customer, reason="desisti")
    logs_before = OrderLog.objects.filter(order=momo_order.order).count()

    with caplog.at_level("ERROR", logger="orders.reconciler"):
        ack = reconciler.handle_ipn(signed_ipn(momo_order.payment.order_ref, 410000, trans_id="8801"))

    assert ack["resultCode"] == 0
    assert ack["outcome"] == NotificationOutcome.NEEDS_REFUND
    payment = Payment.objects.get(pk=momo_order.payment.pk)
    assert payment.status == PaymentStatus.CANCELLED
    assert payment.paid_at is None
    assert OrderLog.objects.filter(order=momo_order.order).count() == logs_before

    note = PaymentNotification.objects.get()
    assert note.outcome == NotificationOutcome.NEEDS_REFUND
    assert note.transaction_ref == "8801"
    assert "estorno" in note.error
    assert any(r.levelname == "ERROR" and "estorno" in r.getMessage() for r in caplog.records)


# ---------- consulta ativa ----------
def test_poll_applies_query_result(reconciler, momo_order, session):
    session.post.side_effect = None
    session.post.return_value = FakeResponse({
        "orderId": momo_order.payment.order_ref, "resultCode": 0, "message": "Successful.",
        "transId": 777, "amount": 410000, "payType": "qr",
    })
    result = reconciler.poll(momo_order.order.pk)
    assert result.outcome == NotificationOutcome.APPLIED
    assert result.previous_status == PaymentStatus.PENDING
    assert result.status == PaymentStatus.COMPLETED
    assert result.payment.external_transaction_id == "777"
    assert "poll" in result.payment.gateway_response
    assert PaymentNotification.objects.get().source == NotificationSource.POLL


def test_poll_still_pending(reconciler, momo_order):
    result = reconciler.poll(momo_order.order.pk)
    assert result.outcome == NotificationOutcome.DUPLICATE
    assert not result.changed


@pytest.mark.parametrize("code", [7000, 7002])
def test_poll_in_progress_keeps_pending(reconciler, momo_order, session, code):
    session.post.side_effect = None
    session.post.return_value = FakeResponse({"resultCode": code, "message": "Processing"})
    result = reconciler.poll(momo_order.order.pk)
    assert result.outcome == NotificationOutcome.DUPLICATE
    assert Payment.objects.get(pk=momo_order.payment.pk).status == PaymentStatus.PENDING
    assert not _payment_logs(momo_order.order).exists()


def test_poll_user_cancelled_code(reconciler, momo_order, session):
    session.post.side_effect = None
    session.post.return_value = FakeResponse({"resultCode": 9000, "message": "Cancelled"})
    result = reconciler.poll(momo_order.order.pk)
    assert result.status == PaymentStatus.CANCELLED
    assert Payment.objects.get(pk=momo_order.payment.pk).status == PaymentStatus.CANCELLED


def test_poll_cash_order_is_rejected(reconciler, place_order):
    checkout = place_order(PaymentMethod.CASH)
    with pytest.raises(ValidationError):
        reconciler.poll(checkout.order.pk)


# ---------- varredura de expiração ----------
def _age(payment, minutes):
    Payment.objects.filter(pk=payment.pk).update(created_at=timezone.now() - timedelta(minutes=minutes))


def test_sweep_expires_stale_pending_payment(reconciler, momo_order):
    _age(momo_order.payment, 30)
    summary = reconciler.expire_stale_payments(15)
    assert summary == {"checked": 1, "synced": 0, "expired": 1, "failed": 0}

    payment = Payment.objects.get(pk=momo_order.payment.pk)
    assert payment.status == PaymentStatus.EXPIRED
    log = _payment_logs(momo_order.order).get()
    assert log.action == OrderAction.PAYMENT_EXPIRED
    assert log.actor_type == ActorType.SYSTEM
    assert PaymentNotification.objects.filter(source=NotificationSource.SWEEP).count() == 1


def test_sweep_skips_recent_payments(reconciler, momo_order):
    summary = reconciler.expire_stale_payments(15)
    assert summary["checked"] == 0
    assert Payment.objects.get(pk=momo_order.payment.pk).status == PaymentStatus.PENDING


def test_sweep_with_zero_minutes_checks_every_pending_payment(gateway, momo_order):
    reconciler = PaymentReconciler(gateway=gateway, clock=lambda: timezone.now() + timedelta(seconds=1))
    summary = reconciler.expire_stale_payments(0)
    assert summary["checked"] == 1
    assert summary["expired"] == 1
    assert Payment.objects.get(pk=momo_order.payment.pk).status == PaymentStatus.EXPIRED


def test_sweep_syncs_payment_paid_meanwhile(reconciler, momo_order, session):
    _age(momo_order.payment, 30)
    session.post.side_effect = None
    session.post.return_value = FakeResponse({"resultCode": 0, "transId": 12, "amount": 410000})
    summary = reconciler.expire_stale_payments(15)
    assert summary["synced"] == 1
    assert summary["expired"] == 0
    assert Payment.objects.get(pk=momo_order.payment.pk).status == PaymentStatus.COMPLETED


def test_sweep_expires_when_gateway_unreachable(reconciler, momo_order, session):
    _age(momo_order.payment, 30)
    session.post.side_effect = requests.exceptions.ConnectionError("down")
    summary = reconciler.expire_stale_payments(15)
    assert summary["expired"] == 1
    assert Payment.objects.get(pk=momo_order.payment.pk).status == PaymentStatus.EXPIRED


def test_sweep_isolates_failures(reconciler, place_order, session):
    first = place_order(PaymentMethod.MOMO)
    second = place_order(PaymentMethod.MOMO)
    _age(first.payment, 30)
    _age(second.payment, 30)
    # o primeiro volta pago com valor errado; o segundo continua pendente
    session.post.side_effect = [
        FakeResponse({"resultCode": 0, "transId": 1, "amount": 5000}),
        FakeResponse({"resultCode": 1000}),
    ]
    summary = reconciler.expire_stale_payments(15)
    assert summary == {"checked": 2, "synced": 0, "expired": 1, "failed": 1}
    assert Payment.objects.get(pk=first.payment.pk).status == PaymentStatus.PENDING
    assert Payment.objects.get(pk=second.payment.pk).status == PaymentStatus.EXPIRED
    assert PaymentNotification.objects.filter(outcome=NotificationOutcome.FAILED).count() == 1


def test_sync_command(momo_order, gateway, monkeypatch):
    monkeypatch.setattr("orders.services.build_gateway", lambda session=None: gateway)
    _age(momo_order.payment, 30)
    out = StringIO()
    call_command("sync_momo_payments", "--minutes", "15", stdout=out)
    assert "expirados: 1" in out.getvalue()
    assert Payment.objects.get(pk=momo_order.payment.pk).status == PaymentStatus.EXPIRED
