import pytest
from django.contrib.auth import get_user_model

from orders.constants import OrderStatus
from orders.errors import InvalidStateTransition
from orders.models import Order
from orders.notifications import EmailOrderNotifier, NullNotifier
from orders.workflow import OrderLifecycleOrchestrator

from .conftest import CUSTOMER_ID

# on_commit só dispara com commit de verdade
pytestmark = pytest.mark.django_db(transaction=True)


class BrokenNotifier(NullNotifier):
    def notify(self, order_id, action, note=""):
        raise RuntimeError("smtp fora do ar")


@pytest.fixture(autouse=True)
def notify_enabled(settings):
    settings.NOTIFY_ORDER_EVENTS = True
    settings.FRONTEND_URL = "https://loja.example"


@pytest.fixture
def orchestrator(gateway):
    return OrderLifecycleOrchestrator(gateway=gateway, notifier=EmailOrderNotifier())


@pytest.fixture
def buyer():
    User = get_user_model()
    return User.objects.create_user(id=CUSTOMER_ID, username="cliente", email="cliente@example.com")


def test_email_sent_after_commit(buyer, place_order, mailoutbox):
    order = place_order().order

    assert len(mailoutbox) == 1
    assert mailoutbox[0].to == ["cliente@example.com"]
    assert mailoutbox[0].subject == f"[Pedido #{order.pk}] Pedido criado"
    assert f"https://loja.example/orders/{order.pk}" in mailoutbox[0].body


def test_failed_operation_sends_nothing(buyer, orchestrator, place_order, shipper, mailoutbox):
    order = place_order().order
    mailoutbox.clear()
    with pytest.raises(InvalidStateTransition):
        orchestrator.pickup(order.pk, shipper)
    assert mailoutbox == []


def test_notifier_failure_keeps_transition(gateway, place_order, admin):
    order = place_order().order
    svc = OrderLifecycleOrchestrator(gateway=gateway, notifier=BrokenNotifier())
    svc.confirm(order.pk, admin)
    assert Order.objects.get(pk=order.pk).status == OrderStatus.PENDING_PICKUP


def test_customer_without_email_is_skipped(place_order, mailoutbox):
    order = place_order().order
    assert EmailOrderNotifier().notify(order.pk, "created") is False
    assert mailoutbox == []
