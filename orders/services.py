# orders/services.py - monta orquestrador e conciliador a partir do settings
from django.conf import settings
from django.utils.module_loading import import_string

from .momo import MomoConfig, MomoGateway
from .notifications import EmailOrderNotifier, NullNotifier
from .reconciler import PaymentReconciler
from .workflow import OrderLifecycleOrchestrator


def build_gateway(session=None) -> MomoGateway:
    return MomoGateway(MomoConfig.from_settings(), session=session)


def build_discount_provider():
    path = getattr(settings, "ORDER_DISCOUNT_PROVIDER", "orders.discounts.NoDiscount")
    return import_string(path)()


def build_orchestrator(gateway=None) -> OrderLifecycleOrchestrator:
    notifier = EmailOrderNotifier() if getattr(settings, "NOTIFY_ORDER_EVENTS", False) else NullNotifier()
    return OrderLifecycleOrchestrator(
        gateway=gateway or build_gateway(),
        discounts=build_discount_provider(),
        notifier=notifier,
    )


def build_reconciler(gateway=None) -> PaymentReconciler:
    return PaymentReconciler(gateway=gateway or build_gateway())
