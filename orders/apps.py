from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "orders"
    verbose_name = "Fluxo de Pedidos"

    def ready(self):
        from . import signals  # noqa: F401
