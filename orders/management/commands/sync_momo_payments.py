# orders/management/commands/sync_momo_payments.py - concilia e expira pagamentos MoMo pendentes
from django.conf import settings
from django.core.management.base import BaseCommand

from orders.services import build_reconciler


class Command(BaseCommand):
    help = "Consulta no MoMo os pagamentos pendentes antigos e expira os que continuam sem pagamento."

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes",
            type=int,
            default=settings.MOMO_PAYMENT_EXPIRATION_MINUTES,
            help="Idade mínima (em minutos) do pagamento pendente.",
        )

    def handle(self, *args, **options):
        summary = build_reconciler().expire_stale_payments(options["minutes"])
        self.stdout.write(self.style.SUCCESS(
            "Verificados: {checked} | sincronizados: {synced} | expirados: {expired} | falhas: {failed}".format(**summary)
        ))
