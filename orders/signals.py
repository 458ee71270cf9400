# orders/signals.py - bloqueia exclusão de linhas do histórico (inclusive por cascata)
from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .errors import AuditTrailImmutable
from .models import OrderLog


@receiver(pre_delete, sender=OrderLog)
def refuse_order_log_delete(sender, instance, **kwargs):
    raise AuditTrailImmutable()
