# orders/audit.py — histórico do pedido (somente inserção) e leituras para timeline/estatísticas
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.db.models import Count, QuerySet

from .constants import ActorType, OrderAction
from .models import Order, OrderLog
from .uow import UnitOfWork

logger = logging.getLogger(__name__)

ACTION_TITLES = {
    OrderAction.CREATED: "Pedido criado",
    OrderAction.CONFIRMED: "Pedido confirmado",
    OrderAction.PICKED_UP: "Pedido coletado",
    OrderAction.DELIVERED: "Entrega realizada",
    OrderAction.CUSTOMER_CONFIRMED: "Cliente confirmou o recebimento",
    OrderAction.RETURNED: "Pedido devolvido",
    OrderAction.CANCELLED: "Pedido cancelado",
    OrderAction.COD_COMPLETED: "Pagamento na entrega recebido",
    OrderAction.PAYMENT_COMPLETED: "Pagamento concluído",
    OrderAction.PAYMENT_FAILED: "Pagamento falhou",
    OrderAction.PAYMENT_CANCELLED: "Pagamento cancelado",
    OrderAction.PAYMENT_EXPIRED: "Pagamento expirado",
    OrderAction.REFUNDED: "Reembolso",
}

# nome exibido quando o ator não é uma pessoa
DEFAULT_ACTOR_NAMES = {
    ActorType.SYSTEM: "Sistema",
    ActorType.PAYMENT_GATEWAY: "MoMo",
}


class AuditTrail:
    def record(
        self,
        uow: UnitOfWork,
        order: Order,
        *,
        from_status: Optional[str],
        to_status: str,
        action: str,
        actor_type: str,
        note: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OrderLog:
        """
        Grava uma linha no histórico dentro da transação corrente.

        Para ações automáticas (sistema/gateway) o id do ator não é gravado;
        IP e User-Agent da requisição são mantidos.
        """
        actor = uow.actor
        if actor_type in DEFAULT_ACTOR_NAMES:
            actor_id = None
            actor_name = DEFAULT_ACTOR_NAMES[actor_type]
        else:
            actor_id = actor.actor_id
            actor_name = actor.actor_name
        log = OrderLog.objects.create(
            order=order,
            from_status=from_status,
            to_status=to_status,
            action=action,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_name=(actor_name or "")[:255],
            note=note or "",
            metadata=metadata or {},
            ip_address=actor.ip_address or None,
            user_agent=(actor.user_agent or "")[:500],
        )
        logger.info(
            "Pedido #%s: %s (%s -> %s) por %s",
            order.pk, action, from_status or "-", to_status, actor_type,
        )
        return log

    # ---------- leituras ----------
    def history(self, order_id: int) -> QuerySet:
        return OrderLog.objects.filter(order_id=order_id).order_by("created_at", "id")

    def timeline(self, order_id: int) -> List[Dict[str, Any]]:
        out = []
        for log in self.history(order_id):
            out.append({
                "id": log.id,
                "action": log.action,
                "fromStatus": log.from_status,
                "toStatus": log.to_status,
                "actorType": log.actor_type,
                "actorName": log.actor_name,
                "note": log.note,
                "metadata": log.metadata,
                "createdAt": log.created_at,
                "title": ACTION_TITLES.get(log.action, "Atualização de status"),
                "description": self.describe(log),
            })
        return out

    @staticmethod
    def describe(log: OrderLog) -> str:
        parts = []
        if log.actor_name and log.actor_type not in DEFAULT_ACTOR_NAMES:
            parts.append(f"Por: {log.actor_name}")
        elif log.actor_type == ActorType.SYSTEM:
            parts.append("Automático pelo sistema")
        elif log.actor_type == ActorType.PAYMENT_GATEWAY:
            parts.append("Atualizado pelo gateway de pagamento")
        if log.note:
            parts.append(log.note)
        meta = log.metadata or {}
        if meta.get("tracking_number"):
            parts.append(f"Código de rastreio: {meta['tracking_number']}")
        if meta.get("refund_amount"):
            parts.append(f"Valor estornado: {meta['refund_amount']} VND")
        if meta.get("payment_method"):
            parts.append(f"Forma de pagamento: {meta['payment_method']}")
        return " • ".join(parts)

    def stats_by_actor(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Dict[str, Any]]:
        qs = OrderLog.objects.all()
        if start:
            qs = qs.filter(created_at__gte=start)
        if end:
            qs = qs.filter(created_at__lte=end)
        rows = (
            qs.order_by()
            .values("actor_type", "action")
            .annotate(count=Count("id"))
            .order_by("actor_type", "action")
        )
        return [
            {"actorType": r["actor_type"], "action": r["action"], "count": r["count"]}
            for r in rows
        ]
