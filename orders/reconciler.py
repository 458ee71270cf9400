"""
Conciliação de pagamentos MoMo.

IPN (push do MoMo), consulta ativa (poll) e a varredura de expiração passam
pela mesma regra de atualização:

- status mapeado igual ao gravado: nada muda e nada é registrado no histórico;
- transição fora do grafo (ex.: completed -> failed): ignorada, só log de aviso;
- sucesso chegando para pagamento já cancelado/expirado/falho: ignorado, mas
  registrado como needs_refund para estorno manual;
- completed com valor diferente do pagamento: ValidationError, nada muda;
- caso contrário: grava status/transId/paid_at/payload e uma linha no histórico.

O status do pedido nunca é alterado aqui.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.utils import timezone

from .audit import AuditTrail
from .constants import (
    MOMO_CANCELLED_CODES,
    MOMO_EXPIRED_CODES,
    MOMO_QUERY_IN_PROGRESS_CODES,
    MOMO_SUCCESS,
    PAYMENT_EVENT_ACTIONS,
    PAYMENT_TRANSITIONS,
    ActorType,
    NotificationOutcome,
    NotificationSource,
    PaymentMethod,
    PaymentStatus,
)
from .errors import NotFoundError, OrderFlowError, PaymentGatewayError, SignatureVerificationError, ValidationError
from .models import Payment, PaymentNotification
from .momo import GatewayNotification, MomoGateway, message_for_result_code
from .repositories import OrderRepository, PaymentRepository
from .uow import SYSTEM_ACTOR, unit_of_work

logger = logging.getLogger(__name__)

# resultCode usado quando a varredura expira um pagamento sem resposta do MoMo
SWEEP_EXPIRED_CODE = 1005


def map_result_code(result_code: int) -> str:
    if result_code == MOMO_SUCCESS:
        return PaymentStatus.COMPLETED
    if result_code in MOMO_CANCELLED_CODES:
        return PaymentStatus.CANCELLED
    if result_code in MOMO_EXPIRED_CODES:
        return PaymentStatus.EXPIRED
    return PaymentStatus.FAILED


# estados encerrados sem captura; um sucesso depois deles é dinheiro a devolver
CLOSED_UNPAID = frozenset({PaymentStatus.CANCELLED, PaymentStatus.EXPIRED, PaymentStatus.FAILED})


@dataclass
class ReconcileResult:
    outcome: str
    payment: Payment
    previous_status: str
    status: str
    note: str = ""

    @property
    def changed(self) -> bool:
        return self.outcome == NotificationOutcome.APPLIED


class PaymentReconciler:
    def __init__(
        self,
        gateway: MomoGateway,
        orders: Optional[OrderRepository] = None,
        payments: Optional[PaymentRepository] = None,
        audit: Optional[AuditTrail] = None,
        clock: Callable = timezone.now,
    ):
        self.gateway = gateway
        self.orders = orders or OrderRepository()
        self.payments = payments or PaymentRepository()
        self.audit = audit or AuditTrail()
        self.clock = clock

    # ---------- regra única de atualização ----------
    def apply(self, notification: GatewayNotification, *, source: str,
              actor_type: str = ActorType.PAYMENT_GATEWAY,
              status: Optional[str] = None) -> ReconcileResult:
        found = self.payments.find_by_reference(notification.order_ref, notification.transaction_ref)
        if found is None:
            raise NotFoundError(
                f"Pagamento {notification.order_ref or notification.transaction_ref} não encontrado.",
                order_ref=notification.order_ref,
            )
        new_status = status or map_result_code(notification.result_code)

        with unit_of_work(SYSTEM_ACTOR, self.clock) as uow:
            order = self.orders.lock(found.order_id)
            payment = self.payments.lock(found.pk)
            previous = payment.status

            if new_status == previous:
                logger.info("Notificação repetida para %s (%s): nada a fazer", payment.order_ref, previous)
                return ReconcileResult(NotificationOutcome.DUPLICATE, payment, previous, previous)

            if new_status not in PAYMENT_TRANSITIONS.get(previous, ()):
                if new_status == PaymentStatus.COMPLETED and previous in CLOSED_UNPAID:
                    note = (
                        f"MoMo capturou o pagamento {payment.order_ref} (transId="
                        f"{notification.transaction_ref or '-'}) já {previous}: requer estorno manual"
                    )
                    logger.error(note)
                    return ReconcileResult(NotificationOutcome.NEEDS_REFUND, payment, previous, previous, note)
                logger.warning(
                    "Transição de pagamento ignorada para %s: %s -> %s (resultCode=%s)",
                    payment.order_ref, previous, new_status, notification.result_code,
                )
                return ReconcileResult(NotificationOutcome.IGNORED, payment, previous, previous)

            if new_status == PaymentStatus.COMPLETED and notification.amount is not None:
                if Decimal(notification.amount) != payment.amount:
                    raise ValidationError(
                        "Valor notificado difere do valor do pagamento.",
                        order_ref=payment.order_ref,
                        expected=str(payment.amount),
                        received=notification.amount,
                    )

            payment.status = new_status
            fields = ["status", "gateway_response"]
            if notification.transaction_ref:
                payment.external_transaction_id = notification.transaction_ref
                fields.append("external_transaction_id")
            if new_status == PaymentStatus.COMPLETED:
                payment.paid_at = uow.now
                fields.append("paid_at")
            response = dict(payment.gateway_response or {})
            response[source] = notification.raw
            response["last_result_code"] = notification.result_code
            payment.gateway_response = response
            self.payments.save(payment, fields)

            self.audit.record(
                uow, order,
                from_status=order.status,
                to_status=order.status,
                action=PAYMENT_EVENT_ACTIONS[new_status],
                actor_type=actor_type,
                note=notification.message or message_for_result_code(notification.result_code),
                metadata={
                    "payment_id": payment.pk,
                    "payment_method": payment.method,
                    "payment_status_from": previous,
                    "payment_status_to": new_status,
                    "result_code": notification.result_code,
                    "transaction_ref": notification.transaction_ref,
                    "amount": str(payment.amount),
                    "source": source,
                },
            )
        logger.info("Pagamento %s: %s -> %s (%s)", payment.order_ref, previous, new_status, source)
        return ReconcileResult(NotificationOutcome.APPLIED, payment, previous, new_status)

    # ---------- IPN ----------
    def process_ipn(self, payload: Dict[str, Any]) -> ReconcileResult:
        """Valida a assinatura antes de tocar em qualquer estado."""
        notification = self.gateway.parse_notification(payload)
        return self.apply(notification, source=NotificationSource.IPN)

    def handle_ipn(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ponto de entrada do webhook. Sempre devolve um reconhecimento para o
        MoMo não reenviar indefinidamente; rejeições e falhas ficam gravadas
        em PaymentNotification para conciliação manual.
        """
        payload = payload if isinstance(payload, dict) else {}
        try:
            result = self.process_ipn(payload)
        except SignatureVerificationError as e:
            logger.warning("IPN MoMo rejeitado (%s): orderId=%s", e.detail, payload.get("orderId"))
            self._record(NotificationSource.IPN, payload, NotificationOutcome.REJECTED, error=e.detail)
            return {"resultCode": 0, "message": "Notificação recebida", "outcome": NotificationOutcome.REJECTED}
        except Exception as e:
            logger.exception("Erro ao processar IPN MoMo orderId=%s", payload.get("orderId"))
            detail = e.detail if isinstance(e, OrderFlowError) else str(e)
            self._record(NotificationSource.IPN, payload, NotificationOutcome.FAILED, error=detail)
            return {"resultCode": 0, "message": "Notificação recebida", "outcome": NotificationOutcome.FAILED}

        self._record(NotificationSource.IPN, payload, result.outcome, error=result.note)
        return {"resultCode": 0, "message": "Notificação recebida", "outcome": result.outcome}

    # ---------- consulta ativa ----------
    def poll(self, order_id: int) -> ReconcileResult:
        order = self.orders.get(order_id)
        payment = self.payments.current(order)
        if payment is None or payment.method != PaymentMethod.MOMO or not payment.order_ref:
            raise ValidationError("Pedido não possui pagamento MoMo para consultar.", order_id=order_id)

        result = self.gateway.query_status(payment.order_ref)
        notification = GatewayNotification(
            order_ref=payment.order_ref,
            transaction_ref=result.transaction_ref,
            result_code=result.result_code,
            amount=result.amount,
            message=result.message,
            pay_type=result.pay_type,
            raw=result.raw,
        )
        # consulta ainda sem resultado final: segue pendente, não vira falha
        status = PaymentStatus.PENDING if result.result_code in MOMO_QUERY_IN_PROGRESS_CODES else None
        outcome = self.apply(notification, source=NotificationSource.POLL, status=status)
        self._record(
            NotificationSource.POLL, result.raw, outcome.outcome,
            order_ref=payment.order_ref, error=outcome.note,
        )
        return outcome

    def expire_stale_payments(self, older_than_minutes: Optional[int] = None) -> Dict[str, int]:
        """
        Consulta cada pagamento MoMo pendente mais antigo que a janela e
        expira os que continuam sem pagamento (ator: sistema).
        """
        minutes = settings.MOMO_PAYMENT_EXPIRATION_MINUTES if older_than_minutes is None else older_than_minutes
        cutoff = self.clock() - timedelta(minutes=int(minutes))
        summary = {"checked": 0, "synced": 0, "expired": 0, "failed": 0}

        for payment in self.payments.pending_momo_before(cutoff):
            summary["checked"] += 1
            try:
                if self._sync_one(payment):
                    summary["synced"] += 1
                    continue
                expired = GatewayNotification(
                    order_ref=payment.order_ref,
                    transaction_ref="",
                    result_code=SWEEP_EXPIRED_CODE,
                    amount=None,
                    message=f"Pagamento expirado após {minutes} minutos sem confirmação",
                    raw={"expired_after_minutes": int(minutes)},
                )
                result = self.apply(
                    expired, source=NotificationSource.SWEEP,
                    actor_type=ActorType.SYSTEM, status=PaymentStatus.EXPIRED,
                )
                self._record(NotificationSource.SWEEP, expired.raw, result.outcome, order_ref=payment.order_ref)
                if result.changed:
                    summary["expired"] += 1
            except OrderFlowError as e:
                # um pagamento com problema não interrompe a varredura dos demais
                logger.error("Falha ao conciliar pagamento %s: %s", payment.order_ref, e.detail)
                self._record(
                    NotificationSource.SWEEP, {}, NotificationOutcome.FAILED,
                    order_ref=payment.order_ref, error=e.detail,
                )
                summary["failed"] += 1

        logger.info("Varredura de pagamentos MoMo: %s", summary)
        return summary

    def _sync_one(self, payment: Payment) -> bool:
        """True se o MoMo já tem um resultado final para o pagamento."""
        try:
            result = self.gateway.query_status(payment.order_ref)
        except PaymentGatewayError as e:
            logger.warning("Consulta MoMo falhou para %s, será expirado: %s", payment.order_ref, e.detail)
            return False
        if result.result_code in MOMO_QUERY_IN_PROGRESS_CODES:
            return False
        notification = GatewayNotification(
            order_ref=payment.order_ref,
            transaction_ref=result.transaction_ref,
            result_code=result.result_code,
            amount=result.amount,
            message=result.message,
            raw=result.raw,
        )
        outcome = self.apply(notification, source=NotificationSource.POLL)
        self._record(
            NotificationSource.POLL, result.raw, outcome.outcome,
            order_ref=payment.order_ref, error=outcome.note,
        )
        return True

    @staticmethod
    def _record(source: str, payload: Dict[str, Any], outcome: str,
                order_ref: str = "", error: str = "") -> PaymentNotification:
        result_code = payload.get("resultCode")
        try:
            result_code = int(result_code) if result_code not in (None, "") else None
        except (TypeError, ValueError):
            result_code = None
        return PaymentNotification.objects.create(
            source=source,
            order_ref=str(payload.get("orderId") or order_ref or "")[:120],
            transaction_ref=str(payload.get("transId") or "")[:120],
            result_code=result_code,
            payload=payload,
            outcome=outcome,
            error=error or "",
        )
