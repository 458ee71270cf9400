# orders/compensation.py — devolve estoque e acerta o pagamento em cancelamento/devolução
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from .constants import PaymentMethod, PaymentStatus
from .errors import InvalidStateTransition
from .inventory import InventoryLedger
from .models import Order, Payment
from .momo import MomoGateway
from .repositories import OrderRepository, PaymentRepository
from .uow import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class CompensationResult:
    restored: List[Tuple[int, int]] = field(default_factory=list)
    payment: Optional[Payment] = None
    refund: Optional[Payment] = None
    payment_status_from: str = ""

    @property
    def refund_amount(self) -> Decimal:
        return -self.refund.amount if self.refund else Decimal("0")

    @property
    def manual_settlement(self) -> bool:
        return bool(self.refund and self.refund.status == PaymentStatus.PENDING)


class CompensationEngine:
    """
    Chamado apenas por `return` e `cancel`, dentro da transação da operação.

    Roda uma única vez por pedido (Order.compensated_at). Se o estorno no
    gateway falhar, a exceção sobe e a transação inteira é desfeita.
    """

    def __init__(self, inventory: InventoryLedger, orders: OrderRepository,
                 payments: PaymentRepository, gateway: MomoGateway):
        self.inventory = inventory
        self.orders = orders
        self.payments = payments
        self.gateway = gateway

    def compensate(self, uow: UnitOfWork, order: Order, payment: Optional[Payment], *,
                   cancel_pending: bool, reason: str = "") -> CompensationResult:
        if order.compensated_at is not None:
            raise InvalidStateTransition(
                f"Pedido #{order.pk} já teve estoque e pagamento devolvidos.", order_id=order.pk
            )

        lines = [(item.product_id, item.quantity) for item in self.orders.line_items(order)]
        self.inventory.release(lines)
        result = CompensationResult(restored=lines, payment=payment)

        if payment is not None:
            result.payment_status_from = payment.status
            if payment.status == PaymentStatus.PENDING and cancel_pending:
                payment.status = PaymentStatus.CANCELLED
                self.payments.save(payment, ["status"])
            elif payment.status == PaymentStatus.COMPLETED:
                result.refund = self._refund(uow, payment, reason)

        order.compensated_at = uow.now
        self.orders.save(order, ["compensated_at"])
        logger.info(
            "Pedido #%s compensado: estoque=%s pagamento=%s -> %s",
            order.pk, lines, result.payment_status_from or "-", payment.status if payment else "-",
        )
        return result

    def _refund(self, uow: UnitOfWork, payment: Payment, reason: str) -> Payment:
        if payment.method == PaymentMethod.MOMO:
            refund = self.gateway.refund(
                payment.order_ref, payment.external_transaction_id, payment.amount, reason
            )
            payment.status = PaymentStatus.REFUNDED
            payment.gateway_response = dict(payment.gateway_response or {}, refund=refund.raw)
            self.payments.save(payment, ["status", "gateway_response"])
            return self.payments.add_refund(
                payment,
                status=PaymentStatus.COMPLETED,
                transaction_ref=refund.transaction_ref,
                paid_at=uow.now,
                gateway_response=dict(refund.raw, orderId=refund.refund_ref, requestId=refund.request_id),
            )

        # pagamento na entrega: nada foi capturado eletronicamente, acerto manual
        payment.status = PaymentStatus.REFUNDED
        self.payments.save(payment, ["status"])
        return self.payments.add_refund(
            payment,
            status=PaymentStatus.PENDING,
            gateway_response={"manual_settlement": True, "reason": reason},
        )
