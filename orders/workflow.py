"""
Orquestrador do ciclo de vida do pedido.

Cada operação pública é uma unidade de trabalho: uma transação que começa
travando o pedido (e depois o pagamento corrente), valida a guarda antes de
qualquer escrita e grava a linha do histórico junto com a mudança de status.
Os avisos ao cliente só saem depois do commit.

    pending_confirmation -> pending_pickup -> shipping -> delivered -> customer_confirmed
    cancel: pending_confirmation | pending_pickup          -> cancelled
    return: shipping | delivered* | customer_confirmed*   -> returned   (*dentro da janela)
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional

from django.conf import settings
from django.utils import timezone

from .audit import AuditTrail
from .compensation import CompensationEngine, CompensationResult
from .constants import (
    ADMIN_WORKFLOW_ACTIONS,
    ALLOWED_FROM,
    CUSTOMER_WORKFLOW_ACTIONS,
    ActorType,
    OrderAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    WorkflowAction,
)
from .discounts import DiscountProvider, NoDiscount
from .errors import (
    InvalidStateTransition,
    NotFoundError,
    NotOrderOwner,
    OrderFlowError,
    ValidationError,
)
from .inventory import InventoryLedger
from .models import Order, Payment, ShippingMethod
from .momo import MomoGateway, PaymentIntent, new_order_ref, validate_amount
from .notifications import NullNotifier
from .repositories import CartRepository, OrderRepository, PaymentRepository
from .uow import Actor, UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class CartLine:
    product_id: int
    quantity: int
    price: Decimal


@dataclass
class CheckoutResult:
    order: Order
    payment: Payment
    intent: Optional[PaymentIntent] = None


def normalize_snapshot(items: Iterable) -> List[CartLine]:
    """Converte o snapshot do carrinho enviado pelo cliente; valida antes de abrir a transação."""
    lines: Dict[int, CartLine] = {}
    for raw in items or []:
        if isinstance(raw, CartLine):
            line = raw
        else:
            try:
                line = CartLine(
                    product_id=int(raw["product_id"]),
                    quantity=raw["quantity"],
                    price=Decimal(str(raw["price"])),
                )
            except (KeyError, TypeError, ValueError, ArithmeticError):
                raise ValidationError("Item do carrinho mal formado.", item=str(raw))
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError("Quantidade deve ser um inteiro >= 1.", product_id=line.product_id)
        if line.price < 0:
            raise ValidationError("Preço inválido.", product_id=line.product_id)
        if line.product_id in lines:
            raise ValidationError("Produto repetido no carrinho.", product_id=line.product_id)
        lines[line.product_id] = line
    if not lines:
        raise ValidationError("O carrinho está vazio.")
    return [lines[pid] for pid in sorted(lines)]


class OrderLifecycleOrchestrator:
    def __init__(
        self,
        gateway: MomoGateway,
        orders: Optional[OrderRepository] = None,
        payments: Optional[PaymentRepository] = None,
        carts: Optional[CartRepository] = None,
        inventory: Optional[InventoryLedger] = None,
        audit: Optional[AuditTrail] = None,
        discounts: Optional[DiscountProvider] = None,
        notifier=None,
        clock: Optional[Callable[[], datetime]] = None,
        return_window: Optional[timedelta] = None,
    ):
        self.gateway = gateway
        self.orders = orders or OrderRepository()
        self.payments = payments or PaymentRepository()
        self.carts = carts or CartRepository()
        self.inventory = inventory or InventoryLedger()
        self.audit = audit or AuditTrail()
        self.discounts = discounts or NoDiscount()
        self.notifier = notifier or NullNotifier()
        self.clock = clock or timezone.now
        if return_window is None:
            return_window = timedelta(days=settings.ORDER_RETURN_WINDOW_DAYS)
        self.return_window = return_window
        self.compensation = CompensationEngine(self.inventory, self.orders, self.payments, self.gateway)

    # ==================================================================
    # Criação
    # ==================================================================
    def create_order(
        self,
        user_id: int,
        cart_snapshot: Iterable,
        address_id: int,
        shipping_method_id: int,
        payment_method: str = PaymentMethod.CASH,
        coupon_code: Optional[str] = None,
        note: str = "",
        actor: Optional[Actor] = None,
        redirect_url: Optional[str] = None,
    ) -> CheckoutResult:
        if payment_method not in PaymentMethod.values:
            raise ValidationError("Forma de pagamento inválida.", payment_method=payment_method)
        if not user_id or not address_id:
            raise ValidationError("userId e addressId são obrigatórios.")
        snapshot = normalize_snapshot(cart_snapshot)
        actor = actor or Actor(actor_id=user_id)

        with unit_of_work(actor, self.clock) as uow:
            cart = self.carts.active_for_user(user_id)
            if cart is None:
                raise NotFoundError("Carrinho ativo não encontrado.", user_id=user_id)
            self._check_cart_matches(self.carts.lines(cart), snapshot)

            shipping = ShippingMethod.objects.filter(pk=shipping_method_id, is_active=True).first()
            if shipping is None:
                raise NotFoundError("Forma de envio não encontrada.", shipping_method_id=shipping_method_id)

            subtotal = sum((line.price * line.quantity for line in snapshot), Decimal("0")).quantize(CENT)
            discount = Decimal(self.discounts.discount_for(user_id, coupon_code, subtotal) or 0)
            discount = min(max(discount, Decimal("0")), subtotal).quantize(CENT, rounding=ROUND_HALF_UP)
            shipping_fee = Decimal(shipping.fee).quantize(CENT)
            total = subtotal - discount + shipping_fee
            if payment_method == PaymentMethod.MOMO:
                validate_amount(total)

            self.inventory.reserve((line.product_id, line.quantity) for line in snapshot)

            order = self.orders.create(
                user_id=user_id,
                address_id=address_id,
                shipping_method=shipping,
                status=OrderStatus.PENDING_CONFIRMATION,
                subtotal=subtotal,
                discount_amount=discount,
                shipping_fee=shipping_fee,
                total_amount=total,
                coupon_code=coupon_code or "",
                ordered_date=uow.now,
                note=note or "",
            )
            self.orders.add_line_items(order, [
                {"product_id": line.product_id, "quantity": line.quantity, "unit_price": line.price}
                for line in snapshot
            ])
            payment = self.payments.create(
                order=order, method=payment_method, status=PaymentStatus.PENDING, amount=total,
            )

            intent = None
            if payment_method == PaymentMethod.MOMO:
                # chamada externa dentro da transação: se falhar, estoque e pedido voltam
                intent = self.gateway.create_payment_intent(
                    new_order_ref(order.pk), total,
                    redirect_url=redirect_url,
                    order_info=f"Pagamento do pedido #{order.pk}",
                )
                payment.order_ref = intent.order_ref
                payment.request_id = intent.request_id
                payment.gateway_response = {"create": intent.raw}
                self.payments.save(payment, ["order_ref", "request_id", "gateway_response"])

            self.carts.mark_ordered(cart)
            self.audit.record(
                uow, order,
                from_status=None,
                to_status=order.status,
                action=OrderAction.CREATED,
                actor_type=ActorType.CUSTOMER,
                note=note,
                metadata={
                    "payment_method": payment_method,
                    "subtotal": str(subtotal),
                    "discount_amount": str(discount),
                    "shipping_fee": str(shipping_fee),
                    "total_amount": str(total),
                    "coupon_code": coupon_code or "",
                    "items": [{"product_id": line.product_id, "quantity": line.quantity} for line in snapshot],
                },
            )
            self._notify(uow, order, OrderAction.CREATED)

        logger.info("Pedido #%s criado para o usuário %s (total %s, %s)", order.pk, user_id, total, payment_method)
        return CheckoutResult(order=order, payment=payment, intent=intent)

    @staticmethod
    def _check_cart_matches(cart_lines, snapshot: List[CartLine]) -> None:
        server = {
            item.product_id: (item.quantity, Decimal(item.price).quantize(CENT))
            for item in cart_lines
        }
        client = {line.product_id: (line.quantity, line.price.quantize(CENT)) for line in snapshot}
        if server != client:
            raise ValidationError("O carrinho mudou; atualize a página e tente novamente.")

    # ==================================================================
    # Transições
    # ==================================================================
    @contextmanager
    def _locked(self, order_id: int, actor: Optional[Actor]):
        with unit_of_work(actor, self.clock) as uow:
            order = self.orders.lock(order_id)
            payment = self.payments.current(order, lock=True)
            yield uow, order, payment

    def confirm(self, order_id: int, actor: Optional[Actor] = None, note: str = "") -> Order:
        with self._locked(order_id, actor) as (uow, order, payment):
            self._check(WorkflowAction.CONFIRM, order, payment, uow.now, uow.actor.actor_id)
            self._move(uow, order, OrderStatus.PENDING_CONFIRMATION, OrderStatus.PENDING_PICKUP,
                       OrderAction.CONFIRMED, ActorType.ADMIN, note,
                       {"payment_method": payment.method if payment else None})
        return order

    def pickup(self, order_id: int, actor: Optional[Actor] = None, tracking_number: Optional[str] = None,
               shipped_by: Optional[str] = None, note: str = "") -> Order:
        with self._locked(order_id, actor) as (uow, order, payment):
            self._check(WorkflowAction.PICKUP, order, payment, uow.now, uow.actor.actor_id)
            order.shipped_date = uow.now
            order.tracking_number = tracking_number or None
            order.shipped_by = shipped_by or uow.actor.actor_name or None
            self._move(uow, order, OrderStatus.PENDING_PICKUP, OrderStatus.SHIPPING,
                       OrderAction.PICKED_UP, ActorType.SHIPPER, note,
                       {"tracking_number": order.tracking_number, "shipped_by": order.shipped_by},
                       extra_fields=["shipped_date", "tracking_number", "shipped_by"])
        return order

    def deliver(self, order_id: int, actor: Optional[Actor] = None, note: str = "") -> Order:
        with self._locked(order_id, actor) as (uow, order, payment):
            self._check(WorkflowAction.DELIVER, order, payment, uow.now, uow.actor.actor_id)
            order.delivered_date = uow.now
            self._move(uow, order, OrderStatus.SHIPPING, OrderStatus.DELIVERED,
                       OrderAction.DELIVERED, ActorType.SHIPPER, note,
                       extra_fields=["delivered_date"])
        return order

    def customer_confirm(self, order_id: int, actor: Optional[Actor] = None, note: str = "") -> Order:
        with self._locked(order_id, actor) as (uow, order, payment):
            self._check(WorkflowAction.CUSTOMER_CONFIRM, order, payment, uow.now, uow.actor.actor_id)
            order.customer_confirmed_date = uow.now
            self._move(uow, order, OrderStatus.DELIVERED, OrderStatus.CUSTOMER_CONFIRMED,
                       OrderAction.CUSTOMER_CONFIRMED, ActorType.CUSTOMER, note,
                       extra_fields=["customer_confirmed_date"])
            if payment and payment.method == PaymentMethod.CASH and payment.status == PaymentStatus.PENDING:
                self._complete_cod(uow, order, payment, ActorType.SYSTEM,
                                   "Pagamento na entrega confirmado junto com o recebimento")
        return order

    def complete_cod_payment(self, order_id: int, actor: Optional[Actor] = None, note: str = "") -> Payment:
        with self._locked(order_id, actor) as (uow, order, payment):
            self._check(WorkflowAction.COMPLETE_COD_PAYMENT, order, payment, uow.now, uow.actor.actor_id)
            actor_type = ActorType.ADMIN if uow.actor.actor_id else ActorType.SYSTEM
            self._complete_cod(uow, order, payment, actor_type, note)
        return payment

    def return_order(self, order_id: int, actor: Optional[Actor] = None, reason: str = "") -> Order:
        return self._compensating_transition(
            order_id, actor, reason, WorkflowAction.RETURN, OrderStatus.RETURNED, OrderAction.RETURNED,
            cancel_pending=False,
        )

    def cancel(self, order_id: int, actor: Optional[Actor] = None, reason: str = "") -> Order:
        return self._compensating_transition(
            order_id, actor, reason, WorkflowAction.CANCEL, OrderStatus.CANCELLED, OrderAction.CANCELLED,
            cancel_pending=True,
        )

    def _compensating_transition(self, order_id, actor, reason, action, to_status, log_action,
                                 cancel_pending: bool) -> Order:
        with self._locked(order_id, actor) as (uow, order, payment):
            self._check(action, order, payment, uow.now, uow.actor.actor_id)
            from_status = order.status
            actor_type = self._owner_or_admin(order, uow.actor)

            result = self.compensation.compensate(
                uow, order, payment, cancel_pending=cancel_pending, reason=reason,
            )
            self._move(uow, order, from_status, to_status, log_action, actor_type, reason,
                       self._compensation_metadata(result, reason))
            if result.refund is not None:
                self.audit.record(
                    uow, order,
                    from_status=to_status,
                    to_status=to_status,
                    action=OrderAction.REFUNDED,
                    actor_type=ActorType.SYSTEM,
                    note=("Reembolso aguardando acerto manual" if result.manual_settlement
                          else "Reembolso processado pelo MoMo"),
                    metadata={
                        "refund_amount": str(result.refund_amount),
                        "payment_method": result.refund.method,
                        "refund_payment_id": result.refund.pk,
                        "transaction_ref": result.refund.external_transaction_id,
                        "manual_settlement": result.manual_settlement,
                    },
                )
                self._notify(uow, order, OrderAction.REFUNDED)
        return order

    # ---------- helpers de transição ----------
    def _move(self, uow: UnitOfWork, order: Order, from_status: str, to_status: str, action: str,
              actor_type: str, note: str = "", metadata: Optional[dict] = None,
              extra_fields: Optional[List[str]] = None) -> None:
        order.status = to_status
        self.orders.save(order, ["status"] + list(extra_fields or []))
        self.audit.record(
            uow, order,
            from_status=from_status,
            to_status=to_status,
            action=action,
            actor_type=actor_type,
            note=note,
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        )
        self._notify(uow, order, action, note)

    def _complete_cod(self, uow: UnitOfWork, order: Order, payment: Payment, actor_type: str, note: str):
        payment.status = PaymentStatus.COMPLETED
        payment.paid_at = uow.now
        self.payments.save(payment, ["status", "paid_at"])
        self.audit.record(
            uow, order,
            from_status=order.status,
            to_status=order.status,
            action=OrderAction.COD_COMPLETED,
            actor_type=actor_type,
            note=note,
            metadata={"payment_method": payment.method, "payment_id": payment.pk, "amount": str(payment.amount)},
        )

    @staticmethod
    def _owner_or_admin(order: Order, actor: Actor) -> str:
        if actor.actor_id is not None and actor.actor_id == order.user_id:
            return ActorType.CUSTOMER
        return ActorType.ADMIN

    @staticmethod
    def _compensation_metadata(result: CompensationResult, reason: str) -> dict:
        return {
            "reason": reason or None,
            "restored_items": [{"product_id": pid, "quantity": qty} for pid, qty in result.restored],
            "payment_status_from": result.payment_status_from or None,
            "payment_status_to": result.payment.status if result.payment else None,
        }

    def _notify(self, uow: UnitOfWork, order: Order, action: str, note: str = "") -> None:
        if not getattr(settings, "NOTIFY_ORDER_EVENTS", False):
            return
        order_id = order.pk
        uow.after_commit(lambda: self.notifier.notify(order_id, action, note))

    # ==================================================================
    # Guardas (usadas pelas transições e pela consulta de ações)
    # ==================================================================
    def return_deadline(self, order: Order) -> Optional[datetime]:
        reference = order.delivered_date or order.customer_confirmed_date
        if reference is None:
            return None
        return reference + self.return_window

    def _check(self, action: str, order: Order, payment: Optional[Payment], now: datetime,
               caller_id: Optional[int]) -> None:
        allowed = ALLOWED_FROM[action]
        if order.status not in allowed:
            raise InvalidStateTransition(
                f"Ação '{action}' não é permitida para pedido em '{order.status}'.",
                order_id=order.pk, status=order.status, action=action,
            )

        if action == WorkflowAction.CONFIRM:
            if payment is None:
                raise InvalidStateTransition("Pedido sem pagamento.", order_id=order.pk)
            if payment.method == PaymentMethod.MOMO and payment.status != PaymentStatus.COMPLETED:
                raise InvalidStateTransition(
                    "Pagamento MoMo ainda não foi concluído.",
                    order_id=order.pk, payment_status=payment.status,
                )

        elif action == WorkflowAction.CUSTOMER_CONFIRM:
            if caller_id is None or caller_id != order.user_id:
                raise NotOrderOwner(order_id=order.pk)

        elif action == WorkflowAction.COMPLETE_COD_PAYMENT:
            if payment is None or payment.method != PaymentMethod.CASH:
                raise InvalidStateTransition("Pedido não é pagamento na entrega.", order_id=order.pk)
            if payment.status != PaymentStatus.PENDING:
                raise InvalidStateTransition(
                    "Pagamento na entrega já foi processado.",
                    order_id=order.pk, payment_status=payment.status,
                )

        elif action == WorkflowAction.RETURN:
            if order.status != OrderStatus.SHIPPING:
                deadline = self.return_deadline(order)
                if deadline is None or now > deadline:
                    raise InvalidStateTransition(
                        "Prazo para devolução encerrado.",
                        order_id=order.pk, deadline=deadline.isoformat() if deadline else None,
                    )

    # ==================================================================
    # Leituras
    # ==================================================================
    def get_order(self, order_id: int) -> Order:
        return self.orders.get(order_id)

    def available_actions(self, order_id: int, user_id: Optional[int] = None, is_admin: bool = False) -> List[str]:
        order = self.orders.get(order_id)
        if not is_admin and (user_id is None or order.user_id != user_id):
            return []
        payment = self.payments.current(order)
        now = self.clock()
        candidates = ADMIN_WORKFLOW_ACTIONS if is_admin else CUSTOMER_WORKFLOW_ACTIONS
        out = []
        for action in candidates:
            try:
                self._check(action, order, payment, now, user_id)
            except OrderFlowError:
                continue
            out.append(str(action))
        return out

    def statistics(self) -> dict:
        counts = {status: 0 for status in OrderStatus.values}
        counts.update(self.orders.counts_by_status())
        return {
            "orders": {"total": sum(counts.values()), "by_status": counts},
            "payments": self.payments.totals(),
        }
