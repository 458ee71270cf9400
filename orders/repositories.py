# orders/repositories.py — acesso a Order, Payment e Cart com travamento de linha
import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from django.db import DatabaseError
from django.db.models import Count, Sum

from .constants import CartStatus, PaymentMethod, PaymentStatus
from .errors import ConcurrencyConflict, NotFoundError
from .models import Cart, Order, OrderLineItem, Payment

logger = logging.getLogger(__name__)


class OrderRepository:
    def get(self, order_id: int) -> Order:
        order = Order.objects.select_related("shipping_method").filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f"Pedido {order_id} não encontrado.", order_id=order_id)
        return order

    def lock(self, order_id: int) -> Order:
        """Trava a linha do pedido; se outra transação já a segura, falha na hora."""
        try:
            order = Order.objects.select_for_update(nowait=True).filter(pk=order_id).first()
        except DatabaseError as exc:
            logger.warning("Pedido %s já está travado por outra operação: %s", order_id, exc)
            raise ConcurrencyConflict(order_id=order_id) from exc
        if order is None:
            raise NotFoundError(f"Pedido {order_id} não encontrado.", order_id=order_id)
        return order

    def create(self, **fields) -> Order:
        return Order.objects.create(**fields)

    def add_line_items(self, order: Order, lines: Iterable[dict]) -> List[OrderLineItem]:
        items = [
            OrderLineItem(
                order=order,
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price=line["unit_price"],
                line_total=line["unit_price"] * line["quantity"],
            )
            for line in lines
        ]
        return OrderLineItem.objects.bulk_create(items)

    def line_items(self, order: Order) -> List[OrderLineItem]:
        return list(OrderLineItem.objects.filter(order=order).select_related("product").order_by("product_id"))

    def save(self, order: Order, fields: Iterable[str]) -> None:
        order.save(update_fields=list(fields) + ["updated_at"])

    def counts_by_status(self) -> dict:
        rows = Order.objects.order_by().values("status").annotate(total=Count("id"))
        return {r["status"]: r["total"] for r in rows}


class PaymentRepository:
    def current(self, order: Order, lock: bool = False) -> Optional[Payment]:
        qs = Payment.objects.filter(order=order, parent__isnull=True)
        if lock:
            qs = qs.select_for_update()
        return qs.order_by("-id").first()

    def find_by_reference(self, order_ref: str = "", transaction_ref: str = "") -> Optional[Payment]:
        qs = Payment.objects.filter(parent__isnull=True)
        payment = None
        if order_ref:
            payment = qs.filter(order_ref=order_ref).order_by("-id").first()
        if payment is None and transaction_ref:
            payment = qs.filter(external_transaction_id=str(transaction_ref)).order_by("-id").first()
        return payment

    def lock(self, payment_id: int) -> Payment:
        return Payment.objects.select_for_update().get(pk=payment_id)

    def create(self, **fields) -> Payment:
        return Payment.objects.create(**fields)

    def save(self, payment: Payment, fields: Iterable[str]) -> None:
        payment.save(update_fields=list(fields) + ["updated_at"])

    def add_refund(self, original: Payment, *, status: str, transaction_ref: str = "",
                   paid_at: Optional[datetime] = None, gateway_response: Optional[dict] = None) -> Payment:
        return Payment.objects.create(
            order_id=original.order_id,
            parent=original,
            method=original.method,
            status=status,
            amount=-original.amount,
            order_ref=(gateway_response or {}).get("orderId", ""),
            request_id=(gateway_response or {}).get("requestId", ""),
            external_transaction_id=str(transaction_ref or ""),
            paid_at=paid_at,
            gateway_response=gateway_response or {},
        )

    def pending_momo_before(self, created_before: datetime) -> List[Payment]:
        return list(
            Payment.objects
            .filter(
                parent__isnull=True,
                method=PaymentMethod.MOMO,
                status=PaymentStatus.PENDING,
                created_at__lt=created_before,
            )
            .order_by("id")
        )

    def totals(self) -> dict:
        rows = (
            Payment.objects.order_by()
            .values("method", "status")
            .annotate(count=Count("id"), amount=Sum("amount"))
        )
        by_status, by_method = {}, {}
        for r in rows:
            amount = r["amount"] or Decimal("0")
            s = by_status.setdefault(r["status"], {"count": 0, "amount": Decimal("0")})
            s["count"] += r["count"]
            s["amount"] += amount
            m = by_method.setdefault(r["method"], {"count": 0, "amount": Decimal("0")})
            m["count"] += r["count"]
            m["amount"] += amount
        refunded = Payment.objects.filter(parent__isnull=False).aggregate(total=Sum("amount"))["total"]
        return {
            "by_status": by_status,
            "by_method": by_method,
            "refunded_total": -(refunded or Decimal("0")),
        }


class CartRepository:
    def active_for_user(self, user_id: int) -> Optional[Cart]:
        return (
            Cart.objects.select_for_update()
            .filter(user_id=user_id, status=CartStatus.ACTIVE)
            .order_by("-updated_at", "-id")
            .first()
        )

    def lines(self, cart: Cart) -> list:
        return list(cart.items.select_related("product").order_by("product_id"))

    def mark_ordered(self, cart: Cart) -> None:
        cart.status = CartStatus.ORDERED
        cart.save(update_fields=["status", "updated_at"])
