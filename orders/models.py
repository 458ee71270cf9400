# orders/models.py — Product, Cart, Order, OrderLineItem, Payment, OrderLog e PaymentNotification
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from .constants import (
    ActorType,
    CartStatus,
    InventoryType,
    NotificationOutcome,
    NotificationSource,
    OrderAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from .errors import AuditTrailImmutable


def money_field(**kwargs):
    kwargs.setdefault("default", 0)
    return models.DecimalField(max_digits=14, decimal_places=2, **kwargs)


# --------- Frete ---------
class ShippingMethod(models.Model):
    code = models.CharField(max_length=40, unique=True)
    name = models.CharField(max_length=120)
    fee = money_field()
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


# --------- Produtos (parte de estoque) ---------
class Product(models.Model):
    name = models.CharField(max_length=255)
    sku = models.CharField(max_length=40, unique=True)
    price = money_field()

    stock = models.PositiveIntegerField(default=0)
    sold_count = models.PositiveIntegerField(default=0)
    min_stock_threshold = models.PositiveIntegerField(default=5)
    # recalculado junto com o estoque (ver orders/inventory.py)
    inventory_type = models.CharField(
        max_length=20, choices=InventoryType.choices, default=InventoryType.OUT_OF_STOCK
    )
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-id"]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    @staticmethod
    def tier_for(stock, min_stock_threshold):
        if stock <= 0:
            return InventoryType.OUT_OF_STOCK
        if stock <= min_stock_threshold:
            return InventoryType.LOW_STOCK
        return InventoryType.IN_STOCK

    def save(self, *args, **kwargs):
        # cadastro/edição manual: mantém o tier coerente com o estoque
        self.inventory_type = self.tier_for(self.stock, self.min_stock_threshold)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "stock" in update_fields:
            kwargs["update_fields"] = set(update_fields) | {"inventory_type"}
        super().save(*args, **kwargs)


# --------- Carrinho (servidor) ---------
class Cart(models.Model):
    user_id = models.PositiveIntegerField(db_index=True)
    status = models.CharField(max_length=20, choices=CartStatus.choices, default=CartStatus.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]

    def __str__(self):
        return f"Carrinho #{self.pk} (usuário {self.user_id})"


class CartLineItem(models.Model):
    cart = models.ForeignKey(Cart, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(Product, related_name="cart_items", on_delete=models.CASCADE)
    quantity = models.PositiveIntegerField(default=1)
    price = money_field()
    total = money_field()

    class Meta:
        unique_together = [("cart", "product")]

    def __str__(self):
        return f"{self.quantity}x {self.product_id} no carrinho #{self.cart_id}"


# --------- Pedidos ---------
class Order(models.Model):
    user_id = models.PositiveIntegerField(db_index=True)
    address_id = models.PositiveIntegerField()
    shipping_method = models.ForeignKey(
        ShippingMethod, related_name="orders", on_delete=models.PROTECT
    )
    status = models.CharField(
        max_length=30, choices=OrderStatus.choices, default=OrderStatus.PENDING_CONFIRMATION, db_index=True
    )

    subtotal = money_field()
    discount_amount = money_field()
    shipping_fee = money_field()
    total_amount = money_field()
    coupon_code = models.CharField(max_length=60, blank=True, default="")

    ordered_date = models.DateTimeField()
    shipped_date = models.DateTimeField(null=True, blank=True)
    delivered_date = models.DateTimeField(null=True, blank=True)
    customer_confirmed_date = models.DateTimeField(null=True, blank=True)
    tracking_number = models.CharField(max_length=120, null=True, blank=True)
    shipped_by = models.CharField(max_length=120, null=True, blank=True)
    note = models.TextField(blank=True, default="")

    # preenchido uma única vez, quando estoque/pagamento são devolvidos
    compensated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Pedido #{self.id} ({self.status})"


class OrderLineItem(models.Model):
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(Product, related_name="order_items", on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField(default=1)
    # preço à época do pedido, nunca recalculado
    unit_price = money_field()
    line_total = money_field()

    class Meta:
        ordering = ["product_id"]

    def __str__(self):
        return f"{self.quantity}x {self.product_id} no Pedido #{self.order_id}"


# --------- Pagamentos ---------
class Payment(models.Model):
    """
    Livro de pagamentos do pedido.

    A linha com parent nulo é o pagamento corrente. Um estorno nunca altera o
    valor dessa linha: vira uma nova linha com valor negativo apontando para ela.
    """
    order = models.ForeignKey(Order, related_name="payments", on_delete=models.CASCADE)
    parent = models.ForeignKey(
        "self", related_name="refunds", on_delete=models.PROTECT, null=True, blank=True
    )
    method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    amount = money_field()

    # referência enviada ao gateway (orderId do MoMo) e id devolvido por ele (transId)
    order_ref = models.CharField(max_length=120, blank=True, default="", db_index=True)
    request_id = models.CharField(max_length=120, blank=True, default="")
    external_transaction_id = models.CharField(max_length=120, blank=True, default="", db_index=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"Pagamento #{self.id} {self.method} {self.amount} ({self.status})"

    @property
    def is_refund(self):
        return self.parent_id is not None


# --------- Histórico (somente inserção) ---------
class OrderLogQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise AuditTrailImmutable()

    def delete(self):
        raise AuditTrailImmutable()


class OrderLog(models.Model):
    order = models.ForeignKey(Order, related_name="logs", on_delete=models.PROTECT)
    from_status = models.CharField(max_length=30, choices=OrderStatus.choices, null=True, blank=True)
    to_status = models.CharField(max_length=30, choices=OrderStatus.choices)
    action = models.CharField(max_length=30, choices=OrderAction.choices, db_index=True)

    actor_type = models.CharField(max_length=20, choices=ActorType.choices)
    actor_id = models.PositiveIntegerField(null=True, blank=True)
    actor_name = models.CharField(max_length=255, blank=True, default="")

    note = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=500, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    objects = OrderLogQuerySet.as_manager()

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"Pedido #{self.order_id}: {self.from_status or '-'} -> {self.to_status} ({self.action})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise AuditTrailImmutable()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AuditTrailImmutable()


# --------- Notificações do gateway (para conciliação manual) ---------
class PaymentNotification(models.Model):
    source = models.CharField(max_length=10, choices=NotificationSource.choices)
    order_ref = models.CharField(max_length=120, blank=True, default="", db_index=True)
    transaction_ref = models.CharField(max_length=120, blank=True, default="")
    result_code = models.IntegerField(null=True, blank=True)
    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    outcome = models.CharField(max_length=20, choices=NotificationOutcome.choices)
    error = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.source} {self.order_ref} [{self.outcome}]"
