# orders/admin.py
from django.contrib import admin

from .models import (
    Cart,
    CartLineItem,
    Order,
    OrderLineItem,
    OrderLog,
    Payment,
    PaymentNotification,
    Product,
    ShippingMethod,
)


# ===============================
# Catálogo mínimo / frete
# ===============================
@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "sku", "price", "stock", "sold_count", "inventory_type", "is_active")
    list_filter = ("inventory_type", "is_active")
    search_fields = ("name", "sku")
    readonly_fields = ("inventory_type", "sold_count")


@admin.register(ShippingMethod)
class ShippingMethodAdmin(admin.ModelAdmin):
    list_display = ("id", "code", "name", "fee", "is_active")


class CartLineItemInline(admin.TabularInline):
    model = CartLineItem
    extra = 0


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ("id", "user_id", "status", "updated_at")
    list_filter = ("status",)
    inlines = [CartLineItemInline]


# ===============================
# Order / itens / pagamentos / histórico
# ===============================
class OrderLineItemInline(admin.TabularInline):
    model = OrderLineItem
    extra = 0
    readonly_fields = ("product", "quantity", "unit_price", "line_total")
    can_delete = False


class PaymentInline(admin.TabularInline):
    model = Payment
    fk_name = "order"
    extra = 0
    fields = ("method", "status", "amount", "order_ref", "external_transaction_id", "paid_at", "parent")
    readonly_fields = fields
    can_delete = False


class OrderLogInline(admin.TabularInline):
    model = OrderLog
    extra = 0
    fields = ("created_at", "action", "from_status", "to_status", "actor_type", "actor_name", "note")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "user_id", "status", "total_amount", "ordered_date", "tracking_number")
    list_filter = ("status",)
    search_fields = ("id", "tracking_number")
    # status só muda pelo fluxo (orders/workflow.py), nunca pelo admin
    readonly_fields = (
        "status", "subtotal", "discount_amount", "shipping_fee", "total_amount",
        "ordered_date", "shipped_date", "delivered_date", "customer_confirmed_date",
        "compensated_at",
    )
    inlines = [OrderLineItemInline, PaymentInline, OrderLogInline]


@admin.register(OrderLog)
class OrderLogAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "action", "from_status", "to_status", "actor_type", "actor_name", "created_at")
    list_filter = ("action", "actor_type")
    search_fields = ("order__id", "actor_name", "note")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PaymentNotification)
class PaymentNotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "source", "order_ref", "result_code", "outcome", "created_at")
    list_filter = ("source", "outcome")
    search_fields = ("order_ref", "transaction_ref")
    readonly_fields = ("source", "order_ref", "transaction_ref", "result_code", "payload", "outcome", "error")
