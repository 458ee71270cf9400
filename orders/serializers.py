# orders/serializers.py — entrada (camelCase, como o front envia) e leitura de pedidos/pagamentos/histórico
from rest_framework import serializers

from .constants import PaymentMethod
from .models import Order, OrderLineItem, OrderLog, Payment


# ===========================
#  ENTRADA
# ===========================
class CartSnapshotItemSerializer(serializers.Serializer):
    productId = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)


class OrderCreateSerializer(serializers.Serializer):
    userId = serializers.IntegerField(min_value=1)
    addressId = serializers.IntegerField(min_value=1)
    shippingMethodId = serializers.IntegerField(min_value=1)
    paymentMethod = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    couponCode = serializers.CharField(max_length=60, required=False, allow_blank=True, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, default="")
    redirectUrl = serializers.URLField(required=False, allow_blank=True)
    cartSnapshot = CartSnapshotItemSerializer(many=True, allow_empty=False)

    def to_command(self) -> dict:
        data = self.validated_data
        return {
            "user_id": data["userId"],
            "address_id": data["addressId"],
            "shipping_method_id": data["shippingMethodId"],
            "payment_method": data["paymentMethod"],
            "coupon_code": data.get("couponCode") or None,
            "note": data.get("note") or "",
            "redirect_url": data.get("redirectUrl") or None,
            "cart_snapshot": [
                {"product_id": it["productId"], "quantity": it["quantity"], "price": it["price"]}
                for it in data["cartSnapshot"]
            ],
        }


class WorkflowActionSerializer(serializers.Serializer):
    actorId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    actorName = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    note = serializers.CharField(required=False, allow_blank=True, default="")
    # pickup
    trackingNumber = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=120)
    shippedBy = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=120)
    # return / cancel
    reason = serializers.CharField(required=False, allow_blank=True, default="")


# ===========================
#  LEITURA
# ===========================
class OrderLineItemReadSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    sku = serializers.CharField(source="product.sku", read_only=True)

    class Meta:
        model = OrderLineItem
        fields = ("id", "product_id", "product_name", "sku", "quantity", "unit_price", "line_total")


class PaymentReadSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = (
            "id",
            "parent_id",
            "method",
            "status",
            "amount",
            "order_ref",
            "external_transaction_id",
            "paid_at",
            "created_at",
            "updated_at",
        )


class OrderReadSerializer(serializers.ModelSerializer):
    items = OrderLineItemReadSerializer(many=True, read_only=True)
    payments = PaymentReadSerializer(many=True, read_only=True)
    shipping_method = serializers.CharField(source="shipping_method.name", read_only=True)

    class Meta:
        model = Order
        fields = (
            "id",
            "user_id",
            "address_id",
            "shipping_method_id",
            "shipping_method",
            "status",
            "subtotal",
            "discount_amount",
            "shipping_fee",
            "total_amount",
            "coupon_code",
            "ordered_date",
            "shipped_date",
            "delivered_date",
            "customer_confirmed_date",
            "tracking_number",
            "shipped_by",
            "note",
            "items",
            "payments",
            "created_at",
            "updated_at",
        )


class OrderLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderLog
        fields = (
            "id",
            "order_id",
            "from_status",
            "to_status",
            "action",
            "actor_type",
            "actor_id",
            "actor_name",
            "note",
            "metadata",
            "created_at",
        )
