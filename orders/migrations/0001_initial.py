import django.core.serializers.json
import django.db.models.deletion
from django.db import migrations, models

ORDER_STATUS_CHOICES = [
    ("pending_confirmation", "Aguardando confirmação"),
    ("pending_pickup", "Aguardando coleta"),
    ("shipping", "Em transporte"),
    ("delivered", "Entregue"),
    ("customer_confirmed", "Recebimento confirmado"),
    ("returned", "Devolvido"),
    ("cancelled", "Cancelado"),
]


def money():
    return models.DecimalField(decimal_places=2, default=0, max_digits=14)


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ShippingMethod",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=40, unique=True)),
                ("name", models.CharField(max_length=120)),
                ("fee", money()),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("sku", models.CharField(max_length=40, unique=True)),
                ("price", money()),
                ("stock", models.PositiveIntegerField(default=0)),
                ("sold_count", models.PositiveIntegerField(default=0)),
                ("min_stock_threshold", models.PositiveIntegerField(default=5)),
                ("inventory_type", models.CharField(
                    choices=[("in_stock", "Em estoque"), ("low_stock", "Estoque baixo"), ("out_of_stock", "Esgotado")],
                    default="out_of_stock", max_length=20,
                )),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["-id"]},
        ),
        migrations.CreateModel(
            name="Cart",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.PositiveIntegerField(db_index=True)),
                ("status", models.CharField(
                    choices=[("active", "Ativo"), ("inactive", "Inativo"), ("ordered", "Convertido em pedido")],
                    default="active", max_length=20,
                )),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["-updated_at"]},
        ),
        migrations.CreateModel(
            name="CartLineItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("price", money()),
                ("total", money()),
                ("cart", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.cart",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="cart_items", to="orders.product",
                )),
            ],
            options={"unique_together": {("cart", "product")}},
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.PositiveIntegerField(db_index=True)),
                ("address_id", models.PositiveIntegerField()),
                ("status", models.CharField(
                    choices=ORDER_STATUS_CHOICES, db_index=True, default="pending_confirmation", max_length=30,
                )),
                ("subtotal", money()),
                ("discount_amount", money()),
                ("shipping_fee", money()),
                ("total_amount", money()),
                ("coupon_code", models.CharField(blank=True, default="", max_length=60)),
                ("ordered_date", models.DateTimeField()),
                ("shipped_date", models.DateTimeField(blank=True, null=True)),
                ("delivered_date", models.DateTimeField(blank=True, null=True)),
                ("customer_confirmed_date", models.DateTimeField(blank=True, null=True)),
                ("tracking_number", models.CharField(blank=True, max_length=120, null=True)),
                ("shipped_by", models.CharField(blank=True, max_length=120, null=True)),
                ("note", models.TextField(blank=True, default="")),
                ("compensated_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("shipping_method", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="orders", to="orders.shippingmethod",
                )),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="OrderLineItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("unit_price", money()),
                ("line_total", money()),
                ("order", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.order",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="order_items", to="orders.product",
                )),
            ],
            options={"ordering": ["product_id"]},
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("method", models.CharField(
                    choices=[("cash", "Pagamento na entrega"), ("momo", "MoMo")], max_length=20,
                )),
                ("status", models.CharField(
                    choices=[
                        ("pending", "Pendente"),
                        ("completed", "Concluído"),
                        ("failed", "Falhou"),
                        ("cancelled", "Cancelado"),
                        ("expired", "Expirado"),
                        ("refunded", "Reembolsado"),
                    ],
                    db_index=True, default="pending", max_length=20,
                )),
                ("amount", money()),
                ("order_ref", models.CharField(blank=True, db_index=True, default="", max_length=120)),
                ("request_id", models.CharField(blank=True, default="", max_length=120)),
                ("external_transaction_id", models.CharField(blank=True, db_index=True, default="", max_length=120)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("gateway_response", models.JSONField(
                    blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder,
                )),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("order", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="payments", to="orders.order",
                )),
                ("parent", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="refunds", to="orders.payment",
                )),
            ],
            options={"ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="OrderLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("from_status", models.CharField(blank=True, choices=ORDER_STATUS_CHOICES, max_length=30, null=True)),
                ("to_status", models.CharField(choices=ORDER_STATUS_CHOICES, max_length=30)),
                ("action", models.CharField(
                    choices=[
                        ("created", "Pedido criado"),
                        ("confirmed", "Pedido confirmado"),
                        ("picked_up", "Coletado"),
                        ("delivered", "Entregue"),
                        ("customer_confirmed", "Cliente confirmou o recebimento"),
                        ("returned", "Devolvido"),
                        ("cancelled", "Cancelado"),
                        ("cod_completed", "Pagamento na entrega recebido"),
                        ("payment_completed", "Pagamento concluído"),
                        ("payment_failed", "Pagamento falhou"),
                        ("payment_cancelled", "Pagamento cancelado"),
                        ("payment_expired", "Pagamento expirado"),
                        ("refunded", "Reembolsado"),
                    ],
                    db_index=True, max_length=30,
                )),
                ("actor_type", models.CharField(
                    choices=[
                        ("system", "Sistema"),
                        ("admin", "Administrador"),
                        ("customer", "Cliente"),
                        ("shipper", "Entregador"),
                        ("payment_gateway", "Gateway de pagamento"),
                    ],
                    max_length=20,
                )),
                ("actor_id", models.PositiveIntegerField(blank=True, null=True)),
                ("actor_name", models.CharField(blank=True, default="", max_length=255)),
                ("note", models.TextField(blank=True, default="")),
                ("metadata", models.JSONField(
                    blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder,
                )),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.CharField(blank=True, default="", max_length=500)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("order", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="logs", to="orders.order",
                )),
            ],
            options={"ordering": ["created_at", "id"]},
        ),
        migrations.CreateModel(
            name="PaymentNotification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source", models.CharField(
                    choices=[("ipn", "IPN"), ("poll", "Consulta"), ("sweep", "Expiração automática")],
                    max_length=10,
                )),
                ("order_ref", models.CharField(blank=True, db_index=True, default="", max_length=120)),
                ("transaction_ref", models.CharField(blank=True, default="", max_length=120)),
                ("result_code", models.IntegerField(blank=True, null=True)),
                ("payload", models.JSONField(
                    blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder,
                )),
                ("outcome", models.CharField(
                    choices=[
                        ("applied", "Aplicada"),
                        ("duplicate", "Repetida"),
                        ("ignored", "Ignorada"),
                        ("rejected", "Rejeitada"),
                        ("failed", "Falhou"),
                        ("needs_refund", "Requer estorno"),
                    ],
                    max_length=20,
                )),
                ("error", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"ordering": ["-created_at"]},
        ),
    ]
