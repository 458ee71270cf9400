# tests/conftest.py — fixtures compartilhadas: catálogo, carrinho, sessão HTTP falsa do MoMo
from decimal import Decimal
from unittest import mock

import pytest
import requests

from orders.constants import PaymentMethod
from orders.models import Cart, CartLineItem, Product, ShippingMethod
from orders.momo import IPN_SIGNATURE_FIELDS, MomoConfig, MomoGateway
from orders.reconciler import PaymentReconciler
from orders.uow import Actor
from orders.workflow import OrderLifecycleOrchestrator

CUSTOMER_ID = 7
ADMIN_ID = 1


class FakeResponse:
    def __init__(self, data, status_code=200):
        self._data = data
        self.status_code = status_code

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


def momo_ok(**extra):
    data = {"resultCode": 0, "message": "Successful.", "responseTime": 1700000000000}
    data.update(extra)
    return FakeResponse(data)


@pytest.fixture
def momo_config():
    return MomoConfig(
        partner_code="MOMO",
        access_key="F8BBA842ECF85",
        secret_key="K951B6PE1waDMi640xX08PD3vg6EkVlz",
        endpoint="https://test-payment.momo.vn",
        redirect_url="http://localhost/return",
        ipn_url="http://localhost/ipn",
        timeout=5,
        max_retries=2,
    )


@pytest.fixture
def session():
    """Sessão requests falsa; cada teste define `session.post.side_effect`."""
    s = mock.MagicMock(spec=requests.Session)
    s.headers = {}

    def _post(url, json=None, timeout=None):
        if url.endswith("/create"):
            return momo_ok(
                orderId=json["orderId"],
                requestId=json["requestId"],
                amount=json["amount"],
                payUrl=f"https://test-payment.momo.vn/pay/{json['orderId']}",
                deeplink="momo://pay",
                qrCodeUrl="https://test-payment.momo.vn/qr",
            )
        if url.endswith("/query"):
            return FakeResponse({"resultCode": 1000, "message": "Pending", "orderId": json["orderId"]})
        if url.endswith("/refund"):
            return momo_ok(orderId=json["orderId"], requestId=json["requestId"],
                           amount=json["amount"], transId=990001)
        raise AssertionError(f"URL inesperada: {url}")

    s.post.side_effect = _post
    return s


@pytest.fixture
def gateway(momo_config, session):
    return MomoGateway(momo_config, session=session)


@pytest.fixture
def orchestrator(gateway):
    return OrderLifecycleOrchestrator(gateway=gateway)


@pytest.fixture
def reconciler(gateway):
    return PaymentReconciler(gateway=gateway)


@pytest.fixture
def shipping():
    return ShippingMethod.objects.create(code="standard", name="Entrega padrão", fee=Decimal("30000"))


@pytest.fixture
def products():
    return [
        Product.objects.create(name="Camiseta", sku="TS-001", price=Decimal("150000"), stock=10),
        Product.objects.create(name="Boné", sku="CP-001", price=Decimal("80000"), stock=3),
    ]


@pytest.fixture
def make_cart():
    def _make(user_id, lines):
        cart = Cart.objects.create(user_id=user_id)
        for product, qty in lines:
            CartLineItem.objects.create(
                cart=cart, product=product, quantity=qty,
                price=product.price, total=product.price * qty,
            )
        return [{"product_id": p.pk, "quantity": q, "price": p.price} for p, q in lines]
    return _make


@pytest.fixture
def customer():
    return Actor(actor_id=CUSTOMER_ID, actor_name="Cliente Teste", ip_address="10.0.0.1", user_agent="pytest")


@pytest.fixture
def admin():
    return Actor(actor_id=ADMIN_ID, actor_name="Admin")


@pytest.fixture
def shipper():
    return Actor(actor_id=50, actor_name="Transportadora X")


@pytest.fixture
def place_order(orchestrator, products, shipping, make_cart, customer):
    """Cria um pedido de 2 camisetas + 1 boné (total 410000 com frete)."""
    def _place(payment_method=PaymentMethod.CASH, lines=None):
        snapshot = make_cart(CUSTOMER_ID, lines or [(products[0], 2), (products[1], 1)])
        return orchestrator.create_order(
            user_id=CUSTOMER_ID,
            cart_snapshot=snapshot,
            address_id=3,
            shipping_method_id=shipping.pk,
            payment_method=payment_method,
            actor=customer,
        )
    return _place


@pytest.fixture
def signed_ipn(gateway):
    def _build(order_ref, amount, result_code=0, trans_id="4088878653", **overrides):
        payload = {
            "partnerCode": gateway.config.partner_code,
            "orderId": order_ref,
            "requestId": "req-" + order_ref,
            "amount": int(amount),
            "orderInfo": "Pagamento",
            "orderType": "momo_wallet",
            "transId": trans_id,
            "resultCode": result_code,
            "message": "Successful.",
            "payType": "qr",
            "responseTime": 1700000000000,
            "extraData": "",
        }
        payload.update(overrides)
        payload["signature"] = gateway.sign(
            dict(payload, accessKey=gateway.config.access_key), IPN_SIGNATURE_FIELDS
        )
        return payload
    return _build
