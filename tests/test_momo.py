from decimal import Decimal

import pytest
import requests

from orders.constants import MOMO_CREATE_PATH, MOMO_QUERY_PATH
from orders.errors import PaymentGatewayError, SignatureVerificationError, ValidationError
from orders.momo import (
    CREATE_SIGNATURE_FIELDS,
    message_for_result_code,
    new_order_ref,
    validate_amount,
)

from .conftest import FakeResponse, momo_ok


# ---------- valor ----------
@pytest.mark.parametrize("amount", [1000, Decimal("50000000"), Decimal("410000.00"), "2000"])
def test_validate_amount_accepts_integral_vnd(amount):
    assert validate_amount(amount) == int(Decimal(str(amount)))


@pytest.mark.parametrize("amount", [999, 50_000_001, Decimal("1000.50"), "abc", None, True])
def test_validate_amount_rejects(amount):
    with pytest.raises(ValidationError):
        validate_amount(amount)


def test_new_order_ref_format():
    ref = new_order_ref(42)
    prefix, order_id, millis = ref.split("_")
    assert prefix == "ORDER"
    assert order_id == "42"
    assert millis.isdigit()


def test_message_for_unknown_code():
    assert message_for_result_code(0) == "Pagamento realizado com sucesso"
    assert "desconhecido" in message_for_result_code("xyz")


# ---------- assinatura ----------
def test_sign_is_deterministic_hex_sha256(gateway):
    values = {
        "accessKey": "F8BBA842ECF85",
        "amount": 50000,
        "extraData": "",
        "ipnUrl": "https://webhook.site/b3088a6a-2d17-4f8d-a383-71389a6c600b",
        "orderId": "MOMO1540456472575",
        "orderInfo": "pay with MoMo",
        "partnerCode": "MOMO",
        "redirectUrl": "https://webhook.site/b3088a6a-2d17-4f8d-a383-71389a6c600b",
        "requestId": "MOMO1540456472575",
        "requestType": "captureWallet",
    }
    signature = gateway.sign(values, CREATE_SIGNATURE_FIELDS)
    assert len(signature) == 64
    assert signature == gateway.sign(dict(values), CREATE_SIGNATURE_FIELDS)
    assert signature != gateway.sign(dict(values, amount=50001), CREATE_SIGNATURE_FIELDS)


def test_parse_notification_accepts_valid_signature(gateway, signed_ipn):
    payload = signed_ipn("ORDER_1_1700000000000", 410000, trans_id=123)
    notification = gateway.parse_notification(payload)
    assert notification.order_ref == "ORDER_1_1700000000000"
    assert notification.transaction_ref == "123"
    assert notification.result_code == 0
    assert notification.amount == 410000


def test_parse_notification_rejects_tampered_amount(gateway, signed_ipn):
    payload = signed_ipn("ORDER_1_1700000000000", 410000)
    payload["amount"] = 1000
    with pytest.raises(SignatureVerificationError):
        gateway.parse_notification(payload)


def test_parse_notification_rejects_other_partner(gateway, signed_ipn):
    payload = signed_ipn("ORDER_1_1700000000000", 410000, partnerCode="OUTRO")
    with pytest.raises(SignatureVerificationError):
        gateway.parse_notification(payload)


@pytest.mark.parametrize("missing", ["signature", "requestId", "resultCode"])
def test_parse_notification_requires_fields(gateway, signed_ipn, missing):
    payload = signed_ipn("ORDER_1_1700000000000", 410000)
    payload.pop(missing)
    with pytest.raises(SignatureVerificationError):
        gateway.parse_notification(payload)


# ---------- chamadas HTTP ----------
def test_create_payment_intent_signs_request(gateway, session):
    intent = gateway.create_payment_intent("ORDER_9_1", Decimal("410000.00"))
    assert intent.order_ref == "ORDER_9_1"
    assert intent.amount == 410000
    assert intent.pay_url.endswith("/ORDER_9_1")

    url = session.post.call_args.args[0]
    body = session.post.call_args.kwargs["json"]
    assert url == "https://test-payment.momo.vn" + MOMO_CREATE_PATH
    assert session.post.call_args.kwargs["timeout"] == 5
    expected = gateway.sign(dict(body, accessKey=gateway.config.access_key), CREATE_SIGNATURE_FIELDS)
    assert body["signature"] == expected
    assert body["ipnUrl"] == "http://localhost/ipn"


def test_create_payment_intent_rejects_out_of_range_amount(gateway, session):
    with pytest.raises(ValidationError):
        gateway.create_payment_intent("ORDER_9_1", 500)
    session.post.assert_not_called()


def test_create_payment_intent_non_zero_result(gateway, session):
    session.post.side_effect = None
    session.post.return_value = FakeResponse({"resultCode": 41, "message": "Duplicated orderId"})
    with pytest.raises(PaymentGatewayError) as exc:
        gateway.create_payment_intent("ORDER_9_1", 10000)
    assert exc.value.context["result_code"] == 41


def test_connection_error_is_retried(gateway, session):
    session.post.side_effect = [
        requests.exceptions.ConnectionError("refused"),
        requests.exceptions.ConnectionError("refused"),
        FakeResponse({"resultCode": 0, "message": "ok", "transId": 77, "amount": 10000}),
    ]
    result = gateway.query_status("ORDER_9_1")
    assert result.result_code == 0
    assert result.transaction_ref == "77"
    assert session.post.call_count == 3


def test_connection_error_gives_up_after_max_retries(gateway, session):
    session.post.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(PaymentGatewayError):
        gateway.query_status("ORDER_9_1")
    assert session.post.call_count == 3


def test_read_timeout_is_not_retried(gateway, session):
    session.post.side_effect = requests.exceptions.ReadTimeout("slow")
    with pytest.raises(PaymentGatewayError):
        gateway.create_payment_intent("ORDER_9_1", 10000)
    assert session.post.call_count == 1


def test_invalid_json_and_server_errors(gateway, session):
    session.post.side_effect = None
    session.post.return_value = FakeResponse(ValueError("no json"), status_code=502)
    with pytest.raises(PaymentGatewayError):
        gateway.query_status("ORDER_9_1")

    session.post.return_value = FakeResponse({"message": "internal"}, status_code=500)
    with pytest.raises(PaymentGatewayError):
        gateway.query_status("ORDER_9_1")


def test_query_status_pending(gateway, session):
    result = gateway.query_status("ORDER_9_1")
    assert result.result_code == 1000
    assert session.post.call_args.args[0].endswith(MOMO_QUERY_PATH)


def test_refund_uses_new_reference(gateway, session):
    refund = gateway.refund("ORDER_9_1", "4088878653", Decimal("410000"), "cliente desistiu")
    assert refund.refund_ref.startswith("REFUND_ORDER_9_1_")
    assert refund.transaction_ref == "990001"
    body = session.post.call_args.kwargs["json"]
    assert body["transId"] == 4088878653
    assert body["description"] == "cliente desistiu"


def test_refund_requires_transaction_ref(gateway):
    with pytest.raises(ValidationError):
        gateway.refund("ORDER_9_1", "", 10000)


def test_refund_rejected(gateway, session):
    session.post.side_effect = None
    session.post.return_value = momo_ok(resultCode=1080, message="Refund failed")
    with pytest.raises(PaymentGatewayError):
        gateway.refund("ORDER_9_1", "123", 10000)
