"""
Adaptador do gateway MoMo (API v2).

Assina, envia e interpreta as chamadas create / query / refund e valida a
assinatura das notificações IPN. A assinatura é um HMAC-SHA256 (hex) da string
`chave=valor&...` montada na ordem fixa de campos que o MoMo documenta.
"""

import hashlib
import hmac
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Sequence

import requests
from django.conf import settings

from .constants import (
    MOMO_CREATE_PATH,
    MOMO_MAX_AMOUNT,
    MOMO_MIN_AMOUNT,
    MOMO_QUERY_PATH,
    MOMO_REFUND_PATH,
    MOMO_RESULT_MESSAGES,
    MOMO_SUCCESS,
)
from .errors import PaymentGatewayError, SignatureVerificationError, ValidationError

logger = logging.getLogger(__name__)

CREATE_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)
QUERY_SIGNATURE_FIELDS = ("accessKey", "orderId", "partnerCode", "requestId")
REFUND_SIGNATURE_FIELDS = (
    "accessKey", "amount", "description", "orderId", "partnerCode", "requestId", "transId",
)
IPN_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo", "orderType",
    "partnerCode", "payType", "requestId", "responseTime", "resultCode", "transId",
)
IPN_REQUIRED_FIELDS = ("partnerCode", "orderId", "requestId", "amount", "resultCode", "responseTime")


@dataclass
class MomoConfig:
    """Credenciais e URLs do MoMo"""
    partner_code: str
    access_key: str
    secret_key: str
    endpoint: str = "https://test-payment.momo.vn"
    redirect_url: str = ""
    ipn_url: str = ""
    request_type: str = "payWithMethod"
    partner_name: str = "Test"
    store_id: str = "MomoTestStore"
    lang: str = "vi"
    timeout: float = 30
    max_retries: int = 3

    @classmethod
    def from_settings(cls) -> "MomoConfig":
        return cls(
            partner_code=settings.MOMO_PARTNER_CODE,
            access_key=settings.MOMO_ACCESS_KEY,
            secret_key=settings.MOMO_SECRET_KEY,
            endpoint=settings.MOMO_ENDPOINT,
            redirect_url=settings.MOMO_REDIRECT_URL,
            ipn_url=settings.MOMO_IPN_URL,
            request_type=getattr(settings, "MOMO_REQUEST_TYPE", "payWithMethod"),
            partner_name=getattr(settings, "MOMO_PARTNER_NAME", "Test"),
            store_id=getattr(settings, "MOMO_STORE_ID", "MomoTestStore"),
            lang=getattr(settings, "MOMO_LANG", "vi"),
            timeout=float(settings.MOMO_TIMEOUT),
            max_retries=int(settings.MOMO_MAX_RETRIES),
        )


@dataclass
class PaymentIntent:
    """Resposta do create: links para o cliente pagar"""
    order_ref: str
    request_id: str
    amount: int
    pay_url: str
    deeplink: str = ""
    qr_code_url: str = ""
    transaction_ref: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryResult:
    order_ref: str
    result_code: int
    message: str
    transaction_ref: str = ""
    amount: Optional[int] = None
    pay_type: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    refund_ref: str
    request_id: str
    transaction_ref: str
    amount: int
    result_code: int
    message: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayNotification:
    """Notificação (IPN ou consulta) já normalizada"""
    order_ref: str
    transaction_ref: str
    result_code: int
    amount: Optional[int]
    message: str = ""
    pay_type: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


def message_for_result_code(code) -> str:
    try:
        return MOMO_RESULT_MESSAGES.get(int(code), f"Código de retorno desconhecido: {code}")
    except (TypeError, ValueError):
        return f"Código de retorno desconhecido: {code}"


def new_order_ref(order_id: int) -> str:
    return f"ORDER_{order_id}_{int(time.time() * 1000)}"


def _to_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_amount(amount) -> int:
    """Valor em VND: inteiro dentro da faixa aceita pelo MoMo."""
    if isinstance(amount, bool):
        raise ValidationError("Valor do pagamento inválido.", amount=str(amount))
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Valor do pagamento inválido.", amount=str(amount))
    if value != value.to_integral_value():
        raise ValidationError("O valor do pagamento MoMo deve ser inteiro.", amount=str(amount))
    value = int(value)
    if value < MOMO_MIN_AMOUNT or value > MOMO_MAX_AMOUNT:
        raise ValidationError(
            f"O valor deve estar entre {MOMO_MIN_AMOUNT} e {MOMO_MAX_AMOUNT}.",
            amount=value,
        )
    return value


class MomoGateway:
    """Cliente HTTP do MoMo com timeout em toda chamada."""

    def __init__(self, config: MomoConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self._setup_session()

    def _setup_session(self):
        self.session.headers.update({
            "User-Agent": "OrderFlow-Momo/1.0",
            "Content-Type": "application/json; charset=UTF-8",
            "Accept": "application/json",
        })

    # ---------- assinatura ----------
    def sign(self, values: Dict[str, Any], fields: Sequence[str]) -> str:
        raw = "&".join(f"{name}={self._text(values.get(name))}" for name in fields)
        return hmac.new(
            self.config.secret_key.encode("utf-8"),
            raw.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    @staticmethod
    def _text(value) -> str:
        return "" if value is None else str(value)

    def verify_signature(self, payload: Dict[str, Any]) -> bool:
        received = payload.get("signature")
        if not received or not isinstance(received, str):
            return False
        # accessKey não vem no IPN: entra na string a partir da nossa configuração
        values = dict(payload, accessKey=self.config.access_key)
        if any(payload.get(name) in (None, "") for name in IPN_REQUIRED_FIELDS):
            return False
        expected = self.sign(values, IPN_SIGNATURE_FIELDS)
        return hmac.compare_digest(expected, received)

    def parse_notification(self, payload: Dict[str, Any]) -> GatewayNotification:
        """Valida a assinatura e normaliza o IPN."""
        if not isinstance(payload, dict):
            raise SignatureVerificationError("Notificação vazia ou mal formada.")
        if payload.get("partnerCode") != self.config.partner_code:
            raise SignatureVerificationError(
                "partnerCode da notificação não confere.", order_ref=payload.get("orderId", "")
            )
        if not self.verify_signature(payload):
            raise SignatureVerificationError(order_ref=payload.get("orderId", ""))
        result_code = _to_int(payload.get("resultCode"))
        if result_code is None:
            raise SignatureVerificationError("resultCode ausente.", order_ref=payload.get("orderId", ""))
        return GatewayNotification(
            order_ref=str(payload.get("orderId") or ""),
            transaction_ref=self._text(payload.get("transId")),
            result_code=result_code,
            amount=_to_int(payload.get("amount")),
            message=self._text(payload.get("message")),
            pay_type=self._text(payload.get("payType")),
            raw=dict(payload),
        )

    # ---------- operações ----------
    def create_payment_intent(self, order_ref: str, amount, redirect_url: Optional[str] = None,
                              ipn_url: Optional[str] = None, order_info: str = "",
                              extra_data: str = "") -> PaymentIntent:
        amount = validate_amount(amount)
        request_id = uuid.uuid4().hex
        body = {
            "partnerCode": self.config.partner_code,
            "partnerName": self.config.partner_name,
            "storeId": self.config.store_id,
            "requestId": request_id,
            "amount": amount,
            "orderId": order_ref,
            "orderInfo": order_info or f"Pagamento do pedido {order_ref}",
            "redirectUrl": redirect_url or self.config.redirect_url,
            "ipnUrl": ipn_url or self.config.ipn_url,
            "lang": self.config.lang,
            "requestType": self.config.request_type,
            "autoCapture": True,
            "extraData": extra_data,
            "orderGroupId": "",
        }
        body["signature"] = self.sign(dict(body, accessKey=self.config.access_key), CREATE_SIGNATURE_FIELDS)

        data = self._post(MOMO_CREATE_PATH, body)
        result_code = _to_int(data.get("resultCode"))
        if result_code != MOMO_SUCCESS:
            logger.error("MoMo recusou a criação do pagamento %s: %s", order_ref, data)
            raise PaymentGatewayError(
                data.get("message") or message_for_result_code(result_code),
                order_ref=order_ref, result_code=result_code,
            )
        logger.info("Pagamento MoMo criado: orderId=%s amount=%s", order_ref, amount)
        return PaymentIntent(
            order_ref=order_ref,
            request_id=request_id,
            amount=amount,
            pay_url=data.get("payUrl", ""),
            deeplink=data.get("deeplink", ""),
            qr_code_url=data.get("qrCodeUrl", ""),
            transaction_ref=self._text(data.get("transId")),
            raw=data,
        )

    def query_status(self, order_ref: str) -> QueryResult:
        request_id = uuid.uuid4().hex
        body = {
            "partnerCode": self.config.partner_code,
            "requestId": request_id,
            "orderId": order_ref,
            "lang": self.config.lang,
        }
        body["signature"] = self.sign(dict(body, accessKey=self.config.access_key), QUERY_SIGNATURE_FIELDS)

        data = self._post(MOMO_QUERY_PATH, body)
        result_code = _to_int(data.get("resultCode"))
        if result_code is None:
            raise PaymentGatewayError("Resposta da consulta sem resultCode.", order_ref=order_ref)
        return QueryResult(
            order_ref=order_ref,
            result_code=result_code,
            message=data.get("message") or message_for_result_code(result_code),
            transaction_ref=self._text(data.get("transId")),
            amount=_to_int(data.get("amount")),
            pay_type=self._text(data.get("payType")),
            raw=data,
        )

    def refund(self, order_ref: str, transaction_ref: str, amount, reason: str = "") -> RefundResult:
        """
        Estorna uma transação. O MoMo exige um orderId novo para cada estorno,
        então o pedido vai como REFUND_<orderId original>_<ms>.
        """
        amount = validate_amount(amount)
        if not transaction_ref:
            raise ValidationError("transId é obrigatório para o estorno.", order_ref=order_ref)
        refund_ref = f"REFUND_{order_ref}_{int(time.time() * 1000)}"
        request_id = uuid.uuid4().hex
        body = {
            "partnerCode": self.config.partner_code,
            "orderId": refund_ref,
            "requestId": request_id,
            "amount": amount,
            "transId": int(transaction_ref) if str(transaction_ref).isdigit() else transaction_ref,
            "lang": self.config.lang,
            "description": reason or f"Estorno do pedido {order_ref}",
        }
        body["signature"] = self.sign(dict(body, accessKey=self.config.access_key), REFUND_SIGNATURE_FIELDS)

        data = self._post(MOMO_REFUND_PATH, body)
        result_code = _to_int(data.get("resultCode"))
        if result_code != MOMO_SUCCESS:
            logger.error("MoMo recusou o estorno de %s: %s", order_ref, data)
            raise PaymentGatewayError(
                data.get("message") or message_for_result_code(result_code),
                order_ref=order_ref, result_code=result_code,
            )
        logger.info("Estorno MoMo concluído: %s -> %s (transId=%s)", order_ref, refund_ref, data.get("transId"))
        return RefundResult(
            refund_ref=refund_ref,
            request_id=request_id,
            transaction_ref=self._text(data.get("transId")),
            amount=amount,
            result_code=result_code,
            message=data.get("message", ""),
            raw=data,
        )

    # ---------- HTTP ----------
    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST com timeout. Só repete quando a conexão nem chegou ao MoMo;
        timeout de leitura vira erro na hora (a chamada pode ter sido processada).
        """
        url = self.config.endpoint.rstrip("/") + path
        attempts = max(0, self.config.max_retries) + 1
        for attempt in range(attempts):
            try:
                response = self.session.post(url, json=body, timeout=self.config.timeout)
            except requests.exceptions.ConnectionError as e:
                logger.warning("Tentativa %s falhou para %s: %s", attempt + 1, url, e)
                if attempt == attempts - 1:
                    raise PaymentGatewayError(
                        f"MoMo indisponível após {attempts} tentativas.", path=path
                    ) from e
                continue
            except requests.exceptions.Timeout as e:
                logger.error("Timeout ao chamar %s: %s", url, e)
                raise PaymentGatewayError("Tempo esgotado na chamada ao MoMo.", path=path) from e
            except requests.exceptions.RequestException as e:
                logger.error("Erro ao chamar %s: %s", url, e)
                raise PaymentGatewayError(str(e), path=path) from e

            try:
                data = response.json()
            except ValueError as e:
                raise PaymentGatewayError(
                    f"Resposta inválida do MoMo (HTTP {response.status_code}).", path=path
                ) from e
            if not isinstance(data, dict):
                raise PaymentGatewayError("Resposta inesperada do MoMo.", path=path)
            if response.status_code >= 500:
                raise PaymentGatewayError(
                    data.get("message") or f"MoMo respondeu HTTP {response.status_code}.", path=path
                )
            return data
        raise PaymentGatewayError(f"Falha após {attempts} tentativas", path=path)
