# orders/payments.py — MoMo: IPN (webhook), consulta ativa e retorno do navegador
import logging
from urllib.parse import urlencode

from django.conf import settings
from django.http import HttpRequest, HttpResponseRedirect, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny

from . import services
from .momo import message_for_result_code
from .views import handle_order_errors

logger = logging.getLogger(__name__)


@csrf_exempt
@api_view(["POST"])
@permission_classes([AllowAny])
def momo_ipn(request: HttpRequest):
    """
    Webhook do MoMo.
    - Sempre responde 200: assinatura inválida ou erro interno ficam gravados
      em PaymentNotification e não fazem o MoMo reenviar sem parar.
    """
    payload = request.data if isinstance(request.data, dict) else {}
    ack = services.build_reconciler().handle_ipn(dict(payload))
    return JsonResponse(ack, status=200)


@api_view(["POST"])
@permission_classes([AllowAny])
@handle_order_errors
def momo_query(request: HttpRequest, order_id: int):
    """Consulta o status no MoMo e aplica a mesma regra do IPN."""
    result = services.build_reconciler().poll(order_id)
    return JsonResponse({
        "orderId": order_id,
        "orderRef": result.payment.order_ref,
        "outcome": result.outcome,
        "previousStatus": result.previous_status,
        "paymentStatus": result.status,
    })


@api_view(["GET"])
@permission_classes([AllowAny])
def momo_return(request: HttpRequest):
    """
    Volta do navegador depois do pagamento. Não altera nada: o status só muda
    por IPN ou consulta. Só redireciona para o front com o resultado.
    """
    qp = request.query_params
    order_ref = qp.get("orderId", "")
    result_code = qp.get("resultCode", "")
    logger.info("Retorno MoMo: orderId=%s resultCode=%s", order_ref, result_code)
    query = urlencode({
        "orderRef": order_ref,
        "resultCode": result_code,
        "message": message_for_result_code(result_code),
    })
    return HttpResponseRedirect(f"{settings.FRONTEND_URL.rstrip('/')}/payment/momo/result?{query}")
