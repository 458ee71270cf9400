# orders/views.py — criação de pedido, ações do fluxo, histórico/timeline e estatísticas
import functools
import logging

from django.http import HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from rest_framework import generics
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny

from . import services
from .audit import AuditTrail
from .errors import OrderFlowError, ValidationError
from .filters import OrderLogFilter
from .models import Order
from .serializers import (
    OrderCreateSerializer,
    OrderLogSerializer,
    OrderReadSerializer,
    WorkflowActionSerializer,
)
from .uow import Actor
from .workflow import CheckoutResult

logger = logging.getLogger(__name__)


# -------------------------------------------------
# Helpers
# -------------------------------------------------
def handle_order_errors(view):
    """Converte os erros do fluxo em JSON com o status HTTP de cada erro."""
    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except OrderFlowError as e:
            if e.status_code >= 500:
                logger.error("Erro em %s: %s", request.path, e.detail)
            else:
                logger.info("Requisição recusada em %s: %s", request.path, e.detail)
            return JsonResponse(e.as_dict(), status=e.status_code)
    return wrapper


def _client_ip(request: HttpRequest):
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.META.get("REMOTE_ADDR") or None


def _actor(request: HttpRequest, actor_id=None, actor_name="") -> Actor:
    return Actor(
        actor_id=actor_id,
        actor_name=actor_name or "",
        ip_address=_client_ip(request),
        user_agent=request.META.get("HTTP_USER_AGENT", ""),
    )


def _invalid(serializer) -> JsonResponse:
    return JsonResponse({"detail": "Dados inválidos.", "errors": serializer.errors}, status=400)


def _as_bool(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "sim")


def _checkout_payload(result: CheckoutResult) -> dict:
    data = {"order": OrderReadSerializer(result.order).data}
    if result.intent is not None:
        data["payment"] = {
            "method": result.payment.method,
            "orderRef": result.intent.order_ref,
            "payUrl": result.intent.pay_url,
            "deeplink": result.intent.deeplink,
            "qrCodeUrl": result.intent.qr_code_url,
            "amount": result.intent.amount,
        }
    else:
        data["payment"] = {"method": result.payment.method}
    return data


# -------------------------------------------------
# Pedido
# -------------------------------------------------
@api_view(["POST"])
@permission_classes([AllowAny])
@handle_order_errors
def order_create(request):
    """
    POST /api/orders/
    Body: { userId, addressId, shippingMethodId, paymentMethod, couponCode?, note?,
            cartSnapshot: [ { productId, quantity, price } ] }
    """
    ser = OrderCreateSerializer(data=request.data)
    if not ser.is_valid():
        return _invalid(ser)
    command = ser.to_command()
    actor = _actor(request, actor_id=command["user_id"])
    result = services.build_orchestrator().create_order(actor=actor, **command)
    return JsonResponse(_checkout_payload(result), status=201)


@api_view(["GET"])
@permission_classes([AllowAny])
@handle_order_errors
def order_detail(request, pk: int):
    order = services.build_orchestrator().get_order(pk)
    return JsonResponse(OrderReadSerializer(order).data)


@api_view(["GET"])
@permission_classes([AllowAny])
@handle_order_errors
def order_available_actions(request, pk: int):
    """GET /api/orders/<id>/workflow/?userId=&isAdmin="""
    qp = request.query_params
    user_id = qp.get("userId")
    try:
        user_id = int(user_id) if user_id not in (None, "") else None
    except ValueError:
        raise ValidationError("userId inválido.")
    svc = services.build_orchestrator()
    order = svc.get_order(pk)
    actions = svc.available_actions(pk, user_id=user_id, is_admin=_as_bool(qp.get("isAdmin")))
    return JsonResponse({"orderId": order.pk, "status": order.status, "availableActions": actions})


WORKFLOW_HANDLERS = {
    "confirm": lambda svc, pk, actor, d: svc.confirm(pk, actor, note=d["note"]),
    "pickup": lambda svc, pk, actor, d: svc.pickup(
        pk, actor, tracking_number=d.get("trackingNumber"), shipped_by=d.get("shippedBy"), note=d["note"],
    ),
    "deliver": lambda svc, pk, actor, d: svc.deliver(pk, actor, note=d["note"]),
    "customer-confirm": lambda svc, pk, actor, d: svc.customer_confirm(pk, actor, note=d["note"]),
    "complete-cod-payment": lambda svc, pk, actor, d: svc.complete_cod_payment(pk, actor, note=d["note"]),
    "return": lambda svc, pk, actor, d: svc.return_order(pk, actor, reason=d["reason"] or d["note"]),
    "cancel": lambda svc, pk, actor, d: svc.cancel(pk, actor, reason=d["reason"] or d["note"]),
}


@api_view(["POST"])
@permission_classes([AllowAny])
@handle_order_errors
def order_workflow_action(request, pk: int, action: str):
    """
    POST /api/orders/<id>/workflow/<action>/
    Body: { actorId?, actorName?, note?, trackingNumber?, shippedBy?, reason? }
    """
    handler = WORKFLOW_HANDLERS.get(action)
    if handler is None:
        return JsonResponse({"detail": f"Ação desconhecida: {action}"}, status=404)
    ser = WorkflowActionSerializer(data=request.data)
    if not ser.is_valid():
        return _invalid(ser)
    data = ser.validated_data
    actor = _actor(request, actor_id=data.get("actorId"), actor_name=data.get("actorName"))

    svc = services.build_orchestrator()
    handler(svc, pk, actor, data)
    return JsonResponse(OrderReadSerializer(svc.get_order(pk)).data)


# -------------------------------------------------
# Histórico / timeline / estatísticas
# -------------------------------------------------
class OrderLogListView(generics.ListAPIView):
    permission_classes = [AllowAny]
    serializer_class = OrderLogSerializer
    filterset_class = OrderLogFilter
    ordering_fields = ["created_at", "id"]

    def get_queryset(self):
        order = get_object_or_404(Order, pk=self.kwargs["pk"])
        return AuditTrail().history(order.pk)


@api_view(["GET"])
@permission_classes([AllowAny])
@handle_order_errors
def order_timeline(request, pk: int):
    order = services.build_orchestrator().get_order(pk)
    return JsonResponse({"orderId": order.pk, "timeline": AuditTrail().timeline(order.pk)})


@api_view(["GET"])
@permission_classes([AllowAny])
def order_stats(request):
    data = services.build_orchestrator().statistics()
    data["logs"] = AuditTrail().stats_by_actor()
    return JsonResponse(data)
