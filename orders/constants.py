# orders/constants.py - status, ações e códigos do MoMo usados no fluxo de pedidos
from django.db import models


class OrderStatus(models.TextChoices):
    PENDING_CONFIRMATION = "pending_confirmation", "Aguardando confirmação"
    PENDING_PICKUP = "pending_pickup", "Aguardando coleta"
    SHIPPING = "shipping", "Em transporte"
    DELIVERED = "delivered", "Entregue"
    CUSTOMER_CONFIRMED = "customer_confirmed", "Recebimento confirmado"
    RETURNED = "returned", "Devolvido"
    CANCELLED = "cancelled", "Cancelado"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.RETURNED, OrderStatus.CANCELLED})


class PaymentMethod(models.TextChoices):
    CASH = "cash", "Pagamento na entrega"
    MOMO = "momo", "MoMo"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pendente"
    COMPLETED = "completed", "Concluído"
    FAILED = "failed", "Falhou"
    CANCELLED = "cancelled", "Cancelado"
    EXPIRED = "expired", "Expirado"
    REFUNDED = "refunded", "Reembolsado"


# Grafo de status do pagamento: só anda para frente, nunca volta para pending
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.EXPIRED,
    }),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
}


class InventoryType(models.TextChoices):
    IN_STOCK = "in_stock", "Em estoque"
    LOW_STOCK = "low_stock", "Estoque baixo"
    OUT_OF_STOCK = "out_of_stock", "Esgotado"


class CartStatus(models.TextChoices):
    ACTIVE = "active", "Ativo"
    INACTIVE = "inactive", "Inativo"
    ORDERED = "ordered", "Convertido em pedido"


class OrderAction(models.TextChoices):
    CREATED = "created", "Pedido criado"
    CONFIRMED = "confirmed", "Pedido confirmado"
    PICKED_UP = "picked_up", "Coletado"
    DELIVERED = "delivered", "Entregue"
    CUSTOMER_CONFIRMED = "customer_confirmed", "Cliente confirmou o recebimento"
    RETURNED = "returned", "Devolvido"
    CANCELLED = "cancelled", "Cancelado"
    COD_COMPLETED = "cod_completed", "Pagamento na entrega recebido"
    PAYMENT_COMPLETED = "payment_completed", "Pagamento concluído"
    PAYMENT_FAILED = "payment_failed", "Pagamento falhou"
    PAYMENT_CANCELLED = "payment_cancelled", "Pagamento cancelado"
    PAYMENT_EXPIRED = "payment_expired", "Pagamento expirado"
    REFUNDED = "refunded", "Reembolsado"


# Ação registrada no log quando o reconciliador muda o status do pagamento
PAYMENT_EVENT_ACTIONS = {
    PaymentStatus.COMPLETED: OrderAction.PAYMENT_COMPLETED,
    PaymentStatus.FAILED: OrderAction.PAYMENT_FAILED,
    PaymentStatus.CANCELLED: OrderAction.PAYMENT_CANCELLED,
    PaymentStatus.EXPIRED: OrderAction.PAYMENT_EXPIRED,
}


class ActorType(models.TextChoices):
    SYSTEM = "system", "Sistema"
    ADMIN = "admin", "Administrador"
    CUSTOMER = "customer", "Cliente"
    SHIPPER = "shipper", "Entregador"
    PAYMENT_GATEWAY = "payment_gateway", "Gateway de pagamento"


class NotificationSource(models.TextChoices):
    IPN = "ipn", "IPN"
    POLL = "poll", "Consulta"
    SWEEP = "sweep", "Expiração automática"


class NotificationOutcome(models.TextChoices):
    APPLIED = "applied", "Aplicada"
    DUPLICATE = "duplicate", "Repetida"
    IGNORED = "ignored", "Ignorada"
    REJECTED = "rejected", "Rejeitada"
    FAILED = "failed", "Falhou"
    # dinheiro capturado depois de o pagamento já estar encerrado
    NEEDS_REFUND = "needs_refund", "Requer estorno"


# ----------------- MoMo -----------------
MOMO_CREATE_PATH = "/v2/gateway/api/create"
MOMO_QUERY_PATH = "/v2/gateway/api/query"
MOMO_REFUND_PATH = "/v2/gateway/api/refund"

MOMO_MIN_AMOUNT = 1_000
MOMO_MAX_AMOUNT = 50_000_000

MOMO_SUCCESS = 0
MOMO_CANCELLED_CODES = frozenset({1003, 1006, 1017, 2000, 9000})
MOMO_EXPIRED_CODES = frozenset({1005, 8000})
# só na resposta da consulta ativa: transação ainda sem resultado final
MOMO_QUERY_IN_PROGRESS_CODES = frozenset({1000, 7000, 7002})

MOMO_RESULT_MESSAGES = {
    0: "Pagamento realizado com sucesso",
    1000: "Transação iniciada, aguardando confirmação do usuário",
    1001: "Saldo insuficiente na conta do usuário",
    1002: "Transação recusada pelo emissor",
    1003: "Transação cancelada",
    1004: "Valor acima do limite de pagamento do usuário",
    1005: "URL ou QR code expirado",
    1006: "Usuário recusou a confirmação do pagamento",
    1017: "Transação cancelada pelo parceiro",
    1080: "Falha ao processar o reembolso",
    1081: "Reembolso recusado: a transação original pode já ter sido reembolsada",
    1088: "Reembolso recusado: a transação original não permite reembolso",
    7000: "Transação em processamento",
    7002: "Transação em processamento pelo provedor",
    9000: "Transação não concluída pelo usuário",
    11: "Acesso negado",
    13: "Falha na autenticação do parceiro",
    20: "Requisição mal formada",
    21: "Valor da transação inválido",
    22: "Valor da transação fora do limite",
    40: "requestId duplicado",
    41: "orderId duplicado",
    42: "orderId inválido ou não encontrado",
    43: "Conflito no processamento da transação",
    99: "Erro desconhecido",
}


class WorkflowAction(models.TextChoices):
    CONFIRM = "confirm", "Confirmar"
    PICKUP = "pickup", "Coletar"
    DELIVER = "deliver", "Entregar"
    CUSTOMER_CONFIRM = "customer_confirm", "Confirmar recebimento"
    COMPLETE_COD_PAYMENT = "complete_cod_payment", "Receber pagamento na entrega"
    RETURN = "return", "Devolver"
    CANCEL = "cancel", "Cancelar"


# status de origem permitidos para cada ação do fluxo
ALLOWED_FROM = {
    WorkflowAction.CONFIRM: frozenset({OrderStatus.PENDING_CONFIRMATION}),
    WorkflowAction.PICKUP: frozenset({OrderStatus.PENDING_PICKUP}),
    WorkflowAction.DELIVER: frozenset({OrderStatus.SHIPPING}),
    WorkflowAction.CUSTOMER_CONFIRM: frozenset({OrderStatus.DELIVERED}),
    WorkflowAction.COMPLETE_COD_PAYMENT: frozenset({OrderStatus.DELIVERED}),
    WorkflowAction.RETURN: frozenset({
        OrderStatus.SHIPPING, OrderStatus.DELIVERED, OrderStatus.CUSTOMER_CONFIRMED,
    }),
    WorkflowAction.CANCEL: frozenset({OrderStatus.PENDING_CONFIRMATION, OrderStatus.PENDING_PICKUP}),
}

CUSTOMER_WORKFLOW_ACTIONS = (
    WorkflowAction.CANCEL,
    WorkflowAction.CUSTOMER_CONFIRM,
    WorkflowAction.RETURN,
)
ADMIN_WORKFLOW_ACTIONS = tuple(a for a in WorkflowAction if a != WorkflowAction.CUSTOMER_CONFIRM)
