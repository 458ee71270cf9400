# orders/errors.py - erros do fluxo de pedidos (cada um carrega o status HTTP usado pelas views)


class OrderFlowError(Exception):
    status_code = 400
    default_detail = "Erro no processamento do pedido."

    def __init__(self, detail=None, **context):
        self.detail = detail or self.default_detail
        self.context = context
        super().__init__(self.detail)

    def as_dict(self):
        data = {"detail": self.detail, "code": self.code}
        if self.context:
            data["context"] = self.context
        return data

    @property
    def code(self):
        # ex.: InvalidStateTransition -> invalid_state_transition
        name = type(self).__name__
        out = []
        for i, ch in enumerate(name):
            if ch.isupper() and i:
                out.append("_")
            out.append(ch.lower())
        return "".join(out)


class ValidationError(OrderFlowError):
    status_code = 400
    default_detail = "Dados inválidos."


class NotFoundError(OrderFlowError):
    status_code = 404
    default_detail = "Registro não encontrado."


class InvalidStateTransition(OrderFlowError):
    status_code = 409
    default_detail = "Transição de status não permitida."


class NotOrderOwner(InvalidStateTransition):
    default_detail = "Apenas o dono do pedido pode executar esta ação."


class InsufficientStock(OrderFlowError):
    status_code = 409
    default_detail = "Estoque insuficiente."


class ConcurrencyConflict(OrderFlowError):
    status_code = 409
    default_detail = "Operação concorrente em andamento, tente novamente."


class PaymentGatewayError(OrderFlowError):
    status_code = 502
    default_detail = "Falha na comunicação com o gateway de pagamento."


class SignatureVerificationError(OrderFlowError):
    status_code = 400
    default_detail = "Assinatura da notificação inválida."


class AuditTrailImmutable(OrderFlowError):
    status_code = 500
    default_detail = "O histórico do pedido não pode ser alterado."
