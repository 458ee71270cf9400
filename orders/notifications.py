# orders/notifications.py — e-mails ao cliente disparados depois do commit
import logging
from typing import Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives, get_connection

from .audit import ACTION_TITLES
from .models import Order

logger = logging.getLogger(__name__)


class NullNotifier:
    def notify(self, order_id: int, action: str, note: str = "") -> bool:
        return False


class EmailOrderNotifier:
    """
    Avisa o cliente sobre mudanças no pedido.

    Roda em transaction.on_commit: qualquer erro aqui é registrado no log e
    não muda o resultado da operação que já foi confirmada.
    """

    def __init__(self, from_email: Optional[str] = None):
        self.from_email = from_email or getattr(settings, "DEFAULT_FROM_EMAIL", "no-reply@orderflow.local")

    def _recipient(self, user_id: int) -> str:
        User = get_user_model()
        return (
            User.objects.filter(pk=user_id).values_list("email", flat=True).first() or ""
        )

    def notify(self, order_id: int, action: str, note: str = "") -> bool:
        try:
            order = Order.objects.get(pk=order_id)
            to = self._recipient(order.user_id)
            if not to:
                logger.info("Pedido #%s sem e-mail do cliente; aviso '%s' não enviado", order_id, action)
                return False

            title = ACTION_TITLES.get(action, "Atualização do pedido")
            link = f"{settings.FRONTEND_URL.rstrip('/')}/orders/{order.pk}"
            subject = f"[Pedido #{order.pk}] {title}"
            txt = f"Olá,\n\n{title}.\n{note}\n\nAcompanhe seu pedido: {link}\n"
            html = f"<p>Olá,</p><p><strong>{title}</strong></p><p>{note}</p><p><a href='{link}'>{link}</a></p>"

            with get_connection() as conn:
                msg = EmailMultiAlternatives(subject, txt, self.from_email, [to], connection=conn)
                msg.attach_alternative(html, "text/html")
                msg.send(fail_silently=False)
            return True
        except Exception:
            logger.exception("Falha ao enviar aviso '%s' do pedido #%s", action, order_id)
            return False
