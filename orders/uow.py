# orders/uow.py - unidade de trabalho: quem age, quando, e o que roda depois do commit
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from django.db import transaction


@dataclass(frozen=True)
class Actor:
    """Quem disparou a operação (dados vindos da requisição)."""
    actor_id: Optional[int] = None
    actor_name: str = ""
    ip_address: Optional[str] = None
    user_agent: str = ""


SYSTEM_ACTOR = Actor(actor_name="Sistema")


@dataclass
class UnitOfWork:
    actor: Actor
    now: datetime

    def after_commit(self, fn: Callable[[], None]) -> None:
        # robust=True: falha no efeito colateral não desfaz a operação já confirmada
        transaction.on_commit(fn, robust=True)


@contextmanager
def unit_of_work(actor: Optional[Actor], clock: Callable[[], datetime]):
    """Abre uma transação e entrega o contexto da operação; commit único ao sair."""
    with transaction.atomic():
        yield UnitOfWork(actor=actor or SYSTEM_ACTOR, now=clock())
