# orders/inventory.py — baixa/devolução de estoque com UPDATE condicional (sem ler-e-gravar)
import logging
from typing import Iterable, List, Tuple

from django.db.models import Case, F, Value, When

from .constants import InventoryType
from .errors import ConcurrencyConflict, InsufficientStock, NotFoundError, ValidationError
from .models import Product

logger = logging.getLogger(__name__)


def _check_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError("Quantidade deve ser um inteiro >= 1.", quantity=qty)
    return qty


class InventoryLedger:
    """
    Estoque dos produtos.

    Toda alteração é um único UPDATE condicional que também recalcula o
    inventory_type. Dentro do UPDATE as expressões enxergam os valores antigos
    da linha, por isso os limites do Case são deslocados por `qty`.
    """

    def decrement(self, product_id: int, qty: int) -> None:
        qty = _check_qty(qty)
        affected = (
            Product.objects
            .filter(pk=product_id, is_active=True, stock__gte=qty)
            .update(
                stock=F("stock") - qty,
                sold_count=F("sold_count") + qty,
                inventory_type=Case(
                    When(stock__lte=qty, then=Value(InventoryType.OUT_OF_STOCK)),
                    When(stock__lte=F("min_stock_threshold") + qty, then=Value(InventoryType.LOW_STOCK)),
                    default=Value(InventoryType.IN_STOCK),
                ),
            )
        )
        if affected == 1:
            logger.debug("Estoque baixado: produto=%s qty=%s", product_id, qty)
            return
        self._raise_for_failed_decrement(product_id, qty)

    def restore(self, product_id: int, qty: int) -> None:
        qty = _check_qty(qty)
        affected = (
            Product.objects
            .filter(pk=product_id)
            .update(
                stock=F("stock") + qty,
                sold_count=Case(
                    When(sold_count__gte=qty, then=F("sold_count") - qty),
                    default=Value(0),
                ),
                inventory_type=Case(
                    When(stock__lte=F("min_stock_threshold") - qty, then=Value(InventoryType.LOW_STOCK)),
                    default=Value(InventoryType.IN_STOCK),
                ),
            )
        )
        if affected != 1:
            raise NotFoundError(f"Produto {product_id} não encontrado.", product_id=product_id)
        logger.debug("Estoque devolvido: produto=%s qty=%s", product_id, qty)

    def reserve(self, lines: Iterable[Tuple[int, int]]) -> None:
        # ordem crescente de id: duas baixas concorrentes travam os produtos na mesma ordem
        for product_id, qty in self._merge(lines):
            self.decrement(product_id, qty)

    def release(self, lines: Iterable[Tuple[int, int]]) -> None:
        for product_id, qty in self._merge(lines):
            self.restore(product_id, qty)

    @staticmethod
    def tier(product_id: int) -> str:
        p = Product.objects.filter(pk=product_id).only("inventory_type").first()
        if p is None:
            raise NotFoundError(f"Produto {product_id} não encontrado.", product_id=product_id)
        return p.inventory_type

    # ---------- helpers ----------
    @staticmethod
    def _merge(lines: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
        totals = {}
        for product_id, qty in lines:
            totals[product_id] = totals.get(product_id, 0) + _check_qty(qty)
        return sorted(totals.items())

    @staticmethod
    def _raise_for_failed_decrement(product_id: int, qty: int):
        p = Product.objects.filter(pk=product_id).only("name", "stock", "is_active").first()
        if p is None:
            raise NotFoundError(f"Produto {product_id} não encontrado.", product_id=product_id)
        if not p.is_active:
            raise InsufficientStock(f"Produto {p.name} está inativo.", product_id=product_id)
        if p.stock < qty:
            raise InsufficientStock(
                f"Estoque insuficiente para {p.name}: disponível {p.stock}, pedido {qty}.",
                product_id=product_id, available=p.stock, requested=qty,
            )
        # a linha satisfazia a condição na releitura: outra transação mexeu nela no meio
        logger.warning("Conflito ao baixar estoque: produto=%s qty=%s", product_id, qty)
        raise ConcurrencyConflict(product_id=product_id)
