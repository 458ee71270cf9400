# orders/discounts.py - fronteira com o módulo de cupons (o cálculo fica fora deste app)
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional


class DiscountProvider(ABC):
    """Devolve o valor de desconto de um cupom para o subtotal informado."""

    @abstractmethod
    def discount_for(self, user_id: int, coupon_code: Optional[str], subtotal: Decimal) -> Decimal:
        pass


class NoDiscount(DiscountProvider):
    def discount_for(self, user_id, coupon_code, subtotal):
        return Decimal("0")
