# orders/filters.py - filtros do histórico do pedido (django-filter)
import django_filters

from .constants import ActorType, OrderAction
from .models import OrderLog


class OrderLogFilter(django_filters.FilterSet):
    action = django_filters.MultipleChoiceFilter(choices=OrderAction.choices)
    actor_type = django_filters.ChoiceFilter(choices=ActorType.choices)
    created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = OrderLog
        fields = ["action", "actor_type"]
