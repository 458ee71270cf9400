# orders/urls.py — pedidos, fluxo, histórico e MoMo
from django.urls import path

from . import payments as pay_views
from . import views

urlpatterns = [
    # pedidos
    path("orders/", views.order_create, name="order-create"),
    path("orders/stats/", views.order_stats, name="order-stats"),
    path("orders/<int:pk>/", views.order_detail, name="order-detail"),

    # fluxo
    path("orders/<int:pk>/workflow/", views.order_available_actions, name="order-workflow"),
    path("orders/<int:pk>/workflow/<slug:action>/", views.order_workflow_action, name="order-workflow-action"),

    # histórico
    path("orders/<int:pk>/logs/", views.OrderLogListView.as_view(), name="order-logs"),
    path("orders/<int:pk>/timeline/", views.order_timeline, name="order-timeline"),

    # MoMo
    path("payments/momo/ipn/", pay_views.momo_ipn, name="momo-ipn"),
    path("payments/momo/return/", pay_views.momo_return, name="momo-return"),
    path("payments/momo/<int:order_id>/query/", pay_views.momo_query, name="momo-query"),
]
