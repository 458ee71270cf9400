# orderflow/urls.py — admin + rotas do app de pedidos
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path


def health(_request):
    return JsonResponse({"service": "OrderFlow Backend", "status": "healthy"})


urlpatterns = [
    path("admin/", admin.site.urls),

    # health: garantido mesmo se o app mudar de rota
    path("api/health", health),
    path("api/health/", health, name="health"),

    path("api/", include("orders.urls")),
]
