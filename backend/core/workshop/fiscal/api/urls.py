from django.urls import include, path
from rest_framework.routers import DefaultRouter

from workshop.fiscal.api.views import DownloadDocumentAPIView
from workshop.fiscal.api.views import EmitInvoiceAPIView
from workshop.fiscal.api.views import FiscalConfigUpsertAPIView
from workshop.fiscal.api.views import FiscalConnectionTestAPIView
from workshop.fiscal.api.views import FiscalWebhookAPIView
from workshop.fiscal.api.views import RefreshInvoiceStatusAPIView
from workshop.fiscal.api.views import ServiceOrderInvoiceViewSet
from workshop.fiscal.api.views import ServiceOrderValidationAPIView

router = DefaultRouter()
router.register(r"invoices", ServiceOrderInvoiceViewSet, basename="fiscal-invoice")

urlpatterns = [
    path(
        "service-orders/<int:service_order_id>/validation/",
        ServiceOrderValidationAPIView.as_view(),
        name="fiscal-validation",
    ),
    path(
        "service-orders/<int:service_order_id>/status/",
        RefreshInvoiceStatusAPIView.as_view(),
        name="fiscal-status-refresh",
    ),
    path("nfse/emit/", EmitInvoiceAPIView.as_view(), name="fiscal-emit"),
    path("nfse/download/", DownloadDocumentAPIView.as_view(), name="fiscal-download"),
    path("config/", FiscalConfigUpsertAPIView.as_view(), name="fiscal-config"),
    path("config/test-connection/", FiscalConnectionTestAPIView.as_view(), name="fiscal-test-connection"),
    path("webhook/", FiscalWebhookAPIView.as_view(), name="fiscal-webhook"),
    path("", include(router.urls)),
]
