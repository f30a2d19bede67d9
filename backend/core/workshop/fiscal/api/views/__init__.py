from .fiscal_config import FiscalConfigUpsertAPIView, FiscalConnectionTestAPIView
from .invoice import (
    DownloadDocumentAPIView,
    EmitInvoiceAPIView,
    RefreshInvoiceStatusAPIView,
    ServiceOrderInvoiceViewSet,
    ServiceOrderValidationAPIView,
)
from .webhook import FiscalWebhookAPIView

__all__ = [
    "DownloadDocumentAPIView",
    "EmitInvoiceAPIView",
    "FiscalConfigUpsertAPIView",
    "FiscalConnectionTestAPIView",
    "FiscalWebhookAPIView",
    "RefreshInvoiceStatusAPIView",
    "ServiceOrderInvoiceViewSet",
    "ServiceOrderValidationAPIView",
]
