from .fiscal_config import (
    ConnectionTestSerializer,
    FiscalConfigReadSerializer,
    FiscalConfigUpsertSerializer,
)
from .invoice import (
    DownloadDocumentSerializer,
    EmitInvoiceSerializer,
    ServiceOrderInvoiceSerializer,
    ValidationIssueSerializer,
)

__all__ = [
    "ConnectionTestSerializer",
    "DownloadDocumentSerializer",
    "EmitInvoiceSerializer",
    "FiscalConfigReadSerializer",
    "FiscalConfigUpsertSerializer",
    "ServiceOrderInvoiceSerializer",
    "ValidationIssueSerializer",
]
