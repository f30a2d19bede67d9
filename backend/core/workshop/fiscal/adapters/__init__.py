from .base import (
    FiscalAdapterBase,
    FiscalAdapterError,
    FiscalAdapterFiscalRejectionError,
    FiscalAdapterTechnicalError,
    FiscalAdapterTimeoutError,
    GatewayResponse,
)
from .factory import (
    FiscalAdapterNotConfigured,
    FiscalAdapterNotSupported,
    build_fiscal_adapter,
    get_fiscal_adapter,
)

__all__ = [
    "FiscalAdapterBase",
    "FiscalAdapterError",
    "FiscalAdapterFiscalRejectionError",
    "FiscalAdapterNotConfigured",
    "FiscalAdapterNotSupported",
    "FiscalAdapterTechnicalError",
    "FiscalAdapterTimeoutError",
    "GatewayResponse",
    "build_fiscal_adapter",
    "get_fiscal_adapter",
]
