from __future__ import annotations

from django.conf import settings

from workshop.fiscal.crypto import TokenCryptoError, decrypt_token
from workshop.fiscal.models import FiscalConfig, gateway_base_url

from .base import FiscalAdapterBase, FiscalAdapterError
from .focusnfe import FocusNFeAdapter
from .mock import MockFiscalAdapter

FOCUSNFE_PROVIDER_TYPES = frozenset({"focusnfe", "focus_nfe", "focus"})
MOCK_PROVIDER_TYPES = frozenset({"mock", "dummy", "local"})
SUPPORTED_PROVIDER_TYPES = FOCUSNFE_PROVIDER_TYPES | MOCK_PROVIDER_TYPES


class FiscalAdapterNotConfigured(FiscalAdapterError):
    """Raised when there is no active fiscal configuration."""

    retryable = False


class FiscalAdapterNotSupported(FiscalAdapterError):
    """Raised when provider_type has no registered adapter implementation."""

    retryable = False


def build_fiscal_adapter(
    *,
    provider_type: str,
    token: str,
    environment: str,
) -> FiscalAdapterBase:
    provider = (provider_type or "").strip().lower()
    kwargs = {
        "token": token,
        "base_url": gateway_base_url(environment),
        "timeout_seconds": getattr(settings, "FISCAL_GATEWAY_TIMEOUT_SECONDS", None),
    }

    if provider in FOCUSNFE_PROVIDER_TYPES:
        return FocusNFeAdapter(**kwargs)

    # Local-only adapter (for dev/tests).
    if provider in MOCK_PROVIDER_TYPES:
        return MockFiscalAdapter(**kwargs)

    raise FiscalAdapterNotSupported(f"Unsupported provider_type={provider_type!r}.")


def get_fiscal_adapter(config: FiscalConfig | None = None) -> FiscalAdapterBase:
    """Return the adapter for the active fiscal configuration."""

    if config is None:
        try:
            config = FiscalConfig.objects.get(active=True)
        except FiscalConfig.DoesNotExist as exc:
            raise FiscalAdapterNotConfigured("No active fiscal configuration.") from exc

    if not config.has_token:
        raise FiscalAdapterNotConfigured("Token da Focus NFe não configurado.")

    try:
        token = decrypt_token(config.api_token)
    except TokenCryptoError as exc:
        raise FiscalAdapterNotConfigured("Token da Focus NFe não pode ser lido. Cadastre-o novamente.") from exc

    return build_fiscal_adapter(
        provider_type=config.provider_type,
        token=token,
        environment=config.environment,
    )
