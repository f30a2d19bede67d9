from __future__ import annotations

import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from workshop.fiscal.errors import parse_json_body


class FiscalAdapterError(RuntimeError):
    """Base exception for fiscal adapter failures."""

    retryable: bool = True


class FiscalAdapterTechnicalError(FiscalAdapterError):
    """Technical failure talking to the gateway (network, DNS, TLS, outages)."""

    retryable = True


class FiscalAdapterTimeoutError(FiscalAdapterTechnicalError):
    """Gateway request timed out."""

    retryable = True


class FiscalAdapterFiscalRejectionError(FiscalAdapterError):
    """Business/fiscal rejection returned by the gateway (not retryable)."""

    retryable = False

    def __init__(self, message: str, *, code: str | None = None, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.details = dict(details) if details else {}


def is_timeout(exc: BaseException) -> bool:
    """True for socket timeouts, raised directly or wrapped in a `URLError`."""

    if isinstance(exc, (socket.timeout, TimeoutError)):
        return True
    return isinstance(getattr(exc, "reason", None), (socket.timeout, TimeoutError))


@dataclass(frozen=True, slots=True)
class GatewayResponse:
    """Raw gateway answer. HTTP error statuses are responses, not exceptions."""

    status_code: int
    content: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return str(value)
        return ""

    def json(self) -> Any | None:
        return parse_json_body(self.content)


class FiscalAdapterBase(ABC):
    """Gateway client interface for NFS-e emission.

    Adapters only talk to the gateway. Persistence, status transitions and error
    normalization belong to the service layer.
    """

    def __init__(self, *, token: str = "", base_url: str = "", timeout_seconds: float | None = None) -> None:
        self.token = token
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def issue_invoice(self, reference: str, data: Mapping[str, Any]) -> GatewayResponse:
        """Submit an NFS-e for asynchronous authorization under `reference`."""

    @abstractmethod
    def check_status(self, reference: str) -> GatewayResponse:
        """Fetch the current gateway descriptor for `reference`."""

    @abstractmethod
    def fetch_document(self, url: str, *, authenticated: bool) -> GatewayResponse:
        """Download a PDF/XML. `authenticated` controls the Authorization header."""

    @abstractmethod
    def test_connection(self) -> GatewayResponse:
        """Probe the gateway with the configured token."""
