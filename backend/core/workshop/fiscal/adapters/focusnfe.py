from __future__ import annotations

import base64
import json
import logging
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlsplit
from urllib.request import Request, urlopen

from .base import (
    FiscalAdapterBase,
    FiscalAdapterTechnicalError,
    FiscalAdapterTimeoutError,
    GatewayResponse,
    is_timeout,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


def basic_auth_header(token: str) -> str:
    """Focus NFe uses HTTP basic auth with the token as user and an empty password."""

    encoded = base64.b64encode(f"{token.strip()}:".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


class FocusNFeAdapter(FiscalAdapterBase):
    """Focus NFe v2 NFS-e client on top of urllib."""

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _send(self, request: Request, *, operation: str) -> GatewayResponse:
        timeout = self.timeout_seconds or DEFAULT_TIMEOUT_SECONDS
        try:
            with urlopen(request, timeout=timeout) as response:  # nosec B310
                return GatewayResponse(
                    status_code=int(getattr(response, "status", 200) or 200),
                    content=response.read() or b"",
                    headers=dict(response.headers.items()) if response.headers else {},
                )
        except HTTPError as exc:
            # Error statuses carry the gateway's error body; hand it to the caller.
            try:
                content = exc.read() or b""
            except OSError:
                content = b""
            logger.info(
                "fiscal.gateway.http_error operation=%s status=%s",
                operation,
                exc.code,
            )
            return GatewayResponse(
                status_code=int(exc.code),
                content=content,
                headers=dict(exc.headers.items()) if exc.headers else {},
            )
        except (URLError, OSError) as exc:
            if is_timeout(exc):
                logger.warning("fiscal.gateway.timeout operation=%s timeout=%s", operation, timeout)
                raise FiscalAdapterTimeoutError(
                    f"Gateway request timed out after {timeout:g}s."
                ) from exc
            logger.warning("fiscal.gateway.unreachable operation=%s error=%s", operation, exc)
            raise FiscalAdapterTechnicalError(f"Erro ao conectar com a Focus NFe: {exc}") from exc

    def issue_invoice(self, reference: str, data: Mapping[str, Any]) -> GatewayResponse:
        request = Request(
            self._url(f"/v2/nfse?ref={quote(reference)}"),
            data=json.dumps(data).encode("utf-8"),
            headers={
                "Authorization": basic_auth_header(self.token),
                "Content-Type": "application/json",
            },
            method="POST",
        )
        return self._send(request, operation="issue")

    def check_status(self, reference: str) -> GatewayResponse:
        request = Request(
            self._url(f"/v2/nfse/{quote(reference)}"),
            headers={"Authorization": basic_auth_header(self.token)},
            method="GET",
        )
        return self._send(request, operation="consult")

    def fetch_document(self, url: str, *, authenticated: bool) -> GatewayResponse:
        request = Request(url, method="GET")
        if authenticated:
            # Unredirected: a redirect to object storage must not carry the token.
            request.add_unredirected_header("Authorization", basic_auth_header(self.token))
        logger.info(
            "fiscal.gateway.document.fetch host=%s authenticated=%s",
            urlsplit(url).hostname or "",
            authenticated,
        )
        return self._send(request, operation="document")

    def test_connection(self) -> GatewayResponse:
        request = Request(
            self._url("/v2/nfce?filtro=todos"),
            headers={"Authorization": basic_auth_header(self.token)},
            method="GET",
        )
        return self._send(request, operation="test_connection")
