"""NFS-e document (PDF/XML) resolution and download.

The gateway descriptor is re-queried on every download: URLs cached on the
invoice record can go stale when the gateway moves files from its API host to
object storage, and only API-host URLs accept the basic-auth token.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlsplit

from django.conf import settings
from django.db import connection, transaction

from workshop.fiscal.adapters import (
    FiscalAdapterBase,
    FiscalAdapterError,
    GatewayResponse,
    get_fiscal_adapter,
)
from workshop.fiscal.errors import extract_error, normalize_error, parse_json_body
from workshop.fiscal.models import InvoiceRecord
from workshop.logging import mask_cpf_cnpj

logger = logging.getLogger(__name__)

PDF = "pdf"
XML = "xml"
DOCUMENT_KINDS = (PDF, XML)

CONTENT_TYPES = {
    PDF: "application/pdf",
    XML: "application/xml",
}

PREVIEW_BYTES = 1000
DEFAULT_MIN_BYTES = 100
FILENAME_PART_LIMIT = 60

OBJECT_STORAGE_HOST_MARKERS = ("amazonaws.com", "focusnfe.s3")

_ILLEGAL_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1F]')
_WHITESPACE_RE = re.compile(r"\s+")
_TRAILING_DOTS_RE = re.compile(r"\.+$")


class DocumentError(RuntimeError):
    """Document could not be delivered. `reason` tells the caller what to do next."""

    NOT_READY = "not_ready"
    CORRUPT = "corrupt"
    GATEWAY_ERROR = "gateway_error"
    NOT_FOUND = "not_found"

    def __init__(self, message: str, *, reason: str, code: str = "", url: str = ""):
        super().__init__(message)
        self.reason = reason
        self.code = code
        self.url = url

    @property
    def retryable(self) -> bool:
        return self.reason in {self.NOT_READY, self.GATEWAY_ERROR}


@dataclass(frozen=True, slots=True)
class ResolvedDocument:
    content: bytes
    content_type: str
    filename: str
    url: str


def ensure_full_url(path_or_url: Any, base_url: str) -> str:
    value = str(path_or_url or "").strip()
    if not value:
        return ""
    if value.startswith(("http://", "https://")):
        return value
    base_url = (base_url or "").rstrip("/")
    if value.startswith("/"):
        return f"{base_url}{value}"
    return f"{base_url}/{value}"


def default_document_url(reference: str, kind: str, base_url: str) -> str:
    return f"{(base_url or '').rstrip('/')}/v2/nfse/{reference}.{kind}"


def flatten_descriptor(payload: Any) -> dict[str, Any]:
    """Consult answers sometimes nest the descriptor under `data`."""

    if not isinstance(payload, Mapping):
        return {}
    flat = dict(payload)
    nested = payload.get("data")
    if isinstance(nested, Mapping):
        for key, value in nested.items():
            flat.setdefault(key, value)
    return flat


def select_document_url(descriptor: Mapping[str, Any], reference: str, kind: str, base_url: str) -> str:
    """Explicit URL, then storage path on the gateway host, then the conventional API path."""

    if kind == PDF:
        candidates = (descriptor.get("url_danfse"), descriptor.get("caminho_danfse"))
    else:
        candidates = (descriptor.get("caminho_xml_nota_fiscal"),)

    for candidate in candidates:
        url = ensure_full_url(candidate, base_url)
        if url:
            return url
    return default_document_url(reference, kind, base_url)


def select_document_urls(descriptor: Mapping[str, Any], reference: str, base_url: str) -> tuple[str, str]:
    return (
        select_document_url(descriptor, reference, PDF, base_url),
        select_document_url(descriptor, reference, XML, base_url),
    )


def requires_gateway_auth(url: str, base_url: str) -> bool:
    """Only the gateway API host takes the token; object storage rejects it."""

    host = (urlsplit(url).hostname or "").lower()
    gateway_host = (urlsplit(base_url).hostname or "").lower()
    if not host or not gateway_host:
        return False
    if any(marker in host for marker in OBJECT_STORAGE_HOST_MARKERS):
        return False
    return host == gateway_host


def sanitize_filename_part(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        return ""
    text = _ILLEGAL_FILENAME_CHARS_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text)
    text = _TRAILING_DOTS_RE.sub("", text)
    return text.strip()[:FILENAME_PART_LIMIT]


def build_document_filename(
    kind: str,
    *,
    number: str = "",
    reference: str = "",
    customer_name: str = "",
) -> str:
    base_id = sanitize_filename_part(number) or sanitize_filename_part(reference) or "NFSe"
    customer_part = sanitize_filename_part(customer_name)
    if customer_part:
        return f"NFSe-{base_id}-{customer_part}.{kind}"
    return f"NFSe-{base_id}.{kind}"


def _minimum_bytes() -> int:
    return int(getattr(settings, "FISCAL_DOCUMENT_MIN_BYTES", DEFAULT_MIN_BYTES) or DEFAULT_MIN_BYTES)


def _json_error(content: bytes, url: str) -> DocumentError | None:
    payload = parse_json_body(content)
    if payload is None:
        return None
    found = extract_error(payload)
    message = found.message if found is not None else "Erro ao obter arquivo"
    return DocumentError(
        message,
        reason=DocumentError.GATEWAY_ERROR,
        code=found.code if found is not None else "",
        url=url,
    )


def classify_document_body(response: GatewayResponse, url: str = "") -> None:
    """Raise DocumentError unless the body looks like a genuine document.

    A 200 from the gateway is not enough: it answers with JSON errors and HTML
    pages while the note is still being processed.
    """

    content = response.content or b""

    if "json" in response.content_type.lower():
        error = _json_error(content, url)
        if error is not None:
            raise error

    preview = content[:PREVIEW_BYTES].decode("utf-8", errors="replace").strip()
    if preview.startswith(("{", "[")):
        error = _json_error(content, url)
        if error is not None:
            raise error

    lowered = preview.lower()
    if "<!doctype html" in lowered or "<html" in lowered:
        raise DocumentError(
            "A Focus NFe retornou HTML. A nota ainda pode estar sendo processada. "
            "Aguarde alguns minutos e tente novamente.",
            reason=DocumentError.NOT_READY,
            url=url,
        )

    if len(content) < _minimum_bytes():
        error = _json_error(content, url)
        if error is not None:
            raise error
        raise DocumentError(
            "Arquivo vazio ou corrompido",
            reason=DocumentError.CORRUPT,
            url=url,
        )


class DocumentResolver:
    """Resolve and download NFS-e documents by reference."""

    def __init__(self, adapter: FiscalAdapterBase) -> None:
        self.adapter = adapter

    @property
    def base_url(self) -> str:
        return self.adapter.base_url

    def describe(self, reference: str) -> dict[str, Any]:
        try:
            response = self.adapter.check_status(reference)
        except FiscalAdapterError as exc:
            raise DocumentError(
                "Não foi possível consultar a NFS-e. Tente novamente em alguns minutos.",
                reason=DocumentError.GATEWAY_ERROR,
            ) from exc

        payload = response.json()
        if not response.ok:
            found = normalize_error(payload, raw_text=response.text)
            reason = DocumentError.NOT_FOUND if response.status_code == 404 else DocumentError.GATEWAY_ERROR
            message = "Erro ao consultar NFS-e na Focus"
            if found is not None:
                message = f"{message}: {found.message}"
            raise DocumentError(message, reason=reason, code=found.code if found else "")

        if not isinstance(payload, Mapping):
            raise DocumentError(
                "Resposta inválida ao consultar NFS-e na Focus",
                reason=DocumentError.GATEWAY_ERROR,
            )
        return flatten_descriptor(payload)

    def fetch(self, url: str) -> GatewayResponse:
        authenticated = requires_gateway_auth(url, self.base_url)
        try:
            response = self.adapter.fetch_document(url, authenticated=authenticated)
        except FiscalAdapterError as exc:
            raise DocumentError(
                "Erro ao baixar arquivo. Tente novamente em alguns minutos.",
                reason=DocumentError.GATEWAY_ERROR,
                url=url,
            ) from exc

        if not response.ok:
            found = normalize_error(response.json(), raw_text=response.text)
            reason = DocumentError.NOT_READY if response.status_code == 404 else DocumentError.GATEWAY_ERROR
            message = "Erro ao baixar arquivo"
            if found is not None:
                message = f"{message}: {found.message}"
            raise DocumentError(message, reason=reason, code=found.code if found else "", url=url)
        return response

    def resolve(
        self,
        reference: str,
        kind: str,
        *,
        number: str = "",
        customer_name: str = "",
    ) -> tuple[ResolvedDocument, dict[str, Any]]:
        """Return the document plus the descriptor it was resolved from."""

        if kind not in DOCUMENT_KINDS:
            raise ValueError(f"Unsupported document kind: {kind!r}")

        descriptor = self.describe(reference)
        url = select_document_url(descriptor, reference, kind, self.base_url)
        response = self.fetch(url)
        classify_document_body(response, url)

        document = ResolvedDocument(
            content=response.content,
            content_type=CONTENT_TYPES[kind],
            filename=build_document_filename(
                kind,
                number=number or str(descriptor.get("numero") or ""),
                reference=reference,
                customer_name=customer_name,
            ),
            url=url,
        )
        return document, descriptor


def _cache_document_urls(record: InvoiceRecord, descriptor: Mapping[str, Any], base_url: str) -> None:
    if record.status != InvoiceRecord.Status.AUTHORIZED:
        return
    pdf_url, xml_url = select_document_urls(descriptor, record.reference, base_url)
    if pdf_url == record.pdf_url and xml_url == record.xml_url:
        return

    with transaction.atomic():
        qs = InvoiceRecord.objects.filter(pk=record.pk)
        if connection.features.has_select_for_update:
            qs = qs.select_for_update()
        locked = qs.first()
        if locked is None or locked.status != InvoiceRecord.Status.AUTHORIZED:
            return
        locked.pdf_url = pdf_url
        locked.xml_url = xml_url
        locked.save(update_fields=["pdf_url", "xml_url", "updated_at"])


def resolve_invoice_document(
    reference: str,
    kind: str,
    *,
    adapter: FiscalAdapterBase | None = None,
) -> ResolvedDocument:
    """Download the PDF/XML for an invoice reference.

    Raises:
        DocumentError: with `reason` set to not_ready, corrupt, gateway_error or not_found.
    """

    reference = (reference or "").strip()
    record = (
        InvoiceRecord.objects.select_related("service_order__customer")
        .filter(reference=reference)
        .first()
        if reference
        else None
    )
    if record is None:
        raise DocumentError("NFS-e não encontrada para a referência informada.", reason=DocumentError.NOT_FOUND)

    if adapter is None:
        try:
            adapter = get_fiscal_adapter()
        except FiscalAdapterError as exc:
            raise DocumentError(str(exc), reason=DocumentError.GATEWAY_ERROR) from exc

    resolver = DocumentResolver(adapter)
    try:
        document, descriptor = resolver.resolve(
            reference,
            kind,
            number=record.number,
            customer_name=record.service_order.customer.name,
        )
    except DocumentError as exc:
        logger.warning(
            "fiscal.document.failed reference=%s kind=%s reason=%s error=%s",
            reference,
            kind,
            exc.reason,
            mask_cpf_cnpj(str(exc)),
        )
        raise

    _cache_document_urls(record, descriptor, adapter.base_url)
    logger.info(
        "fiscal.document.resolved reference=%s kind=%s size=%s",
        reference,
        kind,
        len(document.content),
    )
    return document
