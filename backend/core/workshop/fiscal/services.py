from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from django.db import connection, transaction

from workshop.fiscal.adapters import (
    FiscalAdapterBase,
    FiscalAdapterError,
    FiscalAdapterFiscalRejectionError,
    FiscalAdapterTimeoutError,
    GatewayResponse,
    build_fiscal_adapter,
    get_fiscal_adapter,
)
from workshop.fiscal.documents import flatten_descriptor, select_document_urls
from workshop.fiscal.errors import NormalizedError, extract_error, parse_json_body, truncate_raw_text
from workshop.fiscal.models import FiscalConfig, InvoiceRecord, gateway_base_url
from workshop.fiscal.payload import FiscalPayloadError, build_nfse_payload, build_reference
from workshop.fiscal.validation import (
    ValidationIssue,
    can_emit,
    load_service_order,
    validate_service_order,
)
from workshop.logging import mask_cpf_cnpj
from workshop.models import Company, ServiceOrder

logger = logging.getLogger(__name__)

Status = InvoiceRecord.Status

_STATUS_ALIASES = {
    "AUTORIZADO": Status.AUTHORIZED,
    "AUTORIZADA": Status.AUTHORIZED,
    "EMITIDA": Status.AUTHORIZED,
    "AUTHORIZED": Status.AUTHORIZED,
    "ERRO_AUTORIZACAO": Status.AUTHORIZATION_ERROR,
    "ERRO_VALIDACAO": Status.AUTHORIZATION_ERROR,
    "ERRO": Status.AUTHORIZATION_ERROR,
    "AUTHORIZATION_ERROR": Status.AUTHORIZATION_ERROR,
    "REJEITADO": Status.REJECTED,
    "REJEITADA": Status.REJECTED,
    "DENEGADO": Status.REJECTED,
    "REJECTED": Status.REJECTED,
    "CANCELADO": Status.CANCELLED,
    "CANCELADA": Status.CANCELLED,
    "CANCELLED": Status.CANCELLED,
    "CANCELED": Status.CANCELLED,
    "PROCESSANDO_AUTORIZACAO": Status.PROCESSING_AUTHORIZATION,
    "PROCESSANDO": Status.PROCESSING_AUTHORIZATION,
    "PROCESSING_AUTHORIZATION": Status.PROCESSING_AUTHORIZATION,
}

_DECLARED_ERROR_STATUSES = {Status.AUTHORIZATION_ERROR, Status.REJECTED, Status.CANCELLED}

EMISSION_ACCEPTED_MESSAGE = "NFS-e enviada para processamento. Aguardando autorização da prefeitura."
EMISSION_GATEWAY_TIMEOUT_MESSAGE = (
    "A Focus NFe não respondeu a tempo. A nota pode estar sendo processada. "
    "Consulte o status antes de tentar novamente."
)


def normalize_gateway_status(value: Any) -> str | None:
    """Map a gateway status string to `InvoiceRecord.Status`. Unknown values give None."""

    status = str(value or "").strip().upper()
    if not status:
        return None
    return _STATUS_ALIASES.get(status)


class FiscalEmissionError(RuntimeError):
    """Base error for NFS-e emission service failures."""


class FiscalEmissionRefused(FiscalEmissionError):
    """Emission refused locally; nothing was sent to the gateway."""

    def __init__(self, message: str, *, issues: list[ValidationIssue] | None = None):
        super().__init__(message)
        self.issues = list(issues or [])


class InvoiceRecordNotFound(FiscalEmissionError):
    """No invoice record matches the given reference/order."""


class FiscalStatusRefreshError(FiscalEmissionError):
    """Gateway consult failed; the record is left untouched."""

    def __init__(self, message: str, *, code: str = "", status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class EmissionResult:
    success: bool
    reference: str
    status: str
    message: str = ""
    error_code: str = ""
    timed_out: bool = False

    def as_response_body(self) -> dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "message": self.message,
                "timed_out": self.timed_out,
                "invoice": {"status": self.status, "ref": self.reference},
            }
        return {
            "success": False,
            "error": self.message,
            "errorCode": self.error_code,
            "invoice": {"status": self.status, "ref": self.reference},
        }


@dataclass(frozen=True, slots=True)
class GatewayUpdateResult:
    reference: str
    old_status: str
    new_status: str
    gateway_status: str
    applied: bool
    error: NormalizedError | None = None
    changed_fields: tuple[str, ...] = field(default_factory=tuple)

    def as_response_body(self) -> dict[str, Any]:
        return {
            "ok": True,
            "ref": self.reference,
            "status": self.new_status,
            "previous_status": self.old_status,
            "gateway_status": self.gateway_status,
            "applied": self.applied,
        }


def http_status_message(status_code: int, raw_text: str = "") -> str:
    """Fallback text when a failed gateway response carries no usable message."""

    body = truncate_raw_text(raw_text, 500)
    if status_code == 401:
        return (
            "Erro de autenticação (401): o token da Focus NFe está incorreto ou inválido. "
            "Confira se o token corresponde ao ambiente configurado (homologação ou produção)."
        )
    if status_code == 403:
        return "Acesso negado. Verifique se sua conta Focus NFe tem permissão para emitir NFS-e."
    if status_code == 404:
        return "Endpoint não encontrado. Verifique se o ambiente (homologação/produção) está correto."
    if status_code == 422:
        return f"Dados inválidos: {body}"
    if status_code == 500:
        return "Erro interno no servidor da Focus NFe. Tente novamente em alguns minutos."
    return f"Erro HTTP {status_code}: {body}"


def _active_base_url() -> str:
    config = FiscalConfig.get_active()
    if config is None:
        return gateway_base_url(FiscalConfig.Environment.SANDBOX)
    return config.base_url


def _locked_records():
    qs = InvoiceRecord.objects.all()
    if connection.features.has_select_for_update:
        qs = qs.select_for_update()
    return qs


def _interpret_submission(response: GatewayResponse) -> None:
    """Raise FiscalAdapterFiscalRejectionError unless the gateway accepted the note."""

    payload = parse_json_body(response.content)
    if payload is None and response.content.strip():
        raise FiscalAdapterFiscalRejectionError(
            f"Erro ao processar resposta: {truncate_raw_text(response.text, 500)}",
            code=f"HTTP_{response.status_code}",
        )

    error = extract_error(payload) if payload is not None else None
    if response.ok and error is None:
        return

    message = error.message if error is not None else http_status_message(response.status_code, response.text)
    code = (error.code if error is not None else "") or f"HTTP_{response.status_code}"
    raise FiscalAdapterFiscalRejectionError(
        message,
        code=code,
        details=payload if isinstance(payload, Mapping) else None,
    )


def _mark_emission_failed(record_id: int, reference: str, message: str, code: str) -> str:
    with transaction.atomic():
        record = _locked_records().get(pk=record_id)
        if record.reference != reference or record.status == Status.AUTHORIZED:
            # A newer emission or an authorization already owns the record.
            return record.status
        record.status = Status.AUTHORIZATION_ERROR
        record.error_message = message
        record.error_code = code
        record.save(update_fields=["status", "error_message", "error_code", "updated_at"])
        return record.status


def _mark_emission_accepted(record_id: int, reference: str) -> str:
    with transaction.atomic():
        record = _locked_records().get(pk=record_id)
        if record.reference != reference:
            return record.status
        if record.status == Status.SENDING:
            record.status = Status.PROCESSING_AUTHORIZATION
            record.save(update_fields=["status", "updated_at"])
        return record.status


def emit_service_invoice(
    service_order_id: int,
    *,
    adapter: FiscalAdapterBase | None = None,
) -> EmissionResult:
    """Submit the NFS-e for a service order and persist the immediate outcome.

    Steps:
    1) Run the pre-flight validation; refuse locally on blocking issues.
    2) Build the gateway payload and assign a fresh reference.
    3) Mark the record as `sending`, clearing any previous result.
    4) Submit and interpret the answer: accepted notes move to
       `processing_authorization`; refusals are normalized and stored.

    Authorization itself arrives later through the webhook or a status refresh.

    Raises:
        ServiceOrder.DoesNotExist: unknown order.
        FiscalEmissionRefused: validation errors, no service lines, or the order
            already has an authorized note.
        FiscalAdapterError: no usable gateway configuration.
    """

    service_order = load_service_order(service_order_id)
    issues = validate_service_order(service_order)
    if not can_emit(issues):
        raise FiscalEmissionRefused("Corrija os erros antes de emitir a NFS-e.", issues=issues)

    company = Company.get_issuer()
    try:
        payload = build_nfse_payload(service_order, company)
    except FiscalPayloadError as exc:
        raise FiscalEmissionRefused(str(exc)) from exc

    if adapter is None:
        adapter = get_fiscal_adapter()

    reference = build_reference(service_order.pk)

    with transaction.atomic():
        record, _created = InvoiceRecord.objects.get_or_create(service_order=service_order)
        record = _locked_records().get(pk=record.pk)
        if record.status == Status.AUTHORIZED:
            raise FiscalEmissionRefused("Esta OS já possui uma NFS-e autorizada.")

        previous_status = record.status
        record.reference = reference
        record.status = Status.SENDING
        record.clear_error()
        record.clear_documents()
        record.save()

    logger.info(
        "fiscal.emission.started service_order_id=%s reference=%s previous_status=%s",
        service_order.pk,
        reference,
        previous_status,
    )

    try:
        response = adapter.issue_invoice(reference, payload)
        _interpret_submission(response)
    except FiscalAdapterTimeoutError:
        # The gateway may have received the note; leave it re-checkable by reference.
        status = _mark_emission_accepted(record.pk, reference)
        logger.warning(
            "fiscal.emission.gateway_timeout service_order_id=%s reference=%s",
            service_order.pk,
            reference,
        )
        return EmissionResult(
            success=True,
            reference=reference,
            status=status,
            message=EMISSION_GATEWAY_TIMEOUT_MESSAGE,
            timed_out=True,
        )
    except FiscalAdapterFiscalRejectionError as exc:
        message, code = str(exc), exc.code or ""
        status = _mark_emission_failed(record.pk, reference, message, code)
        logger.warning(
            "fiscal.emission.rejected service_order_id=%s reference=%s code=%s error=%s",
            service_order.pk,
            reference,
            code,
            mask_cpf_cnpj(message),
        )
        return EmissionResult(False, reference, status, message, code)
    except FiscalAdapterError as exc:
        message, code = str(exc), "CONEXAO"
        status = _mark_emission_failed(record.pk, reference, message, code)
        logger.warning(
            "fiscal.emission.transport_failed service_order_id=%s reference=%s error=%s",
            service_order.pk,
            reference,
            mask_cpf_cnpj(message),
        )
        return EmissionResult(False, reference, status, message, code)

    status = _mark_emission_accepted(record.pk, reference)
    logger.info(
        "fiscal.emission.accepted service_order_id=%s reference=%s status=%s",
        service_order.pk,
        reference,
        status,
    )
    return EmissionResult(True, reference, status, EMISSION_ACCEPTED_MESSAGE)


def apply_gateway_update(
    reference: str,
    payload: Mapping[str, Any],
    *,
    source: str = "webhook",
    base_url: str | None = None,
) -> GatewayUpdateResult:
    """Apply a gateway status report (webhook push or consult pull) to its record.

    Errors are extracted before the declared status is looked at. The write is a
    single locked update keyed by reference; a record that already reached a
    terminal status is only moved along `InvoiceRecord.can_transition_to`, so
    duplicated or late deliveries never revert an authorization.

    Raises:
        InvoiceRecordNotFound: no record carries `reference`.
    """

    reference = str(reference or "").strip()
    if not reference:
        raise InvoiceRecordNotFound("Referência não encontrada")

    error = extract_error(payload)
    declared = str(payload.get("status") or "").strip()
    target = normalize_gateway_status(declared)
    if base_url is None:
        base_url = _active_base_url()

    with transaction.atomic():
        record = _locked_records().filter(reference=reference).first()
        if record is None:
            raise InvoiceRecordNotFound(f"Nenhuma NFS-e com a referência {reference}.")

        before = record.status
        changed: list[str] = []

        if error is not None:
            target = Status.AUTHORIZATION_ERROR
            if record.can_transition_to(target):
                record.status = target
                record.error_message = error.message
                record.error_code = error.code or "ERRO"
                record.clear_documents()
                changed = ["status", "error_message", "error_code", "number", "verification_code", "url", "pdf_url", "xml_url"]
        elif target == Status.AUTHORIZED:
            if record.can_transition_to(target):
                pdf_url, xml_url = select_document_urls(payload, reference, base_url)
                verification_code = str(payload.get("codigo_verificacao") or "").strip()
                record.status = target
                record.number = str(payload.get("numero") or "").strip()
                record.verification_code = verification_code
                record.url = str(payload.get("url") or "").strip()
                record.pdf_url = pdf_url
                record.xml_url = xml_url
                record.clear_error()
                changed = ["status", "number", "verification_code", "url", "pdf_url", "xml_url", "error_message", "error_code"]
        elif target in _DECLARED_ERROR_STATUSES:
            if record.can_transition_to(target):
                record.status = target
                record.error_message = f"NFS-e {declared}"
                record.error_code = declared.upper()
                changed = ["status", "error_message", "error_code"]
        else:
            if target is None:
                logger.warning(
                    "fiscal.gateway_update.unknown_status reference=%s source=%s gateway_status=%s",
                    reference,
                    source,
                    declared,
                )
                target = Status.PROCESSING_AUTHORIZATION
            if record.can_transition_to(target):
                record.status = target
                changed = ["status"]

        if changed:
            record.save(update_fields=sorted(set(changed + ["updated_at"])))
        else:
            logger.warning(
                "fiscal.gateway_update.ignored reference=%s source=%s current_status=%s attempted_status=%s",
                reference,
                source,
                before,
                target,
            )

    logger.info(
        "fiscal.gateway_update.applied reference=%s source=%s old_status=%s new_status=%s gateway_status=%s",
        reference,
        source,
        before,
        record.status,
        declared,
    )
    if error is not None:
        logger.info(
            "fiscal.gateway_update.error reference=%s code=%s error=%s",
            reference,
            error.code,
            mask_cpf_cnpj(error.message),
        )

    return GatewayUpdateResult(
        reference=reference,
        old_status=before,
        new_status=record.status,
        gateway_status=declared,
        applied=bool(changed),
        error=error,
        changed_fields=tuple(changed),
    )


def refresh_invoice_status(
    service_order_id: int,
    *,
    adapter: FiscalAdapterBase | None = None,
) -> GatewayUpdateResult:
    """Pull the gateway descriptor for the order's reference and apply it like a webhook.

    Raises:
        InvoiceRecordNotFound: the order has no reference yet.
        FiscalStatusRefreshError: the consult call failed.
    """

    record = InvoiceRecord.objects.filter(service_order_id=service_order_id).first()
    if record is None or not record.reference:
        raise InvoiceRecordNotFound("Esta OS não possui referência de NFS-e.")

    if adapter is None:
        adapter = get_fiscal_adapter()

    try:
        response = adapter.check_status(record.reference)
    except FiscalAdapterError as exc:
        raise FiscalStatusRefreshError(
            "Não foi possível consultar a Focus NFe. Tente novamente em alguns minutos."
        ) from exc

    payload = response.json()
    if not response.ok:
        found = extract_error(payload)
        message = found.message if found is not None else http_status_message(response.status_code, response.text)
        raise FiscalStatusRefreshError(
            f"Erro ao consultar Focus: {message}",
            code=found.code if found is not None else f"HTTP_{response.status_code}",
            status_code=response.status_code,
        )

    descriptor = flatten_descriptor(payload)
    return apply_gateway_update(
        record.reference,
        descriptor,
        source="consult",
        base_url=adapter.base_url,
    )


@dataclass(frozen=True, slots=True)
class ConnectionTestResult:
    success: bool
    message: str
    environment: str


def check_gateway_connection(
    token: str,
    environment: str,
    *,
    provider_type: str = "focusnfe",
) -> ConnectionTestResult:
    """Probe the gateway with a token. A 404 still proves the token authenticated."""

    label = "Produção" if environment == FiscalConfig.Environment.PRODUCTION else "Homologação"
    adapter = build_fiscal_adapter(provider_type=provider_type, token=token, environment=environment)
    try:
        response = adapter.test_connection()
    except FiscalAdapterError as exc:
        return ConnectionTestResult(False, str(exc) or "Erro ao conectar com Focus NFe", environment)

    logger.info(
        "fiscal.connection_test.completed environment=%s status=%s",
        environment,
        response.status_code,
    )
    if response.status_code == 401:
        return ConnectionTestResult(False, "Token inválido. Verifique suas credenciais.", environment)
    if response.status_code == 403:
        return ConnectionTestResult(False, "Acesso negado. Verifique as permissões do token.", environment)
    if not response.ok and response.status_code != 404:
        return ConnectionTestResult(
            False,
            f"Erro na API Focus NFe: {truncate_raw_text(response.text)}",
            environment,
        )
    return ConnectionTestResult(True, f"Conexão estabelecida com sucesso! Ambiente: {label}", environment)


def invoice_fields(service_order: ServiceOrder) -> dict[str, Any]:
    """Invoice fields exposed on a service order."""

    try:
        record = service_order.invoice
    except InvoiceRecord.DoesNotExist:
        record = None

    if record is None:
        return {
            "invoice_status": InvoiceRecord.Status.UNSET,
            "invoice_number": "",
            "invoice_key": "",
            "invoice_reference": "",
            "invoice_url": "",
            "invoice_pdf_url": "",
            "invoice_xml_url": "",
            "invoice_error": "",
        }
    return {
        "invoice_status": record.status,
        "invoice_number": record.number,
        "invoice_key": record.verification_code,
        "invoice_reference": record.reference or "",
        "invoice_url": record.url,
        "invoice_pdf_url": record.pdf_url,
        "invoice_xml_url": record.xml_url,
        "invoice_error": record.error_message,
    }
