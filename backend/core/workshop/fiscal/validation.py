from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from workshop.fiscal.models import FiscalConfig
from workshop.models import Company, Service, ServiceOrder, ServiceOrderItem

logger = logging.getLogger(__name__)

_NON_DIGITS_RE = re.compile(r"\D")

SERVICE_CODE_LENGTH = 6


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    ERROR = "error"
    WARNING = "warning"

    kind: str
    field: str
    message: str
    editable: bool = False

    @property
    def is_blocking(self) -> bool:
        return self.kind == self.ERROR

    def as_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "field": self.field,
            "message": self.message,
            "editable": self.editable,
        }


def only_digits(value: str | None) -> str:
    return _NON_DIGITS_RE.sub("", value or "")


def normalize_service_code(value: str | None) -> str:
    """Strip everything but digits: "01.01.01" -> "010101"."""

    return only_digits(value)


def is_valid_service_code(value: str | None) -> bool:
    return len(normalize_service_code(value)) == SERVICE_CODE_LENGTH


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


def _error(field: str, message: str, *, editable: bool = True) -> ValidationIssue:
    return ValidationIssue(ValidationIssue.ERROR, field, message, editable)


def _warning(field: str, message: str) -> ValidationIssue:
    return ValidationIssue(ValidationIssue.WARNING, field, message, False)


def _issuer_issues(company: Company, config: FiscalConfig | None) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if _blank(company.company_name):
        issues.append(_error("Empresa", "Nome da empresa não cadastrado"))
    if _blank(company.cnpj):
        issues.append(_error("Empresa", "CNPJ da empresa não cadastrado"))
    if not company.has_complete_address:
        issues.append(_error("Empresa", "Endereço completo da empresa não cadastrado"))
    if config is None or not config.has_token:
        issues.append(_error("Focus NFe", "Token da Focus NFe não configurado"))
    return issues


def _customer_issues(service_order: ServiceOrder) -> list[ValidationIssue]:
    customer = service_order.customer
    issues: list[ValidationIssue] = []
    if not customer.has_tax_document:
        issues.append(_error("Cliente", "Cliente não possui CPF ou CNPJ cadastrado"))
    if not customer.has_complete_address:
        issues.append(_error("Cliente", "Endereço completo do cliente não cadastrado"))
    return issues


def _distinct_services(items: Iterable[ServiceOrderItem]) -> list[Service]:
    seen: set[int] = set()
    services: list[Service] = []
    for item in items:
        if not item.is_billable_service or item.service_id in seen:
            continue
        seen.add(item.service_id)
        services.append(item.service)
    return services


def _service_issues(items: list[ServiceOrderItem]) -> list[ValidationIssue]:
    services = _distinct_services(items)
    if not services:
        return [_warning("Serviços", "Esta OS não possui serviços, apenas produtos")]

    issues: list[ValidationIssue] = []
    for service in services:
        if service.isento_nfe:
            continue
        if not is_valid_service_code(service.codigo_servico_municipal):
            current = service.codigo_servico_municipal or "não informado"
            issues.append(
                _error(
                    "Serviços",
                    f'Serviço "{service.name}" possui código fiscal inválido. '
                    "O código deve ter exatamente 6 dígitos numéricos (ex: 010101). "
                    f'Código atual: "{current}"',
                )
            )
    return issues


def _order_state_issues(service_order: ServiceOrder) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if service_order.status != ServiceOrder.Status.DELIVERED:
        issues.append(_warning("Status", 'A OS não está marcada como "Entregue"'))
    if service_order.payment_status != ServiceOrder.PaymentStatus.PAID:
        issues.append(_warning("Pagamento", 'A OS não está marcada como "Pago"'))
    return issues


def load_service_order(service_order_id: int) -> ServiceOrder:
    return (
        ServiceOrder.objects.select_related("customer", "vehicle")
        .prefetch_related("items__service")
        .get(pk=service_order_id)
    )


def validate_service_order(
    service_order: ServiceOrder | int,
    *,
    company: Company | None = None,
    config: FiscalConfig | None = None,
) -> list[ValidationIssue]:
    """Pre-flight checks for NFS-e emission, in display order.

    Only a missing issuer stops the pass early; every other check contributes its
    own issues. Issues are plain data and are never persisted.

    Raises:
        ServiceOrder.DoesNotExist: when given an id that matches no order.
    """

    if not isinstance(service_order, ServiceOrder):
        service_order = load_service_order(service_order)

    company = company or Company.get_issuer()
    if company is None:
        return [_error("Sistema", "Dados da empresa não encontrados")]

    if config is None:
        config = FiscalConfig.get_active()

    issues: list[ValidationIssue] = []
    issues.extend(_issuer_issues(company, config))
    issues.extend(_customer_issues(service_order))
    issues.extend(_service_issues(list(service_order.items.all())))
    issues.extend(_order_state_issues(service_order))

    logger.info(
        "fiscal.validation.completed service_order_id=%s errors=%s warnings=%s",
        service_order.pk,
        sum(1 for issue in issues if issue.is_blocking),
        sum(1 for issue in issues if not issue.is_blocking),
    )
    return issues


def partition_issues(
    issues: Iterable[ValidationIssue],
) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    for issue in issues:
        (errors if issue.is_blocking else warnings).append(issue)
    return errors, warnings


def can_emit(issues: Iterable[ValidationIssue]) -> bool:
    return not any(issue.is_blocking for issue in issues)
