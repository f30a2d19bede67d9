from __future__ import annotations

import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from django.utils import timezone

from workshop.fiscal.validation import only_digits
from workshop.models import Company, ServiceOrder, ServiceOrderItem

DEFAULT_NBS_CODE = "116010100"
DESCRIPTION_LIMIT = 2000
RECIPIENT_NAME_LIMIT = 115
STREET_LIMIT = 125
DISTRICT_LIMIT = 60
EMAIL_LIMIT = 80
PHONE_LIMIT = 11
ISS_NOT_WITHHELD = 2

_CENTS = Decimal("0.01")


class FiscalPayloadError(RuntimeError):
    """Raised when a service order cannot be turned into a gateway payload."""


def build_reference(service_order_id: int, *, now_ms: int | None = None) -> str:
    """Correlation key sent to the gateway: `OS<8-digit order id><epoch ms>`."""

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"OS{int(service_order_id):08d}{now_ms}"


def _money(value: Decimal) -> float:
    return float(value.quantize(_CENTS, rounding=ROUND_HALF_UP))


def _format_quantity(value: Decimal) -> str:
    return format(value.normalize(), "f")


def normalize_list_item_code(value: str | None) -> str:
    digits = only_digits(value)
    return digits[:6].ljust(6, "0")


def normalize_nbs_code(value: str | None) -> str:
    digits = only_digits(value)
    if not 7 <= len(digits) <= 9:
        return DEFAULT_NBS_CODE
    return digits.ljust(9, "0")


def _service_items(service_order: ServiceOrder) -> list[ServiceOrderItem]:
    return [item for item in service_order.items.all() if item.is_billable_service]


def build_service_description(service_order: ServiceOrder, items: list[ServiceOrderItem]) -> str:
    lines = []
    for index, item in enumerate(items, start=1):
        label = item.description or (item.service.name if item.service else "") or "Serviço"
        lines.append(
            f"{index}. {label} - Qtd: {_format_quantity(item.quantity)} "
            f"- Valor: R$ {item.total.quantize(_CENTS, rounding=ROUND_HALF_UP)}"
        )
    description = "\n".join(lines)

    vehicle = service_order.vehicle
    if vehicle is not None:
        description += f"\n\nVeículo: {vehicle.model or ''} - Placa: {vehicle.plate or ''}"
    return description[:DESCRIPTION_LIMIT]


def _issuer(company: Company) -> dict[str, Any]:
    issuer: dict[str, Any] = {
        "cnpj": only_digits(company.cnpj),
        "codigo_municipio": company.city_code or "",
        "optante_simples_nacional": bool(company.optante_simples_nacional),
        "incentivo_fiscal": bool(company.incentivo_fiscal),
    }

    # The national NFS-e rejects a special regime for Simples Nacional issuers.
    regime = company.regime_especial_tributacao
    if not company.optante_simples_nacional and regime is not None and 1 <= regime <= 6:
        issuer["regime_especial_tributacao"] = int(regime)

    registration = only_digits(company.inscricao_municipal)
    if registration:
        issuer["inscricao_municipal"] = registration
    return issuer


def _recipient(service_order: ServiceOrder, company: Company) -> dict[str, Any]:
    customer = service_order.customer
    recipient: dict[str, Any] = {"razao_social": (customer.name or "")[:RECIPIENT_NAME_LIMIT]}

    if (customer.cnpj or "").strip():
        recipient["cnpj"] = only_digits(customer.cnpj)
    elif (customer.cpf or "").strip():
        recipient["cpf"] = only_digits(customer.cpf)

    if customer.has_complete_address:
        address: dict[str, Any] = {
            "logradouro": customer.address[:STREET_LIMIT],
            "numero": "SN",
            "bairro": (customer.city or "Centro")[:DISTRICT_LIMIT],
            "codigo_municipio": customer.city_code or company.city_code or "",
            "uf": (customer.state or company.state or "").upper()[:2],
        }
        zip_code = only_digits(customer.zip_code)
        if len(zip_code) == 8:
            address["cep"] = zip_code
        recipient["endereco"] = address

    phone = only_digits(customer.phone)[:PHONE_LIMIT]
    if len(phone) >= 10:
        recipient["telefone"] = phone

    if (customer.email or "").strip():
        recipient["email"] = customer.email.strip()[:EMAIL_LIMIT]
    return recipient


def build_nfse_payload(service_order: ServiceOrder, company: Company) -> dict[str, Any]:
    """Build the NFS-e submission body for a service order.

    Fiscal codes come from the first service line; every service line is listed in
    the description.

    Raises:
        FiscalPayloadError: if the order has no billable service lines.
    """

    items = _service_items(service_order)
    if not items:
        raise FiscalPayloadError(
            "Esta ordem não possui serviços para emitir NFS-e. "
            "Apenas serviços podem ser incluídos na NFS-e."
        )

    first_service = items[0].service
    total = service_order.billable_amount
    discount = service_order.discount or Decimal("0")
    rate = first_service.issqn_aliquota or Decimal("0")
    iss_value = total * rate / Decimal("100") if rate > 0 else Decimal("0")

    service: dict[str, Any] = {
        "item_lista_servico": normalize_list_item_code(first_service.codigo_servico_municipal),
        "discriminacao": build_service_description(service_order, items),
        "valor_servicos": _money(total),
        "iss_retido": "false",
        "aliquota": _money(rate),
        "codigo_nbs": normalize_nbs_code(first_service.nbs_code),
        "indicador_issqn_retido": ISS_NOT_WITHHELD,
    }

    cnae = only_digits(first_service.cnae_code)
    if len(cnae) == 7:
        service["codigo_cnae"] = cnae
    if iss_value > 0:
        service["valor_iss"] = _money(iss_value)
    if discount > 0:
        service["valor_deducoes"] = _money(discount)

    return {
        "data_emissao": timezone.localdate().isoformat(),
        "prestador": _issuer(company),
        "tomador": _recipient(service_order, company),
        "servico": service,
    }
