from decimal import Decimal

from workshop.fiscal.adapters.mock import MockFiscalAdapter
from workshop.fiscal.crypto import encrypt_token
from workshop.fiscal.models import FiscalConfig, InvoiceRecord
from workshop.models import Company, Customer, Service, ServiceOrder, ServiceOrderItem, Vehicle


def create_issuer(**overrides) -> Company:
    values = {
        "company_name": "Oficina Boa Vista LTDA",
        "trade_name": "Oficina Boa Vista",
        "cnpj": "12.345.678/0001-95",
        "inscricao_municipal": "123.456-7",
        "address": "Rua das Oficinas, 100",
        "city": "Curitiba",
        "state": "PR",
        "zip_code": "80000-000",
        "city_code": "4106902",
        "optante_simples_nacional": True,
    }
    values.update(overrides)
    return Company.objects.create(**values)


def create_active_config(*, provider_type: str = "mock", token: str = "token-123", **overrides) -> FiscalConfig:
    values = {
        "provider_type": provider_type,
        "api_token": encrypt_token(token),
        "environment": FiscalConfig.Environment.SANDBOX,
        "active": True,
    }
    values.update(overrides)
    return FiscalConfig.objects.create(**values)


def create_customer(**overrides) -> Customer:
    values = {
        "name": "Maria Souza",
        "cpf": "123.456.789-09",
        "email": "maria@example.com",
        "phone": "(41) 99876-5432",
        "address": "Av. Brasil, 200",
        "city": "Curitiba",
        "state": "PR",
        "zip_code": "80010-100",
        "city_code": "4106902",
    }
    values.update(overrides)
    return Customer.objects.create(**values)


def create_service(**overrides) -> Service:
    values = {
        "name": "Troca de óleo",
        "codigo_servico_municipal": "01.01.01",
        "nbs_code": "1160101",
        "cnae_code": "4520-0/01",
        "issqn_aliquota": Decimal("2.00"),
    }
    values.update(overrides)
    return Service.objects.create(**values)


def create_service_order(
    *,
    customer: Customer | None = None,
    service: Service | None = None,
    with_vehicle: bool = True,
    **overrides,
) -> ServiceOrder:
    customer = customer or create_customer()
    vehicle = None
    if with_vehicle:
        vehicle = Vehicle.objects.create(customer=customer, model="Gol 1.0", plate="ABC1D23")

    values = {
        "customer": customer,
        "vehicle": vehicle,
        "status": ServiceOrder.Status.DELIVERED,
        "payment_status": ServiceOrder.PaymentStatus.PAID,
        "total_amount": Decimal("150.00"),
        "discount": Decimal("0.00"),
    }
    values.update(overrides)
    order = ServiceOrder.objects.create(**values)

    if service is None:
        service = create_service()
    ServiceOrderItem.objects.create(
        service_order=order,
        item_type=ServiceOrderItem.ItemType.SERVICE,
        service=service,
        description=service.name,
        quantity=Decimal("1"),
        unit_price=Decimal("150.00"),
    )
    return order


def create_invoice_record(order: ServiceOrder, *, reference: str = "OS000000011700000000000", **overrides) -> InvoiceRecord:
    values = {
        "service_order": order,
        "reference": reference,
        "status": InvoiceRecord.Status.PROCESSING_AUTHORIZATION,
    }
    values.update(overrides)
    return InvoiceRecord.objects.create(**values)


def reset_mock_gateway() -> None:
    MockFiscalAdapter._documents.clear()
