from decimal import Decimal

from django.test import TestCase

from workshop.fiscal.tests.fixtures import create_customer, create_issuer, create_service_order
from workshop.models import Company, ServiceOrderItem


class CompanyTests(TestCase):
    def test_oldest_company_is_the_issuer(self):
        first = create_issuer(company_name="Primeira")
        create_issuer(company_name="Segunda")
        self.assertEqual(Company.get_issuer(), first)

    def test_no_issuer(self):
        self.assertIsNone(Company.get_issuer())

    def test_complete_address_requires_zip_code(self):
        self.assertFalse(create_issuer(zip_code="").has_complete_address)


class CustomerTests(TestCase):
    def test_tax_document_accepts_cpf_or_cnpj(self):
        self.assertTrue(create_customer(cpf="", cnpj="12.345.678/0001-95").has_tax_document)
        self.assertFalse(create_customer(cpf=" ", cnpj="").has_tax_document)


class ServiceOrderTests(TestCase):
    def test_billable_amount_prefers_final_amount(self):
        order = create_service_order(total_amount=Decimal("100.00"))
        self.assertEqual(order.billable_amount, Decimal("100.00"))

        order.final_amount = Decimal("90.00")
        self.assertEqual(order.billable_amount, Decimal("90.00"))

    def test_item_total_and_billable_service(self):
        order = create_service_order()
        product = ServiceOrderItem.objects.create(
            service_order=order,
            item_type=ServiceOrderItem.ItemType.PRODUCT,
            quantity=Decimal("2"),
            unit_price=Decimal("12.50"),
        )
        self.assertEqual(product.total, Decimal("25.00"))
        self.assertFalse(product.is_billable_service)
        self.assertTrue(order.items.first().is_billable_service)
