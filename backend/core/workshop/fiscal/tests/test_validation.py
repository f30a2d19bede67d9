from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from workshop.fiscal.tests.fixtures import (
    create_active_config,
    create_customer,
    create_issuer,
    create_service,
    create_service_order,
)
from workshop.fiscal.validation import (
    ValidationIssue,
    can_emit,
    is_valid_service_code,
    normalize_service_code,
    partition_issues,
    validate_service_order,
)
from workshop.models import ServiceOrder, ServiceOrderItem


class ServiceCodeTests(SimpleTestCase):
    def test_dotted_code_normalizes_to_six_digits(self):
        self.assertEqual(normalize_service_code("01.01.01"), "010101")
        self.assertTrue(is_valid_service_code("01.01.01"))

    def test_invalid_codes(self):
        self.assertFalse(is_valid_service_code("ABC12"))
        self.assertFalse(is_valid_service_code("14.01"))
        self.assertFalse(is_valid_service_code("0101011"))
        self.assertFalse(is_valid_service_code(None))


class ValidateServiceOrderTests(TestCase):
    def setUp(self):
        self.company = create_issuer()
        self.config = create_active_config()

    def _messages(self, issues):
        return [issue.message for issue in issues]

    def test_complete_order_can_emit_without_issues(self):
        order = create_service_order()
        issues = validate_service_order(order.pk)
        self.assertEqual(issues, [])
        self.assertTrue(can_emit(issues))

    def test_missing_issuer_tax_id_is_the_only_blocking_issue(self):
        self.company.cnpj = ""
        self.company.save()
        order = create_service_order()

        issues = validate_service_order(order.pk)
        errors, warnings = partition_issues(issues)

        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].field, "Empresa")
        self.assertEqual(errors[0].kind, ValidationIssue.ERROR)
        self.assertEqual(warnings, [])
        self.assertFalse(can_emit(issues))

    def test_missing_issuer_stops_early(self):
        self.company.delete()
        order = create_service_order(customer=create_customer(cpf="", cnpj=""))

        issues = validate_service_order(order)
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].field, "Sistema")
        self.assertEqual(issues[0].message, "Dados da empresa não encontrados")

    def test_missing_token_blocks(self):
        order = create_service_order()
        self.config.api_token = ""
        self.config.save()

        issues = validate_service_order(order)
        self.assertIn("Token da Focus NFe não configurado", self._messages(issues))
        self.assertFalse(can_emit(issues))

    def test_customer_without_document_and_address(self):
        customer = create_customer(cpf="", cnpj="", address="", city="")
        order = create_service_order(customer=customer)

        messages = self._messages(validate_service_order(order))
        self.assertIn("Cliente não possui CPF ou CNPJ cadastrado", messages)
        self.assertIn("Endereço completo do cliente não cadastrado", messages)

    def test_invalid_service_code_blocks(self):
        order = create_service_order(service=create_service(name="Alinhamento", codigo_servico_municipal="ABC12"))

        errors, _warnings = partition_issues(validate_service_order(order))
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].field, "Serviços")
        self.assertIn('Serviço "Alinhamento" possui código fiscal inválido', errors[0].message)
        self.assertIn('Código atual: "ABC12"', errors[0].message)

    def test_exempt_service_bypasses_code_check(self):
        service = create_service(codigo_servico_municipal="ABC12", isento_nfe=True)
        order = create_service_order(service=service)

        self.assertTrue(can_emit(validate_service_order(order)))

    def test_each_service_is_checked_once(self):
        service = create_service(codigo_servico_municipal="")
        order = create_service_order(service=service)
        ServiceOrderItem.objects.create(
            service_order=order,
            item_type=ServiceOrderItem.ItemType.SERVICE,
            service=service,
            unit_price=Decimal("10.00"),
        )

        errors, _warnings = partition_issues(validate_service_order(order))
        self.assertEqual(len(errors), 1)
        self.assertIn('Código atual: "não informado"', errors[0].message)

    def test_product_only_order_is_a_warning(self):
        order = create_service_order()
        order.items.all().delete()
        ServiceOrderItem.objects.create(
            service_order=order,
            item_type=ServiceOrderItem.ItemType.PRODUCT,
            description="Filtro de óleo",
            unit_price=Decimal("40.00"),
        )

        issues = validate_service_order(order.pk)
        self.assertTrue(can_emit(issues))
        self.assertEqual(
            [(issue.kind, issue.field) for issue in issues],
            [(ValidationIssue.WARNING, "Serviços")],
        )

    def test_order_state_warnings_do_not_block(self):
        order = create_service_order(
            status=ServiceOrder.Status.IN_SERVICE,
            payment_status=ServiceOrder.PaymentStatus.PENDING,
        )

        issues = validate_service_order(order)
        self.assertTrue(can_emit(issues))
        self.assertEqual([issue.field for issue in issues], ["Status", "Pagamento"])

    def test_issues_keep_check_order(self):
        self.company.company_name = ""
        self.company.save()
        customer = create_customer(cpf="")
        order = create_service_order(
            customer=customer,
            service=create_service(codigo_servico_municipal="1"),
            payment_status=ServiceOrder.PaymentStatus.PARTIAL,
        )

        fields = [issue.field for issue in validate_service_order(order)]
        self.assertEqual(fields, ["Empresa", "Cliente", "Serviços", "Pagamento"])

    def test_unknown_order_raises(self):
        with self.assertRaises(ServiceOrder.DoesNotExist):
            validate_service_order(999999)
