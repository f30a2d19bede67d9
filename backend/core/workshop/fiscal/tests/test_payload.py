from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from workshop.fiscal.payload import (
    DEFAULT_NBS_CODE,
    FiscalPayloadError,
    build_nfse_payload,
    build_reference,
    normalize_list_item_code,
    normalize_nbs_code,
)
from workshop.fiscal.tests.fixtures import create_customer, create_issuer, create_service_order
from workshop.models import ServiceOrderItem


class CodeNormalizationTests(SimpleTestCase):
    def test_reference_format(self):
        self.assertEqual(build_reference(42, now_ms=1700000000123), "OS000000421700000000123")

    def test_list_item_code_is_six_digits(self):
        self.assertEqual(normalize_list_item_code("14.01"), "140100")
        self.assertEqual(normalize_list_item_code("01.01.01.99"), "010101")

    def test_nbs_code(self):
        self.assertEqual(normalize_nbs_code("1.1601.01"), "116010100")
        self.assertEqual(normalize_nbs_code("123456789"), "123456789")
        self.assertEqual(normalize_nbs_code("12"), DEFAULT_NBS_CODE)
        self.assertEqual(normalize_nbs_code(None), DEFAULT_NBS_CODE)


class BuildPayloadTests(TestCase):
    def setUp(self):
        self.company = create_issuer(optante_simples_nacional=False, regime_especial_tributacao=3)

    def test_full_payload(self):
        order = create_service_order(discount=Decimal("10.00"), final_amount=Decimal("140.00"))

        payload = build_nfse_payload(order, self.company)

        self.assertEqual(
            payload["prestador"],
            {
                "cnpj": "12345678000195",
                "codigo_municipio": "4106902",
                "optante_simples_nacional": False,
                "incentivo_fiscal": False,
                "regime_especial_tributacao": 3,
                "inscricao_municipal": "1234567",
            },
        )
        tomador = payload["tomador"]
        self.assertEqual(tomador["razao_social"], "Maria Souza")
        self.assertEqual(tomador["cpf"], "12345678909")
        self.assertNotIn("cnpj", tomador)
        self.assertEqual(tomador["endereco"]["cep"], "80010100")
        self.assertEqual(tomador["endereco"]["uf"], "PR")
        self.assertEqual(tomador["telefone"], "41998765432")

        servico = payload["servico"]
        self.assertEqual(servico["item_lista_servico"], "010101")
        self.assertEqual(servico["valor_servicos"], 140.0)
        self.assertEqual(servico["aliquota"], 2.0)
        self.assertEqual(servico["valor_iss"], 2.8)
        self.assertEqual(servico["valor_deducoes"], 10.0)
        self.assertEqual(servico["codigo_nbs"], "116010100")
        self.assertEqual(servico["codigo_cnae"], "4520001")
        self.assertEqual(servico["iss_retido"], "false")
        self.assertEqual(servico["indicador_issqn_retido"], 2)
        self.assertEqual(
            servico["discriminacao"],
            "1. Troca de óleo - Qtd: 1 - Valor: R$ 150.00\n\nVeículo: Gol 1.0 - Placa: ABC1D23",
        )

    def test_simples_nacional_drops_special_regime(self):
        self.company.optante_simples_nacional = True
        order = create_service_order()

        self.assertNotIn("regime_especial_tributacao", build_nfse_payload(order, self.company)["prestador"])

    def test_cnpj_preferred_and_incomplete_address_omitted(self):
        customer = create_customer(cnpj="98.765.432/0001-10", address="", email="x" * 90 + "@e.com")
        order = create_service_order(customer=customer, with_vehicle=False)

        tomador = build_nfse_payload(order, self.company)["tomador"]
        self.assertEqual(tomador["cnpj"], "98765432000110")
        self.assertNotIn("cpf", tomador)
        self.assertNotIn("endereco", tomador)
        self.assertEqual(len(tomador["email"]), 80)

    def test_description_is_bounded(self):
        order = create_service_order()
        service = order.items.get().service
        for _ in range(10):
            ServiceOrderItem.objects.create(
                service_order=order,
                item_type=ServiceOrderItem.ItemType.SERVICE,
                service=service,
                description="D" * 250,
                unit_price=Decimal("1.00"),
            )

        description = build_nfse_payload(order, self.company)["servico"]["discriminacao"]
        self.assertEqual(len(description), 2000)

    def test_products_only_raise(self):
        order = create_service_order()
        order.items.update(item_type=ServiceOrderItem.ItemType.PRODUCT)

        with self.assertRaises(FiscalPayloadError):
            build_nfse_payload(order, self.company)
