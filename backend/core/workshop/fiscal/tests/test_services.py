import json
from unittest import mock

from django.test import TestCase

from workshop.fiscal.adapters import (
    FiscalAdapterTechnicalError,
    FiscalAdapterTimeoutError,
    GatewayResponse,
)
from workshop.fiscal.adapters.mock import MockFiscalAdapter
from workshop.fiscal.models import InvoiceRecord
from workshop.fiscal.services import (
    FiscalEmissionRefused,
    FiscalStatusRefreshError,
    InvoiceRecordNotFound,
    apply_gateway_update,
    check_gateway_connection,
    emit_service_invoice,
    http_status_message,
    invoice_fields,
    normalize_gateway_status,
    refresh_invoice_status,
)
from workshop.fiscal.tests.fixtures import (
    create_active_config,
    create_invoice_record,
    create_issuer,
    create_service,
    create_service_order,
    reset_mock_gateway,
)

BASE_URL = "https://homologacao.focusnfe.com.br"


def _json(status_code, payload):
    return GatewayResponse(status_code, json.dumps(payload).encode("utf-8"), {"Content-Type": "application/json"})


class EmitServiceInvoiceTests(TestCase):
    def setUp(self):
        reset_mock_gateway()
        create_issuer()
        create_active_config()
        self.order = create_service_order()
        self.adapter = MockFiscalAdapter(token="t", base_url=BASE_URL)

    def tearDown(self):
        reset_mock_gateway()

    def test_accepted_emission_moves_to_processing(self):
        result = emit_service_invoice(self.order.pk, adapter=self.adapter)

        self.assertTrue(result.success)
        self.assertTrue(result.reference.startswith("OS%08d" % self.order.pk))
        record = InvoiceRecord.objects.get(service_order=self.order)
        self.assertEqual(record.reference, result.reference)
        self.assertEqual(record.status, InvoiceRecord.Status.PROCESSING_AUTHORIZATION)
        self.assertEqual(result.as_response_body()["invoice"]["ref"], result.reference)

    def test_emit_then_refresh_authorizes(self):
        emit_service_invoice(self.order.pk, adapter=self.adapter)

        result = refresh_invoice_status(self.order.pk, adapter=self.adapter)

        self.assertTrue(result.applied)
        self.assertEqual(result.old_status, InvoiceRecord.Status.PROCESSING_AUTHORIZATION)
        self.assertEqual(result.new_status, InvoiceRecord.Status.AUTHORIZED)
        fields = invoice_fields(InvoiceRecord.objects.get(service_order=self.order).service_order)
        self.assertEqual(fields["invoice_status"], InvoiceRecord.Status.AUTHORIZED)
        self.assertTrue(fields["invoice_number"])
        self.assertTrue(fields["invoice_xml_url"].startswith(f"{BASE_URL}/arquivos/"))

    def test_refused_on_validation_errors(self):
        order = create_service_order(service=create_service(codigo_servico_municipal="ABC"))

        with self.assertRaises(FiscalEmissionRefused) as ctx:
            emit_service_invoice(order.pk, adapter=self.adapter)
        self.assertEqual(len(ctx.exception.issues), 1)
        self.assertFalse(InvoiceRecord.objects.filter(service_order=order).exists())

    def test_refused_when_already_authorized(self):
        create_invoice_record(self.order, status=InvoiceRecord.Status.AUTHORIZED, number="1")

        with self.assertRaises(FiscalEmissionRefused):
            emit_service_invoice(self.order.pk, adapter=self.adapter)

    def test_reemission_after_error_gets_new_reference_and_clears_error(self):
        create_invoice_record(
            self.order,
            reference="OS-OLD",
            status=InvoiceRecord.Status.AUTHORIZATION_ERROR,
            error_message="Falhou",
            error_code="E1",
        )

        result = emit_service_invoice(self.order.pk, adapter=self.adapter)

        record = InvoiceRecord.objects.get(service_order=self.order)
        self.assertNotEqual(record.reference, "OS-OLD")
        self.assertEqual(record.reference, result.reference)
        self.assertEqual(record.error_message, "")
        self.assertEqual(record.status, InvoiceRecord.Status.PROCESSING_AUTHORIZATION)

    def test_gateway_rejection_is_normalized_and_stored(self):
        adapter = mock.Mock(base_url=BASE_URL)
        adapter.issue_invoice.return_value = _json(
            422,
            {"codigo": "requisicao_invalida", "mensagem": "CNPJ do prestador inválido"},
        )

        result = emit_service_invoice(self.order.pk, adapter=adapter)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "requisicao_invalida")
        record = InvoiceRecord.objects.get(service_order=self.order)
        self.assertEqual(record.status, InvoiceRecord.Status.AUTHORIZATION_ERROR)
        self.assertEqual(record.error_message, "[requisicao_invalida] CNPJ do prestador inválido")

    def test_status_fallback_message_when_body_is_empty(self):
        adapter = mock.Mock(base_url=BASE_URL)
        adapter.issue_invoice.return_value = GatewayResponse(401, b"", {})

        result = emit_service_invoice(self.order.pk, adapter=adapter)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "HTTP_401")
        self.assertIn("Erro de autenticação (401)", result.message)

    def test_non_json_gateway_body(self):
        adapter = mock.Mock(base_url=BASE_URL)
        adapter.issue_invoice.return_value = GatewayResponse(200, b"<html>erro</html>", {})

        result = emit_service_invoice(self.order.pk, adapter=adapter)

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Erro ao processar resposta: <html>erro</html>")

    def test_gateway_timeout_leaves_record_recheckable(self):
        adapter = mock.Mock(base_url=BASE_URL)
        adapter.issue_invoice.side_effect = FiscalAdapterTimeoutError("timed out")

        result = emit_service_invoice(self.order.pk, adapter=adapter)

        self.assertTrue(result.success)
        self.assertTrue(result.timed_out)
        record = InvoiceRecord.objects.get(service_order=self.order)
        self.assertEqual(record.status, InvoiceRecord.Status.PROCESSING_AUTHORIZATION)

    def test_transport_failure_is_stored_as_connection_error(self):
        adapter = mock.Mock(base_url=BASE_URL)
        adapter.issue_invoice.side_effect = FiscalAdapterTechnicalError("Erro ao conectar com a Focus NFe: refused")

        result = emit_service_invoice(self.order.pk, adapter=adapter)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "CONEXAO")


class GatewayUpdateTests(TestCase):
    def setUp(self):
        self.order = create_service_order()
        self.record = create_invoice_record(self.order, reference="REF-1")

    def test_unknown_status_keeps_processing_and_reports_raw_value(self):
        result = apply_gateway_update("REF-1", {"status": "em_fila"}, base_url=BASE_URL)

        self.assertEqual(result.new_status, InvoiceRecord.Status.PROCESSING_AUTHORIZATION)
        self.assertEqual(result.gateway_status, "em_fila")

    def test_error_then_authorization_recovers(self):
        apply_gateway_update("REF-1", {"status": "erro_autorizacao", "mensagem_sefaz": "Falha"}, base_url=BASE_URL)
        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.AUTHORIZATION_ERROR)

        apply_gateway_update("REF-1", {"status": "autorizado", "numero": "10"}, base_url=BASE_URL)
        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.AUTHORIZED)
        self.assertEqual(self.record.error_message, "")
        self.assertEqual(self.record.pdf_url, f"{BASE_URL}/v2/nfse/REF-1.pdf")

    def test_unknown_reference(self):
        with self.assertRaises(InvoiceRecordNotFound):
            apply_gateway_update("REF-X", {"status": "autorizado"}, base_url=BASE_URL)

    def test_status_aliases(self):
        self.assertEqual(normalize_gateway_status("autorizado"), InvoiceRecord.Status.AUTHORIZED)
        self.assertEqual(normalize_gateway_status(" Cancelado "), InvoiceRecord.Status.CANCELLED)
        self.assertIsNone(normalize_gateway_status("qualquer"))
        self.assertIsNone(normalize_gateway_status(None))


class RefreshInvoiceStatusTests(TestCase):
    def test_requires_reference(self):
        order = create_service_order()
        with self.assertRaises(InvoiceRecordNotFound):
            refresh_invoice_status(order.pk, adapter=mock.Mock())

    def test_consult_failure_leaves_record_untouched(self):
        order = create_service_order()
        record = create_invoice_record(order, reference="REF-2")
        adapter = mock.Mock(base_url=BASE_URL)
        adapter.check_status.return_value = _json(500, {"mensagem": "Instabilidade"})

        with self.assertRaises(FiscalStatusRefreshError) as ctx:
            refresh_invoice_status(order.pk, adapter=adapter)

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(str(ctx.exception), "Erro ao consultar Focus: Instabilidade")
        record.refresh_from_db()
        self.assertEqual(record.status, InvoiceRecord.Status.PROCESSING_AUTHORIZATION)


class ConnectionCheckTests(TestCase):
    def _check(self, response):
        with mock.patch("workshop.fiscal.services.build_fiscal_adapter") as build:
            build.return_value.test_connection.return_value = response
            return check_gateway_connection("token", "SANDBOX")

    def test_success_and_not_found_count_as_authenticated(self):
        self.assertTrue(self._check(_json(200, [])).success)
        self.assertTrue(self._check(_json(404, {})).success)

    def test_auth_failures(self):
        self.assertEqual(self._check(_json(401, {})).message, "Token inválido. Verifique suas credenciais.")
        self.assertFalse(self._check(_json(403, {})).success)

    def test_http_status_messages(self):
        self.assertIn("permissão", http_status_message(403))
        self.assertEqual(http_status_message(422, "campo x"), "Dados inválidos: campo x")
        self.assertEqual(http_status_message(418, ""), "Erro HTTP 418: ")
