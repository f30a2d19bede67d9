import json

from django.test import TestCase, override_settings

from workshop.fiscal.models import InvoiceRecord
from workshop.fiscal.tests.fixtures import create_invoice_record, create_service_order

REFERENCE = "OS000000011771234567890"
WEBHOOK_URL = "/api/fiscal/webhook/"

AUTHORIZED_PAYLOAD = {
    "ref": REFERENCE,
    "status": "autorizado",
    "numero": "2024",
    "codigo_verificacao": "XYZ98765",
    "url": "https://nfse.curitiba.pr.gov.br/nota/2024",
    "url_danfse": "https://focusnfe.s3.sa-east-1.amazonaws.com/arquivos/2024.pdf",
    "caminho_xml_nota_fiscal": "/arquivos/2024.xml",
}


@override_settings(FISCAL_WEBHOOK_SECRET="webhook-secret")
class FiscalWebhookTests(TestCase):
    def setUp(self):
        self.order = create_service_order()
        self.record = create_invoice_record(self.order, reference=REFERENCE)

    def _post(self, payload, *, secret="webhook-secret", raw=None):
        body = raw if raw is not None else json.dumps(payload).encode("utf-8")
        headers = {"HTTP_AUTHORIZATION": secret} if secret is not None else {}
        return self.client.post(WEBHOOK_URL, data=body, content_type="application/json", **headers)

    def test_authorized_payload_is_applied(self):
        resp = self._post(AUTHORIZED_PAYLOAD)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["status"], InvoiceRecord.Status.AUTHORIZED)
        self.assertEqual(body["previous_status"], InvoiceRecord.Status.PROCESSING_AUTHORIZATION)

        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.AUTHORIZED)
        self.assertEqual(self.record.number, "2024")
        self.assertEqual(self.record.verification_code, "XYZ98765")
        self.assertEqual(self.record.pdf_url, AUTHORIZED_PAYLOAD["url_danfse"])
        self.assertEqual(self.record.xml_url, "https://homologacao.focusnfe.com.br/arquivos/2024.xml")
        self.assertEqual(self.record.error_message, "")

    def test_bearer_scheme_is_accepted(self):
        resp = self._post(AUTHORIZED_PAYLOAD, secret="Bearer webhook-secret")
        self.assertEqual(resp.status_code, 200)

    def test_duplicate_delivery_is_idempotent(self):
        self._post(AUTHORIZED_PAYLOAD)
        self.record.refresh_from_db()
        first = (self.record.status, self.record.number, self.record.pdf_url, self.record.xml_url)

        resp = self._post(AUTHORIZED_PAYLOAD)
        self.assertEqual(resp.status_code, 200)
        self.record.refresh_from_db()
        self.assertEqual(
            (self.record.status, self.record.number, self.record.pdf_url, self.record.xml_url),
            first,
        )

    def test_late_processing_update_does_not_revert_authorization(self):
        self._post(AUTHORIZED_PAYLOAD)

        resp = self._post({"ref": REFERENCE, "status": "processando_autorizacao"})
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["applied"])

        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.AUTHORIZED)
        self.assertEqual(self.record.number, "2024")

    def test_late_error_does_not_downgrade_authorization(self):
        self._post(AUTHORIZED_PAYLOAD)

        self._post({"ref": REFERENCE, "status": "erro_autorizacao", "erros": [{"Codigo": "E1", "Descricao": "Falha"}]})

        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.AUTHORIZED)
        self.assertEqual(self.record.error_message, "")
        self.assertEqual(self.record.pdf_url, AUTHORIZED_PAYLOAD["url_danfse"])

    def test_error_is_extracted_before_declared_status(self):
        resp = self._post(
            {
                "ref": REFERENCE,
                "status": "autorizado",
                "erros": [{"Codigo": "E160", "Descricao": "Código de serviço inválido"}],
            }
        )
        self.assertEqual(resp.status_code, 200)

        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.AUTHORIZATION_ERROR)
        self.assertEqual(self.record.error_message, "[E160] Código de serviço inválido")
        self.assertEqual(self.record.error_code, "E160")

    def test_rejected_without_message_gets_synthesized_one(self):
        self._post({"ref": REFERENCE, "status": "rejeitado"})

        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.REJECTED)
        self.assertEqual(self.record.error_message, "NFS-e rejeitado")

    def test_authorized_note_can_be_cancelled(self):
        self._post(AUTHORIZED_PAYLOAD)
        self._post({"ref": REFERENCE, "status": "cancelado"})

        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.CANCELLED)

    def test_missing_ref_returns_400(self):
        resp = self._post({"status": "autorizado"})
        self.assertEqual(resp.status_code, 400)

    def test_invalid_json_returns_400(self):
        resp = self._post(None, raw=b"{not json")
        self.assertEqual(resp.status_code, 400)

    def test_unknown_reference_returns_404(self):
        resp = self._post({"ref": "OS999", "status": "autorizado"})
        self.assertEqual(resp.status_code, 404)

    def test_wrong_secret_returns_401(self):
        resp = self._post(AUTHORIZED_PAYLOAD, secret="nope")
        self.assertEqual(resp.status_code, 401)
        self.record.refresh_from_db()
        self.assertEqual(self.record.status, InvoiceRecord.Status.PROCESSING_AUTHORIZATION)

    def test_missing_secret_header_returns_401(self):
        resp = self._post(AUTHORIZED_PAYLOAD, secret=None)
        self.assertEqual(resp.status_code, 401)

    @override_settings(FISCAL_WEBHOOK_SECRET="")
    def test_unconfigured_secret_returns_503(self):
        resp = self._post(AUTHORIZED_PAYLOAD)
        self.assertEqual(resp.status_code, 503)
