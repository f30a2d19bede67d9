from __future__ import annotations

import itertools
import json
from typing import Any, Mapping
from uuid import uuid4

from .base import FiscalAdapterBase, FiscalAdapterError, GatewayResponse

_JSON_HEADERS = {"Content-Type": "application/json"}


def _json_response(status_code: int, payload: Mapping[str, Any]) -> GatewayResponse:
    return GatewayResponse(
        status_code=status_code,
        content=json.dumps(payload).encode("utf-8"),
        headers=dict(_JSON_HEADERS),
    )


class MockFiscalAdapter(FiscalAdapterBase):
    """In-memory gateway for local development and tests.

    Behavior:
    - `issue_invoice(...)` accepts the note as `processando_autorizacao`.
    - `check_status(...)` authorizes it on the first consult, generating a fake
      number, verification code and document paths.
    - `fetch_document(...)` returns a small fake PDF/XML body.
    """

    _sequence = itertools.count(1000)
    _documents: dict[str, dict[str, Any]] = {}

    def issue_invoice(self, reference: str, data: Mapping[str, Any]) -> GatewayResponse:
        if reference in self._documents:
            return _json_response(
                422,
                {"codigo": "referencia_duplicada", "mensagem": f"Referência já utilizada: {reference}"},
            )
        self._documents[reference] = {
            "ref": reference,
            "status": "processando_autorizacao",
            "payload": dict(data),
        }
        return _json_response(202, {"ref": reference, "status": "processando_autorizacao"})

    def check_status(self, reference: str) -> GatewayResponse:
        doc = self._documents.get(reference)
        if doc is None:
            return _json_response(404, {"codigo": "nao_encontrado", "mensagem": "Nota fiscal não encontrada"})

        if doc["status"] == "processando_autorizacao":
            doc.update(
                {
                    "status": "autorizado",
                    "numero": str(next(self._sequence)),
                    "codigo_verificacao": uuid4().hex[:8].upper(),
                    "caminho_xml_nota_fiscal": f"/arquivos/{reference}.xml",
                    "url_danfse": f"{self.base_url}/notafiscal/{reference}.pdf",
                }
            )

        descriptor = {key: value for key, value in doc.items() if key != "payload"}
        return _json_response(200, descriptor)

    def fetch_document(self, url: str, *, authenticated: bool) -> GatewayResponse:
        if url.endswith(".xml"):
            body = (
                "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
                f"<CompNfse><Nfse><InfNfse><Origem>{url}</Origem></InfNfse></Nfse></CompNfse>"
            ).encode("utf-8")
            content_type = "application/xml"
        else:
            body = b"%PDF-1.4\n" + b"% mock NFS-e document\n" * 8 + b"%%EOF\n"
            content_type = "application/pdf"
        return GatewayResponse(status_code=200, content=body, headers={"Content-Type": content_type})

    def test_connection(self) -> GatewayResponse:
        if not self.token:
            raise FiscalAdapterError("Mock adapter requires a token.")
        return _json_response(200, [])
