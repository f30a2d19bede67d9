from __future__ import annotations

import hmac
import json
import logging
from collections.abc import Mapping
from uuid import uuid4

from django.conf import settings
from rest_framework import status as drf_status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from workshop.fiscal.services import InvoiceRecordNotFound, apply_gateway_update
from workshop.logging import mask_cpf_cnpj

logger = logging.getLogger(__name__)

_AUTH_SCHEMES = ("bearer ", "token ")


def _parse_secret(value: str) -> str:
    raw = (value or "").strip()
    lowered = raw.lower()
    for scheme in _AUTH_SCHEMES:
        if lowered.startswith(scheme):
            return raw[len(scheme):].strip()
    return raw


def _get_correlation_id(request) -> str:
    correlation_id = (request.headers.get("X-Correlation-ID") or "").strip()
    if not correlation_id:
        correlation_id = (request.headers.get("X-Request-ID") or "").strip()
    return correlation_id or str(uuid4())


class FiscalWebhookAPIView(APIView):
    """Status callbacks pushed by the fiscal gateway.

    The gateway is configured to send the shared secret in the `Authorization`
    header. Deliveries may be duplicated or arrive late; the transition rules in
    `apply_gateway_update` keep the record monotonic.
    """

    permission_classes = [AllowAny]
    authentication_classes: list = []

    def post(self, request):
        correlation_id = _get_correlation_id(request)

        secret = getattr(settings, "FISCAL_WEBHOOK_SECRET", "") or ""
        if not secret:
            logger.error("fiscal.webhook.secret_missing correlation_id=%s", correlation_id)
            return Response(
                {"detail": "Webhook secret is not configured."},
                status=drf_status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        provided = _parse_secret(request.headers.get("Authorization", ""))
        if not provided or not hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
            logger.warning("fiscal.webhook.auth_invalid correlation_id=%s", correlation_id)
            return Response({"detail": "Invalid credentials."}, status=drf_status.HTTP_401_UNAUTHORIZED)

        raw_body: bytes = request.body or b""
        try:
            payload = json.loads(raw_body.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("fiscal.webhook.json_invalid correlation_id=%s", correlation_id)
            return Response({"detail": "Invalid JSON."}, status=drf_status.HTTP_400_BAD_REQUEST)

        if not isinstance(payload, Mapping):
            return Response({"detail": "Invalid JSON."}, status=drf_status.HTTP_400_BAD_REQUEST)

        reference = str(payload.get("ref") or "").strip()
        if not reference:
            logger.warning("fiscal.webhook.ref_missing correlation_id=%s", correlation_id)
            return Response({"detail": "ref is required."}, status=drf_status.HTTP_400_BAD_REQUEST)

        logger.info(
            "fiscal.webhook.received reference=%s correlation_id=%s status=%s",
            reference,
            correlation_id,
            str(payload.get("status") or "").strip(),
        )

        try:
            result = apply_gateway_update(reference, payload, source="webhook")
        except InvoiceRecordNotFound:
            logger.warning(
                "fiscal.webhook.not_found reference=%s correlation_id=%s",
                reference,
                correlation_id,
            )
            return Response({"detail": "Invoice not found."}, status=drf_status.HTTP_404_NOT_FOUND)

        body = result.as_response_body()
        body["correlation_id"] = correlation_id
        return Response(body, status=drf_status.HTTP_200_OK)

    def handle_exception(self, exc):  # pragma: no cover
        error_msg = mask_cpf_cnpj(str(exc))
        logger.exception("fiscal.webhook.exception error=%s", error_msg)
        return Response(
            {"detail": "Webhook processing error."},
            status=drf_status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
