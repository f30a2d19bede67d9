from __future__ import annotations

import logging

from django.db import connection, transaction
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from workshop.fiscal.api.serializers.fiscal_config import (
    ConnectionTestSerializer,
    FiscalConfigReadSerializer,
    FiscalConfigUpsertSerializer,
)
from workshop.fiscal.crypto import TokenCryptoError, decrypt_token, encrypt_token
from workshop.fiscal.models import FiscalConfig
from workshop.fiscal.services import check_gateway_connection

logger = logging.getLogger(__name__)


class FiscalConfigUpsertAPIView(APIView):
    def get(self, request):
        config = FiscalConfig.get_active()
        if config is None:
            return Response(
                {"detail": "Fiscal configuration not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(FiscalConfigReadSerializer(config).data, status=status.HTTP_200_OK)

    def post(self, request):
        serializer = FiscalConfigUpsertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        provider_type = serializer.validated_data["provider_type"]
        environment = serializer.validated_data["environment"]
        token_plain = serializer.validated_data.get("token", "") or ""

        logger.info(
            "fiscal.config.upsert.started provider_type=%s environment=%s token_provided=%s",
            provider_type,
            environment,
            bool(token_plain),
        )

        encrypted = encrypt_token(token_plain) if token_plain else ""

        with transaction.atomic():
            qs = FiscalConfig.objects.filter(active=True)
            if connection.features.has_select_for_update:
                qs = qs.select_for_update()
            previous = qs.first()

            # Single active configuration: deactivate all, then activate the chosen one.
            FiscalConfig.objects.update(active=False)

            if previous is not None and previous.provider_type == provider_type:
                config = previous
                created = False
            else:
                config = FiscalConfig(provider_type=provider_type)
                created = True
            config.environment = environment
            config.active = True
            if encrypted:
                config.api_token = encrypted
            elif previous is not None and created:
                config.api_token = previous.api_token
            config.save()

        logger.info(
            "fiscal.config.upsert.completed config_id=%s provider_type=%s environment=%s created=%s",
            config.id,
            config.provider_type,
            config.environment,
            created,
        )
        return Response(
            FiscalConfigReadSerializer(config).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class FiscalConnectionTestAPIView(APIView):
    """Probe the gateway with a token before saving it.

    A blank token falls back to the one stored on the active configuration.
    """

    def post(self, request):
        serializer = ConnectionTestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        token = (serializer.validated_data.get("token") or "").strip()
        if not token:
            config = FiscalConfig.get_active()
            if config is not None and config.has_token:
                try:
                    token = decrypt_token(config.api_token)
                except TokenCryptoError:
                    logger.warning("fiscal.connection_test.token_unreadable config_id=%s", config.id)
                    token = ""
        if not token:
            return Response(
                {"success": False, "message": "Token não informado."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = check_gateway_connection(
            token,
            serializer.validated_data["environment"],
            provider_type=serializer.validated_data["provider_type"],
        )
        return Response(
            {"success": result.success, "message": result.message, "environment": result.environment},
            status=status.HTTP_200_OK,
        )
