from __future__ import annotations

from rest_framework import serializers

from workshop.fiscal.adapters.factory import SUPPORTED_PROVIDER_TYPES
from workshop.fiscal.models import FiscalConfig


class FiscalConfigUpsertSerializer(serializers.Serializer):
    provider_type = serializers.CharField(required=False, default="focusnfe")
    token = serializers.CharField(allow_blank=True, required=False, default="", trim_whitespace=True)
    environment = serializers.ChoiceField(choices=FiscalConfig.Environment.choices)

    def validate_provider_type(self, value: str) -> str:
        provider_type = (value or "").strip().lower()
        if provider_type not in SUPPORTED_PROVIDER_TYPES:
            raise serializers.ValidationError("Provider not supported.")
        return provider_type


class FiscalConfigReadSerializer(serializers.ModelSerializer):
    has_token = serializers.SerializerMethodField()
    base_url = serializers.CharField(read_only=True)

    class Meta:
        model = FiscalConfig
        fields = (
            "id",
            "provider_type",
            "environment",
            "base_url",
            "active",
            "has_token",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_has_token(self, obj: FiscalConfig) -> bool:
        return obj.has_token


class ConnectionTestSerializer(serializers.Serializer):
    token = serializers.CharField(allow_blank=True, required=False, default="")
    environment = serializers.ChoiceField(choices=FiscalConfig.Environment.choices)
    provider_type = serializers.CharField(required=False, default="focusnfe")
