from __future__ import annotations

from rest_framework import serializers

from workshop.fiscal.documents import DOCUMENT_KINDS
from workshop.fiscal.services import invoice_fields
from workshop.models import ServiceOrder


class EmitInvoiceSerializer(serializers.Serializer):
    serviceOrderId = serializers.IntegerField(min_value=1)


class DownloadDocumentSerializer(serializers.Serializer):
    fileType = serializers.ChoiceField(choices=DOCUMENT_KINDS)
    ref = serializers.CharField(max_length=64)


class ValidationIssueSerializer(serializers.Serializer):
    kind = serializers.CharField()
    field = serializers.CharField()
    message = serializers.CharField()
    editable = serializers.BooleanField()


class ServiceOrderInvoiceSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    amount = serializers.DecimalField(source="billable_amount", max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = ServiceOrder
        fields = (
            "id",
            "customer_name",
            "status",
            "payment_status",
            "amount",
            "created_at",
        )
        read_only_fields = fields

    def to_representation(self, instance: ServiceOrder):
        data = super().to_representation(instance)
        data.update(invoice_fields(instance))
        return data
