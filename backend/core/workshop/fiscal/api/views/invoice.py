from __future__ import annotations

import logging

from django.db import models
from django.http import HttpResponse
from django.utils.http import content_disposition_header
from rest_framework import mixins, status, viewsets
from rest_framework.response import Response
from rest_framework.views import APIView

from workshop.fiscal.adapters import FiscalAdapterError
from workshop.fiscal.api.serializers.invoice import (
    DownloadDocumentSerializer,
    EmitInvoiceSerializer,
    ServiceOrderInvoiceSerializer,
    ValidationIssueSerializer,
)
from workshop.fiscal.documents import DocumentError, resolve_invoice_document
from workshop.fiscal.models import InvoiceRecord
from workshop.fiscal.services import (
    FiscalEmissionRefused,
    FiscalStatusRefreshError,
    InvoiceRecordNotFound,
    emit_service_invoice,
    invoice_fields,
    refresh_invoice_status,
)
from workshop.fiscal.validation import can_emit, load_service_order, partition_issues, validate_service_order
from workshop.logging import mask_cpf_cnpj
from workshop.models import ServiceOrder

logger = logging.getLogger(__name__)

DOCUMENT_ERROR_STATUS = {
    DocumentError.NOT_READY: status.HTTP_409_CONFLICT,
    DocumentError.CORRUPT: status.HTTP_502_BAD_GATEWAY,
    DocumentError.GATEWAY_ERROR: status.HTTP_502_BAD_GATEWAY,
    DocumentError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def _service_order_not_found() -> Response:
    return Response({"detail": "Service order not found."}, status=status.HTTP_404_NOT_FOUND)


class ServiceOrderValidationAPIView(APIView):
    def get(self, request, service_order_id: int):
        try:
            service_order = load_service_order(service_order_id)
        except ServiceOrder.DoesNotExist:
            return _service_order_not_found()

        issues = validate_service_order(service_order)
        errors, warnings = partition_issues(issues)
        return Response(
            {
                "service_order_id": service_order.pk,
                "can_emit": can_emit(issues),
                "errors": ValidationIssueSerializer(errors, many=True).data,
                "warnings": ValidationIssueSerializer(warnings, many=True).data,
            },
            status=status.HTTP_200_OK,
        )


class EmitInvoiceAPIView(APIView):
    def post(self, request):
        serializer = EmitInvoiceSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"success": False, "error": "serviceOrderId é obrigatório", "details": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )
        service_order_id = serializer.validated_data["serviceOrderId"]

        try:
            result = emit_service_invoice(service_order_id)
        except ServiceOrder.DoesNotExist:
            return Response(
                {"success": False, "error": "Ordem de serviço não encontrada"},
                status=status.HTTP_404_NOT_FOUND,
            )
        except FiscalEmissionRefused as exc:
            errors, _warnings = partition_issues(exc.issues)
            return Response(
                {
                    "success": False,
                    "error": str(exc),
                    "errors": ValidationIssueSerializer(errors, many=True).data,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )
        except FiscalAdapterError as exc:
            return Response({"success": False, "error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        # Gateway refusals are reported in the body; the request itself succeeded.
        return Response(result.as_response_body(), status=status.HTTP_200_OK)


class RefreshInvoiceStatusAPIView(APIView):
    def post(self, request, service_order_id: int):
        if not ServiceOrder.objects.filter(pk=service_order_id).exists():
            return _service_order_not_found()

        try:
            result = refresh_invoice_status(service_order_id)
        except InvoiceRecordNotFound as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except FiscalAdapterError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except FiscalStatusRefreshError as exc:
            logger.warning(
                "fiscal.status_refresh.failed service_order_id=%s code=%s error=%s",
                service_order_id,
                exc.code,
                mask_cpf_cnpj(str(exc)),
            )
            return Response(
                {"detail": str(exc), "errorCode": exc.code},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        service_order = ServiceOrder.objects.select_related("invoice").get(pk=service_order_id)
        body = result.as_response_body()
        body.update(invoice_fields(service_order))
        return Response(body, status=status.HTTP_200_OK)


class DownloadDocumentAPIView(APIView):
    """Proxy the NFS-e PDF/XML so the gateway token never leaves the server."""

    def post(self, request):
        serializer = DownloadDocumentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"error": "Parâmetros inválidos", "details": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )

        kind = serializer.validated_data["fileType"]
        try:
            document = resolve_invoice_document(serializer.validated_data["ref"], kind)
        except DocumentError as exc:
            return Response(
                {"error": str(exc), "reason": exc.reason, "errorCode": exc.code, "retryable": exc.retryable},
                status=DOCUMENT_ERROR_STATUS.get(exc.reason, status.HTTP_502_BAD_GATEWAY),
            )

        response = HttpResponse(document.content, content_type=document.content_type)
        response["Content-Disposition"] = content_disposition_header(True, document.filename)
        response["Content-Length"] = str(len(document.content))
        return response


class ServiceOrderInvoiceViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = ServiceOrderInvoiceSerializer

    def get_queryset(self):
        qs = ServiceOrder.objects.select_related("customer", "invoice").order_by("-created_at", "-id")

        status_filter = (self.request.query_params.get("status") or "").strip().lower()
        if status_filter == InvoiceRecord.Status.UNSET:
            qs = qs.filter(models.Q(invoice__isnull=True) | models.Q(invoice__status=InvoiceRecord.Status.UNSET))
        elif status_filter:
            qs = qs.filter(invoice__status=status_filter)

        search = (self.request.query_params.get("q") or "").strip()
        if search:
            qs = qs.filter(
                models.Q(customer__name__icontains=search)
                | models.Q(invoice__number__icontains=search)
                | models.Q(invoice__reference__icontains=search)
            )
        return qs
