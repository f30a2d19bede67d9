from __future__ import annotations

from django.conf import settings
from django.db import models

from workshop.models import ServiceOrder


class FiscalConfig(models.Model):
    """Gateway credentials for NFS-e emission.

    The token is stored encrypted (see `workshop.fiscal.crypto`); only one row may
    be active at a time.
    """

    class Environment(models.TextChoices):
        SANDBOX = "SANDBOX", "Sandbox"
        PRODUCTION = "PRODUCTION", "Production"

    provider_type = models.CharField(
        max_length=60,
        default="focusnfe",
        help_text="Adapter identifier (focusnfe, mock).",
    )
    api_token = models.TextField(blank=True)
    environment = models.CharField(
        max_length=20,
        choices=Environment.choices,
        default=Environment.SANDBOX,
        db_index=True,
    )
    active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-active", "-updated_at", "id")
        verbose_name = "Fiscal Config"
        verbose_name_plural = "Fiscal Configs"
        constraints = [
            models.UniqueConstraint(
                fields=("active",),
                condition=models.Q(active=True),
                name="uq_fiscal_config_single_active",
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover
        status = "active" if self.active else "inactive"
        return f"{self.provider_type} ({self.environment}, {status})"

    @classmethod
    def get_active(cls) -> "FiscalConfig | None":
        return cls.objects.filter(active=True).first()

    @property
    def base_url(self) -> str:
        return gateway_base_url(self.environment)

    @property
    def has_token(self) -> bool:
        return bool((self.api_token or "").strip())


def gateway_base_url(environment: str) -> str:
    urls = getattr(settings, "FISCAL_GATEWAY_BASE_URLS", {}) or {}
    value = urls.get(environment) or urls.get(FiscalConfig.Environment.SANDBOX) or ""
    return str(value).rstrip("/")


class InvoiceRecord(models.Model):
    """NFS-e lifecycle attached to a service order.

    `reference` is the only correlation key shared with the gateway: the emission
    request, the webhook and the document downloads all address the invoice by it.
    """

    class Status(models.TextChoices):
        UNSET = "unset", "Not issued"
        SENDING = "sending", "Sending"
        PROCESSING_AUTHORIZATION = "processing_authorization", "Processing authorization"
        AUTHORIZED = "authorized", "Authorized"
        AUTHORIZATION_ERROR = "authorization_error", "Authorization error"
        REJECTED = "rejected", "Rejected"
        CANCELLED = "cancelled", "Cancelled"

    TERMINAL_STATUSES = frozenset(
        {
            Status.AUTHORIZED,
            Status.AUTHORIZATION_ERROR,
            Status.REJECTED,
            Status.CANCELLED,
        }
    )
    ERROR_STATUSES = frozenset({Status.AUTHORIZATION_ERROR, Status.REJECTED})

    service_order = models.OneToOneField(
        ServiceOrder,
        on_delete=models.CASCADE,
        related_name="invoice",
    )
    reference = models.CharField(max_length=64, unique=True, null=True, blank=True)
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.UNSET,
        db_index=True,
    )
    number = models.CharField(max_length=40, blank=True)
    verification_code = models.CharField(max_length=80, blank=True)
    url = models.URLField(max_length=500, blank=True)
    pdf_url = models.URLField(max_length=500, blank=True)
    xml_url = models.URLField(max_length=500, blank=True)
    error_message = models.TextField(blank=True)
    error_code = models.CharField(max_length=60, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-updated_at", "-id")
        verbose_name = "Invoice Record"
        verbose_name_plural = "Invoice Records"
        indexes = [
            models.Index(fields=("status", "updated_at"), name="idx_invoice_status_updated"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        label = self.number or self.reference or f"os:{self.service_order_id}"
        return f"InvoiceRecord {label} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def can_transition_to(self, new_status: str) -> bool:
        """Monotonic guard for gateway-driven updates.

        Non-terminal statuses accept anything. Once terminal, the only moves are an
        authorization confirming a previous error (the gateway re-processes) and a
        cancellation of an authorized note. Cancelled is final.
        """

        current = self.status
        if new_status == current:
            return True
        if current not in self.TERMINAL_STATUSES:
            return True
        if current == self.Status.AUTHORIZED:
            return new_status == self.Status.CANCELLED
        if current in self.ERROR_STATUSES:
            return new_status == self.Status.AUTHORIZED
        return False

    def clear_error(self) -> None:
        self.error_message = ""
        self.error_code = ""

    def clear_documents(self) -> None:
        self.number = ""
        self.verification_code = ""
        self.url = ""
        self.pdf_url = ""
        self.xml_url = ""
