from django.contrib import admin

from workshop.fiscal.models import FiscalConfig, InvoiceRecord


@admin.register(FiscalConfig)
class FiscalConfigAdmin(admin.ModelAdmin):
    list_display = ("id", "provider_type", "environment", "active", "updated_at")
    list_filter = ("environment", "active")
    # Tokens are managed through the config API, which encrypts them.
    exclude = ("api_token",)


@admin.register(InvoiceRecord)
class InvoiceRecordAdmin(admin.ModelAdmin):
    list_display = ("reference", "service_order", "status", "number", "updated_at")
    list_filter = ("status",)
    search_fields = ("reference", "number", "verification_code")
    readonly_fields = ("reference", "created_at", "updated_at")
