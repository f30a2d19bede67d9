from django.apps import AppConfig


class WorkshopFiscalConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "workshop.fiscal"
    label = "workshop_fiscal"
    verbose_name = "Workshop - Fiscal"
