# Generated manually. Keep in sync with workshop/fiscal/models.py.

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("workshop", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="FiscalConfig",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider_type", models.CharField(default="focusnfe", help_text="Adapter identifier (focusnfe, mock).", max_length=60)),
                ("api_token", models.TextField(blank=True)),
                (
                    "environment",
                    models.CharField(
                        choices=[("SANDBOX", "Sandbox"), ("PRODUCTION", "Production")],
                        db_index=True,
                        default="SANDBOX",
                        max_length=20,
                    ),
                ),
                ("active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Fiscal Config",
                "verbose_name_plural": "Fiscal Configs",
                "ordering": ("-active", "-updated_at", "id"),
            },
        ),
        migrations.AddConstraint(
            model_name="fiscalconfig",
            constraint=models.UniqueConstraint(
                condition=models.Q(("active", True)),
                fields=("active",),
                name="uq_fiscal_config_single_active",
            ),
        ),
        migrations.CreateModel(
            name="InvoiceRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("reference", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("unset", "Not issued"),
                            ("sending", "Sending"),
                            ("processing_authorization", "Processing authorization"),
                            ("authorized", "Authorized"),
                            ("authorization_error", "Authorization error"),
                            ("rejected", "Rejected"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="unset",
                        max_length=32,
                    ),
                ),
                ("number", models.CharField(blank=True, max_length=40)),
                ("verification_code", models.CharField(blank=True, max_length=80)),
                ("url", models.URLField(blank=True, max_length=500)),
                ("pdf_url", models.URLField(blank=True, max_length=500)),
                ("xml_url", models.URLField(blank=True, max_length=500)),
                ("error_message", models.TextField(blank=True)),
                ("error_code", models.CharField(blank=True, max_length=60)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "service_order",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="invoice",
                        to="workshop.serviceorder",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice Record",
                "verbose_name_plural": "Invoice Records",
                "ordering": ("-updated_at", "-id"),
            },
        ),
        migrations.AddIndex(
            model_name="invoicerecord",
            index=models.Index(fields=("status", "updated_at"), name="idx_invoice_status_updated"),
        ),
    ]
