from __future__ import annotations

from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class Company(models.Model):
    """Issuing party (prestador) data used for NFS-e emission.

    The shop runs a single issuer; the oldest row is the active one, matching how
    the settings screen has always created it.
    """

    company_name = models.CharField(max_length=255, blank=True)
    trade_name = models.CharField(max_length=255, blank=True)
    cnpj = models.CharField(max_length=18, blank=True)
    inscricao_municipal = models.CharField(max_length=30, blank=True)
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=120, blank=True)
    state = models.CharField(max_length=2, blank=True)
    zip_code = models.CharField(max_length=9, blank=True)
    city_code = models.CharField(
        max_length=7,
        blank=True,
        help_text="IBGE municipality code.",
    )
    optante_simples_nacional = models.BooleanField(default=False)
    regime_especial_tributacao = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(6)],
    )
    incentivo_fiscal = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("created_at", "id")
        verbose_name = "Company"
        verbose_name_plural = "Companies"

    def __str__(self) -> str:  # pragma: no cover
        return self.company_name or f"Company {self.pk}"

    @classmethod
    def get_issuer(cls) -> "Company | None":
        return cls.objects.order_by("created_at", "id").first()

    @property
    def has_complete_address(self) -> bool:
        return all(
            (value or "").strip()
            for value in (self.address, self.city, self.state, self.zip_code)
        )


class Customer(models.Model):
    name = models.CharField(max_length=255)
    cpf = models.CharField(max_length=14, blank=True)
    cnpj = models.CharField(max_length=18, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=120, blank=True)
    state = models.CharField(max_length=2, blank=True)
    zip_code = models.CharField(max_length=9, blank=True)
    city_code = models.CharField(max_length=7, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name", "id")

    def __str__(self) -> str:  # pragma: no cover
        return self.name

    @property
    def has_tax_document(self) -> bool:
        return bool((self.cpf or "").strip() or (self.cnpj or "").strip())

    @property
    def has_complete_address(self) -> bool:
        return all((value or "").strip() for value in (self.address, self.city, self.state))


class Vehicle(models.Model):
    customer = models.ForeignKey(
        Customer,
        on_delete=models.CASCADE,
        related_name="vehicles",
    )
    model = models.CharField(max_length=120, blank=True)
    plate = models.CharField(max_length=10, blank=True)

    class Meta:
        ordering = ("plate", "id")

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.model} {self.plate}".strip()


class Service(models.Model):
    name = models.CharField(max_length=255)
    codigo_servico_municipal = models.CharField(
        max_length=20,
        blank=True,
        help_text="Municipal service list item (LC 116), e.g. 01.01.01.",
    )
    nbs_code = models.CharField(max_length=20, blank=True)
    cnae_code = models.CharField(max_length=20, blank=True)
    issqn_aliquota = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(0)],
    )
    isento_nfe = models.BooleanField(
        default=False,
        help_text="Tax-exempt services skip the fiscal code checks.",
    )

    class Meta:
        ordering = ("name", "id")

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class ServiceOrder(models.Model):
    class Status(models.TextChoices):
        IN_DIAGNOSIS = "in_diagnosis", "Em Diagnóstico"
        WAITING_APPROVAL = "waiting_approval", "Aguardando Aprovação"
        IN_SERVICE = "in_service", "Em Serviço"
        READY = "ready", "Pronto"
        DELIVERED = "delivered", "Entregue"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pendente"
        PARTIAL = "partial", "Parcial"
        PAID = "paid", "Pago"

    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        related_name="service_orders",
    )
    vehicle = models.ForeignKey(
        Vehicle,
        on_delete=models.SET_NULL,
        related_name="service_orders",
        null=True,
        blank=True,
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.IN_DIAGNOSIS,
        db_index=True,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
    )
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    discount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    final_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "-id")

    def __str__(self) -> str:  # pragma: no cover
        return f"OS {self.pk}"

    @property
    def billable_amount(self) -> Decimal:
        if self.final_amount is not None:
            return self.final_amount
        return self.total_amount or Decimal("0.00")


class ServiceOrderItem(models.Model):
    class ItemType(models.TextChoices):
        PRODUCT = "product", "Produto"
        SERVICE = "service", "Serviço"

    service_order = models.ForeignKey(
        ServiceOrder,
        on_delete=models.CASCADE,
        related_name="items",
    )
    item_type = models.CharField(max_length=10, choices=ItemType.choices)
    service = models.ForeignKey(
        Service,
        on_delete=models.PROTECT,
        related_name="order_items",
        null=True,
        blank=True,
    )
    description = models.CharField(max_length=255, blank=True)
    quantity = models.DecimalField(max_digits=10, decimal_places=3, default=Decimal("1"))
    unit_price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        ordering = ("id",)

    def __str__(self) -> str:  # pragma: no cover
        return self.description or f"Item {self.pk}"

    @property
    def is_billable_service(self) -> bool:
        return self.item_type == self.ItemType.SERVICE and self.service_id is not None

    @property
    def total(self) -> Decimal:
        return (self.quantity or Decimal("0")) * (self.unit_price or Decimal("0"))
