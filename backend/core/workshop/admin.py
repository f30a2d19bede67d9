from django.contrib import admin

from workshop.models import Company, Customer, Service, ServiceOrder, ServiceOrderItem, Vehicle


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ("id", "company_name", "cnpj", "city", "state", "optante_simples_nacional")
    search_fields = ("company_name", "trade_name")


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "city", "state")
    search_fields = ("name", "email")


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ("id", "plate", "model", "customer")
    search_fields = ("plate", "model")


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "codigo_servico_municipal", "issqn_aliquota", "isento_nfe")
    list_filter = ("isento_nfe",)
    search_fields = ("name", "codigo_servico_municipal")


class ServiceOrderItemInline(admin.TabularInline):
    model = ServiceOrderItem
    extra = 0


@admin.register(ServiceOrder)
class ServiceOrderAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "status", "payment_status", "final_amount", "created_at")
    list_filter = ("status", "payment_status")
    inlines = [ServiceOrderItemInline]
