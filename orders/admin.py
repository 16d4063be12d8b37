from django.contrib import admin
from .models import Order

@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "status", "payment_status", "amount", "currency", "customer_email", "created_at", "updated_at")
    search_fields = ("id", "transaction_id", "upi_reference", "customer_email", "customer_phone")
    list_filter = ("status", "payment_status", "currency", "created_at")
    # payment fields are written only by reconciliation
    readonly_fields = ("amount", "payment_status", "transaction_id", "upi_reference", "created_at", "updated_at")
