from django.contrib import admin
from .models import Payment

@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("order", "status", "kind", "channel", "provider_code", "provider_txn_id", "created_at")
    search_fields = ("order__id", "provider_txn_id", "provider_code")
    list_filter = ("status", "kind", "channel", "created_at")
    readonly_fields = ("order", "status", "kind", "channel", "provider_code", "provider_txn_id", "payload", "created_at")

    # audit trail: rows only come from reconciliation
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
