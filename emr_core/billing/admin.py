# emr_core/billing/admin.py
from __future__ import annotations

from django.contrib import admin

from emr_core.billing.models import Billing, BillingItem, Payment


class BillingItemInline(admin.TabularInline):
    model = BillingItem
    extra = 0
    fields = ("description", "code", "quantity", "unit_price", "total")
    readonly_fields = fields
    can_delete = False


@admin.register(Billing)
class BillingAdmin(admin.ModelAdmin):
    list_display = ("id", "patient", "related_lab_order", "status", "total", "amount_paid", "balance_due", "created_at")
    list_filter = ("status",)
    search_fields = ("id", "patient__mrn", "patient__full_name")
    readonly_fields = ("subtotal", "total", "amount_paid", "balance_due", "status", "paid_at", "cancelled_at")
    inlines = [BillingItemInline]
    ordering = ("-created_at",)


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("receipt_number", "billing", "amount", "method", "status", "payment_date")
    list_filter = ("method", "status")
    search_fields = ("receipt_number", "reference", "billing__id")
    ordering = ("-payment_date",)

    # receipts are issued by the ledger only
    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
