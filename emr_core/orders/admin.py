# emr_core/orders/admin.py
from __future__ import annotations

from django.contrib import admin

from emr_core.orders.models import LabOrder, LabOrderTest


class LabOrderTestInline(admin.TabularInline):
    model = LabOrderTest
    extra = 0
    fields = ("code", "name", "unit_price", "quantity", "status")
    readonly_fields = ("code", "name", "unit_price", "quantity")
    can_delete = False


@admin.register(LabOrder)
class LabOrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "patient",
        "doctor",
        "status",
        "payment_status",
        "payment_verified",
        "priority",
        "due_date",
        "created_at",
    )
    list_filter = ("status", "payment_status", "priority", "payment_verified")
    search_fields = ("id", "patient__mrn", "patient__full_name", "doctor__username")
    readonly_fields = ("status", "payment_status", "payment_verified", "payment", "paid_at", "completed_at", "cancelled_at")
    autocomplete_fields = ("doctor",)
    inlines = [LabOrderTestInline]
    ordering = ("-created_at",)
