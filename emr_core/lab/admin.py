# emr_core/lab/admin.py
from __future__ import annotations

from django.contrib import admin

from emr_core.lab.models import LabReport


@admin.register(LabReport)
class LabReportAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "patient", "performed_by_id", "issued_at")
    search_fields = ("id", "order__id", "patient__mrn")
    readonly_fields = ("findings", "issued_at", "created_at", "updated_at")
    ordering = ("-issued_at",)
