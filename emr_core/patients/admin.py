# emr_core/patients/admin.py
from django.contrib import admin

from emr_core.patients.models import Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ("full_name", "mrn", "phone", "email", "user", "created_at")
    search_fields = ("full_name", "mrn", "phone", "email")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-created_at",)
