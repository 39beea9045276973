# emr_core/audit/admin.py
from django.contrib import admin

from emr_core.audit.models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ("action", "entity", "entity_id", "actor_id", "actor_role", "outcome", "occurred_at")
    list_filter = ("action", "entity", "outcome", "actor_role")
    search_fields = ("entity", "entity_id")
    ordering = ("-id",)

    # append-only
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
