from django.contrib import admin

from emr_core.notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "recipient", "kind", "related_entity", "related_id", "is_read", "created_at")
    list_filter = ("kind", "is_read")
    search_fields = ("related_id", "recipient__username")
    ordering = ("-created_at",)
