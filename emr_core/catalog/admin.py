from django.contrib import admin

from emr_core.catalog.models import CatalogTest


@admin.register(CatalogTest)
class CatalogTestAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "category", "unit_price", "is_active", "updated_at")
    list_filter = ("category", "is_active")
    search_fields = ("code", "name")
    ordering = ("code",)
