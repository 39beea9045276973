# emr_core/catalog/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from emr_core.catalog.models import CatalogTest


class CatalogTestSerializer(serializers.ModelSerializer):
    class Meta:
        model = CatalogTest
        fields = [
            "id",
            "code",
            "name",
            "category",
            "description",
            "unit_price",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class CatalogTestUpsertSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=32)
    name = serializers.CharField(max_length=255)
    category = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    is_active = serializers.BooleanField(required=False, default=True)


class CatalogTestUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    category = serializers.CharField(max_length=64, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    is_active = serializers.BooleanField(required=False)
