# emr_core/catalog/models.py
from __future__ import annotations

from decimal import Decimal

from django.db import models

from emr_core.common.models import UUIDModel


class CatalogTest(UUIDModel):
    """
    Orderable lab test + current price. Read-mostly.
    Orders copy name/code/price at creation time, so edits here never reprice
    existing orders.
    """
    name = models.CharField(max_length=255, unique=True)
    code = models.CharField(max_length=32, unique=True)  # stored upper-case
    category = models.CharField(max_length=64, blank=True, db_index=True)
    description = models.TextField(blank=True)

    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        db_table = "catalog_lab_test"
        constraints = [
            models.CheckConstraint(condition=models.Q(unit_price__gte=0), name="ck_catalog_test_price_non_negative"),
        ]

    def __str__(self) -> str:
        return f"{self.code} {self.name}"
