# emr_core/orders/models.py
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from emr_core.common.models import UUIDModel
from emr_core.patients.models import Patient


class LabOrderStatus(models.TextChoices):
    PENDING_PAYMENT = "pending-payment", "Pending Payment"
    PAID = "paid", "Paid"
    IN_PROGRESS = "in-progress", "In Progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class LabOrderPaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PARTIALLY_PAID = "partially-paid", "Partially Paid"
    PAID = "paid", "Paid"


class LabOrderPriority(models.TextChoices):
    ROUTINE = "routine", "Routine"
    URGENT = "urgent", "Urgent"
    STAT = "stat", "Stat"


class LabTestStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    IN_PROGRESS = "in-progress", "In Progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_TEST_STATUSES = frozenset({LabTestStatus.COMPLETED, LabTestStatus.CANCELLED})


class LabOrder(UUIDModel):
    """
    A doctor's request for one or more catalog tests for a patient.

    The linked Billing lives on billing.Billing.related_lab_order (one-to-one),
    so `order.billing` is set once at creation and never re-pointed.
    `payment` is the Payment that settled the billing.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="lab_orders")
    doctor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="lab_orders")

    status = models.CharField(
        max_length=32,
        choices=LabOrderStatus.choices,
        default=LabOrderStatus.PENDING_PAYMENT,
        db_index=True,
    )
    payment_status = models.CharField(
        max_length=32,
        choices=LabOrderPaymentStatus.choices,
        default=LabOrderPaymentStatus.PENDING,
    )
    payment_verified = models.BooleanField(default=False, db_index=True)
    payment = models.ForeignKey(
        "billing.Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="settled_lab_orders",
    )

    priority = models.CharField(max_length=16, choices=LabOrderPriority.choices, default=LabOrderPriority.ROUTINE)
    due_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    created_by_id = models.BigIntegerField(null=True, blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    processing_started_at = models.DateTimeField(null=True, blank=True)
    processed_by_id = models.BigIntegerField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by_id = models.BigIntegerField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)

    class Meta:
        db_table = "orders_lab_order"
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["doctor", "created_at"]),
            models.Index(fields=["patient", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"LabOrder {self.id} ({self.status})"

    @property
    def billing_id(self):
        billing = getattr(self, "billing", None)
        return billing.id if billing is not None else None

    @property
    def total(self) -> Decimal:
        return sum((t.unit_price * t.quantity for t in self.tests.all()), Decimal("0.00"))


class LabOrderTest(UUIDModel):
    """
    One ordered test. name/code/unit_price are copied from the catalog when the
    order is created and are never written again.
    """
    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="tests")
    catalog_test = models.ForeignKey("catalog.CatalogTest", on_delete=models.PROTECT, related_name="ordered_tests")

    name = models.CharField(max_length=255)
    code = models.CharField(max_length=32)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)

    status = models.CharField(max_length=16, choices=LabTestStatus.choices, default=LabTestStatus.PENDING)

    result_value = models.TextField(blank=True)
    result_unit = models.CharField(max_length=32, blank=True)
    result_notes = models.TextField(blank=True)

    class Meta:
        db_table = "orders_lab_order_test"
        ordering = ["created_at", "code"]
        constraints = [
            models.UniqueConstraint(fields=["order", "catalog_test"], name="uq_lab_order_test_once_per_order"),
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="ck_lab_order_test_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.code} x{self.quantity}"
