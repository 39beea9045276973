# emr_core/billing/models.py
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from emr_core.common.models import UUIDModel
from emr_core.patients.models import Patient


class BillingStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PARTIALLY_PAID = "partially-paid", "Partially Paid"
    PAID = "paid", "Paid"
    CANCELLED = "cancelled", "Cancelled"


class Billing(UUIDModel):
    """
    Itemized charge record. Totals are always derived from items:
      item.total = unit_price * quantity
      subtotal   = sum(item.total)
      total      = subtotal - discount + tax
    Status is derived from completed payments unless explicitly cancelled.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="billings")

    # at most one Billing per lab order
    related_lab_order = models.OneToOneField(
        "orders.LabOrder",
        on_delete=models.PROTECT,
        related_name="billing",
        null=True,
        blank=True,
    )

    status = models.CharField(max_length=32, choices=BillingStatus.choices, default=BillingStatus.PENDING, db_index=True)
    currency = models.CharField(max_length=8, default=getattr(settings, "EMR_CURRENCY", "USD"))

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    balance_due = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    created_by_id = models.BigIntegerField(null=True, blank=True)
    created_by_role = models.CharField(max_length=32, blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    notes = models.TextField(blank=True)

    class Meta:
        db_table = "billing_billing"
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["patient", "created_at"]),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(discount__gte=0), name="ck_billing_discount_non_negative"),
            models.CheckConstraint(condition=models.Q(tax__gte=0), name="ck_billing_tax_non_negative"),
        ]

    def __str__(self) -> str:
        return f"Billing {self.id} ({self.status})"


class BillingItem(UUIDModel):
    billing = models.ForeignKey(Billing, on_delete=models.CASCADE, related_name="items")

    description = models.CharField(max_length=255)
    code = models.CharField(max_length=32, blank=True)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        db_table = "billing_billing_item"
        ordering = ["created_at"]


class PaymentMethod(models.TextChoices):
    CASH = "cash", "Cash"
    CARD = "card", "Card"
    INSURANCE = "insurance", "Insurance"
    BANK_TRANSFER = "bank-transfer", "Bank Transfer"
    MOBILE_MONEY = "mobile-money", "Mobile Money"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class Payment(UUIDModel):
    billing = models.ForeignKey(Billing, on_delete=models.PROTECT, related_name="payments")
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="payments")

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=32, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.COMPLETED, db_index=True)

    receipt_number = models.CharField(max_length=32, unique=True)
    reference = models.CharField(max_length=64, blank=True)  # card / transfer transaction id

    processed_by_id = models.BigIntegerField(null=True, blank=True)
    processed_by_role = models.CharField(max_length=32, blank=True)
    payment_date = models.DateTimeField(db_index=True)

    class Meta:
        db_table = "billing_payment"
        indexes = [
            models.Index(fields=["billing", "payment_date"]),
            models.Index(fields=["method", "payment_date"]),
        ]

    def __str__(self) -> str:
        return self.receipt_number


class ReceiptSequence(models.Model):
    """
    Single counter row per sequence name, incremented under a row lock.
    """
    key = models.CharField(max_length=32, primary_key=True)
    last_value = models.BigIntegerField(default=0)

    class Meta:
        db_table = "billing_receipt_sequence"
