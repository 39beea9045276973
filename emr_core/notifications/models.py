# emr_core/notifications/models.py
from __future__ import annotations

from django.conf import settings
from django.db import models

from emr_core.common import clock
from emr_core.common.models import UUIDModel


class NotificationKind(models.TextChoices):
    NEW_LAB_ORDER = "new-lab-order", "New Lab Order"
    LAB_ORDER_PAID = "lab-order-paid", "Lab Order Paid"
    LAB_ORDER_CANCELLED = "lab-order-cancelled", "Lab Order Cancelled"


class Notification(UUIDModel):
    """
    In-app delivery record, one per recipient.
    Links are loose (entity name + id string) to avoid cross-app FK coupling.
    """
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )

    kind = models.CharField(max_length=32, choices=NotificationKind.choices, db_index=True)
    message = models.TextField()

    related_entity = models.CharField(max_length=64, blank=True)
    related_id = models.CharField(max_length=64, blank=True, db_index=True)

    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "notifications_notification"
        indexes = [
            models.Index(fields=["recipient", "is_read", "created_at"]),
        ]

    def mark_read(self) -> None:
        if not self.is_read:
            self.is_read = True
            self.read_at = clock.now()
