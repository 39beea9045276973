# emr_core/audit/models.py
from django.db import models


class AuditAction(models.TextChoices):
    CREATE = "create", "Create"
    READ = "read", "Read"
    UPDATE = "update", "Update"
    DELETE = "delete", "Delete"
    PAYMENT = "payment", "Payment"
    TRANSITION = "transition", "Transition"
    CANCEL = "cancel", "Cancel"


class AuditOutcome(models.TextChoices):
    SUCCESS = "success", "Success"
    DENIED = "denied", "Denied"
    REJECTED = "rejected", "Rejected"
    FAILED = "failed", "Failed"


class AuditEvent(models.Model):
    """
    Append-only audit record: who did what to which record and when.
    Application code never updates or deletes rows. The auto-increment id
    doubles as the write order.
    """
    action = models.CharField(max_length=32, choices=AuditAction.choices, db_index=True)
    entity = models.CharField(max_length=64, db_index=True)  # e.g. "labOrder"
    entity_id = models.CharField(max_length=64, blank=True, db_index=True)

    actor_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    actor_role = models.CharField(max_length=32, blank=True)

    outcome = models.CharField(max_length=16, choices=AuditOutcome.choices, default=AuditOutcome.SUCCESS)

    changes = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    occurred_at = models.DateTimeField(db_index=True)

    class Meta:
        db_table = "audit_audit_event"
        indexes = [
            models.Index(fields=["entity", "entity_id"]),
            models.Index(fields=["actor_id", "occurred_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.action} {self.entity}:{self.entity_id} ({self.outcome})"
