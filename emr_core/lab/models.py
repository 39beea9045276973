# emr_core/lab/models.py
from django.db import models

from emr_core.common.models import UUIDModel
from emr_core.orders.models import LabOrder
from emr_core.patients.models import Patient


class LabReport(UUIDModel):
    """
    Issued once per lab order when results are submitted.
    `findings` is a snapshot of the per-test results at completion time.
    """
    order = models.OneToOneField(LabOrder, on_delete=models.PROTECT, related_name="report")
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="lab_reports")

    findings = models.JSONField(default=list, blank=True)
    summary = models.TextField(blank=True)

    performed_by_id = models.BigIntegerField(null=True, blank=True)
    issued_at = models.DateTimeField(db_index=True)

    class Meta:
        db_table = "lab_report"
        indexes = [models.Index(fields=["patient", "issued_at"])]

    def __str__(self) -> str:
        return f"LabReport {self.id} (order {self.order_id})"
