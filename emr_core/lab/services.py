# emr_core/lab/services.py
from __future__ import annotations

from typing import Iterable

from emr_core.common import clock
from emr_core.lab.models import LabReport


class LabReportService:
    """
    Write-model for lab reports. Called by the lab order lifecycle inside its
    transaction; it performs no authorization of its own.
    """

    @staticmethod
    def create_for_order(*, actor, order, tests: Iterable, summary: str = "") -> LabReport:
        findings = [
            {
                "testId": str(t.id),
                "code": t.code,
                "name": t.name,
                "status": t.status,
                "value": t.result_value,
                "unit": t.result_unit,
                "notes": t.result_notes,
            }
            for t in tests
        ]
        return LabReport.objects.create(
            order=order,
            patient_id=order.patient_id,
            findings=findings,
            summary=summary or "",
            performed_by_id=actor.id,
            issued_at=clock.now(),
        )
