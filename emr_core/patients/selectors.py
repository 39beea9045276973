# emr_core/patients/selectors.py
from __future__ import annotations

from uuid import UUID

from rest_framework.exceptions import NotFound

from emr_core.patients.models import Patient


def get_patient(*, patient_id: UUID) -> Patient:
    try:
        return Patient.objects.get(id=patient_id)
    except Patient.DoesNotExist:
        raise NotFound(f"Patient {patient_id} not found.")
