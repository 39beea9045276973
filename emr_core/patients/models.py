# emr_core/patients/models.py
from django.conf import settings
from django.db import models

from emr_core.common.models import UUIDModel


class Patient(UUIDModel):
    """
    Minimal patient record. This core only needs existence checks and the
    optional portal login used for patient-ownership reads.
    """
    full_name = models.CharField(max_length=255)
    mrn = models.CharField(max_length=64, unique=True)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    date_of_birth = models.DateField(null=True, blank=True)

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="patient_record",
    )

    class Meta:
        db_table = "patients_patient"
        indexes = [
            models.Index(fields=["full_name"]),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.mrn})"
