from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db.models import QuerySet
from rest_framework.exceptions import NotFound

from emr_core.common.permissions import Role


def users_with_role(role: str) -> QuerySet:
    User = get_user_model()
    return User.objects.filter(
        is_active=True,
        emr_profile__role=role,
        emr_profile__is_active=True,
    )


def get_active_doctor(doctor_id: int):
    doctor = users_with_role(Role.DOCTOR).filter(id=doctor_id).first()
    if doctor is None:
        raise NotFound(f"Doctor {doctor_id} not found.")
    return doctor
