# emr_core/iam/models.py
from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models

from emr_core.common.permissions import Role


class UserProfile(models.Model):
    """
    EMR identity wrapper anchored to Django's AUTH_USER_MODEL.
    Exactly one role per user; roles are disjoint.
    Deactivation is a soft flag, profiles are never deleted by the app.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="emr_profile")
    role = models.CharField(max_length=32, choices=Role.choices, db_index=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "iam_user_profile"
        indexes = [
            models.Index(fields=["role", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.user.username} ({self.role})"
