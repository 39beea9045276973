# emr_core/iam/actors.py
from __future__ import annotations

from dataclasses import dataclass

from django.contrib.auth import get_user_model
from rest_framework.exceptions import PermissionDenied
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings as jwt_settings
from rest_framework_simplejwt.tokens import AccessToken

from emr_core.common.api.exceptions import Unauthenticated
from emr_core.common.permissions import user_role


@dataclass(frozen=True)
class Actor:
    """
    Who is performing an operation. Passed explicitly to every service call.
    """
    id: int
    role: str


def actor_from_user(user) -> Actor:
    """
    Resolve an already-authenticated Django user (request.user) to an Actor.
    """
    if not user or not getattr(user, "is_authenticated", False):
        raise Unauthenticated()

    role = user_role(user)
    if role is None:
        raise PermissionDenied("No active role is assigned to this user.")
    return Actor(id=user.id, role=role)


def authenticate(credential: str | None) -> Actor:
    """
    Resolve a raw access token to an Actor without going through DRF.
    Any failure is Unauthenticated.
    """
    if not credential:
        raise Unauthenticated()

    try:
        token = AccessToken(credential)
    except TokenError:
        raise Unauthenticated("Invalid or expired token.")

    user_id = token.get(jwt_settings.USER_ID_CLAIM)
    if user_id is None:
        raise Unauthenticated("Token carries no user.")

    User = get_user_model()
    user = User.objects.filter(**{jwt_settings.USER_ID_FIELD: user_id}, is_active=True).first()
    if user is None:
        raise Unauthenticated("User not found or inactive.")

    return actor_from_user(user)
