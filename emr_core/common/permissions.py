# emr_core/common/permissions.py

from __future__ import annotations

import logging
from typing import Iterable

from django.core.exceptions import ObjectDoesNotExist
from django.db import models
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import SAFE_METHODS, BasePermission

from emr_core.audit.models import AuditAction, AuditOutcome
from emr_core.audit.services import AuditRecorder

logger = logging.getLogger(__name__)


class Role(models.TextChoices):
    ADMIN = "ADMIN", "Admin"
    DOCTOR = "DOCTOR", "Doctor"
    LAB_ASSISTANT = "LAB_ASSISTANT", "Lab Assistant"
    RECEPTIONIST = "RECEPTIONIST", "Receptionist"
    PATIENT = "PATIENT", "Patient"


class Resource:
    LAB_ORDER = "lab_order"
    BILLING = "billing"
    PAYMENT = "payment"
    CATALOG = "catalog"
    AUDIT = "audit"
    NOTIFICATION = "notification"


class Action:
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    CANCEL = "cancel"
    PAY = "pay"
    PROCESS = "process"
    COMPLETE = "complete"
    REPORT = "report"


# role -> resource -> allowed actions. ADMIN is not listed: it is allowed everything.
CAPABILITIES: dict[str, dict[str, frozenset[str]]] = {
    Role.DOCTOR: {
        Resource.LAB_ORDER: frozenset({Action.CREATE, Action.READ, Action.UPDATE, Action.CANCEL}),
        Resource.BILLING: frozenset({Action.READ}),
        Resource.PAYMENT: frozenset({Action.READ}),
        Resource.CATALOG: frozenset({Action.READ}),
        Resource.NOTIFICATION: frozenset({Action.READ, Action.UPDATE}),
    },
    Role.LAB_ASSISTANT: {
        Resource.LAB_ORDER: frozenset({Action.READ, Action.PROCESS, Action.COMPLETE}),
        Resource.CATALOG: frozenset({Action.READ}),
        Resource.NOTIFICATION: frozenset({Action.READ, Action.UPDATE}),
    },
    Role.RECEPTIONIST: {
        Resource.LAB_ORDER: frozenset({Action.READ, Action.PAY}),
        Resource.BILLING: frozenset({Action.CREATE, Action.READ, Action.UPDATE, Action.CANCEL, Action.PAY}),
        Resource.PAYMENT: frozenset({Action.CREATE, Action.READ, Action.REPORT}),
        Resource.CATALOG: frozenset({Action.READ}),
        Resource.NOTIFICATION: frozenset({Action.READ, Action.UPDATE}),
    },
    Role.PATIENT: {
        Resource.LAB_ORDER: frozenset({Action.READ}),
        Resource.BILLING: frozenset({Action.READ}),
        Resource.PAYMENT: frozenset({Action.READ}),
        Resource.CATALOG: frozenset({Action.READ}),
        Resource.NOTIFICATION: frozenset({Action.READ, Action.UPDATE}),
    },
}


# audit vocabulary for denials recorded at the HTTP gate
_AUDIT_ENTITIES = {
    Resource.LAB_ORDER: "labOrder",
    Resource.CATALOG: "catalogTest",
}
_AUDIT_ACTIONS = {
    Action.PAY: AuditAction.PAYMENT,
    Action.PROCESS: AuditAction.TRANSITION,
    Action.COMPLETE: AuditAction.TRANSITION,
    Action.REPORT: AuditAction.READ,
}


def can(role: str | None, resource: str, action: str) -> bool:
    """
    Pure role-level capability check. Ownership of a specific record is a
    separate concern checked by each use case.
    """
    if role is None:
        return False
    if role == Role.ADMIN:
        return True
    return action in CAPABILITIES.get(role, {}).get(resource, frozenset())


def capabilities_for(role: str | None) -> list[str]:
    """
    Flat "resource.action" list for UI gating.
    """
    if role is None:
        return []
    if role == Role.ADMIN:
        return ["*"]
    return sorted(
        f"{resource}.{action}"
        for resource, actions in CAPABILITIES.get(role, {}).items()
        for action in actions
    )


def authorize(actor, resource: str, action: str) -> bool:
    return can(getattr(actor, "role", None), resource, action)


def require(actor, resource: str, action: str) -> None:
    if not authorize(actor, resource, action):
        raise PermissionDenied(f"Role is not allowed to {action} {resource}.")


def user_role(user) -> str | None:
    """
    Resolve the single role of an authenticated Django user.

    - superusers are ADMIN
    - otherwise the role on the user's active profile
    - None when unauthenticated or no active profile exists
    """
    if not user or not getattr(user, "is_authenticated", False):
        return None

    if getattr(user, "is_superuser", False):
        return Role.ADMIN

    try:
        profile = user.emr_profile
    except (AttributeError, ObjectDoesNotExist):
        return None

    if not profile.is_active:
        return None
    return profile.role


class CapabilityPermission(BasePermission):
    """
    DRF gate that maps view actions onto (resource, action) pairs of the same
    capability table services use, so the HTTP layer is never more permissive.

    Subclasses set:
      resource = Resource.X
      actions_per_view_action = {"list": Action.READ, "change_status": (Action.PROCESS, ...)}

    A tuple means "any of these"; the service then enforces the precise one.
    """
    message = "You do not have permission to perform this action."

    resource: str = ""
    actions_per_view_action: dict[str, str | tuple[str, ...]] = {}

    def _infer_action(self, request, view) -> str | None:
        action = getattr(view, "action", None)
        if action:
            return action

        kwargs = getattr(view, "kwargs", {}) or {}
        is_detail = "pk" in kwargs or "id" in kwargs

        method = request.method.upper()
        if method in ("GET", "HEAD", "OPTIONS"):
            return "retrieve" if is_detail else "list"
        if method == "POST":
            return "create"
        if method == "PUT":
            return "update"
        if method == "PATCH":
            return "partial_update"
        if method == "DELETE":
            return "destroy"
        return None

    def _required(self, request, view) -> Iterable[str]:
        view_action = self._infer_action(request, view)
        required = self.actions_per_view_action.get(view_action)

        if required is None and request.method in SAFE_METHODS:
            required = Action.READ
        if required is None:
            return ()
        return (required,) if isinstance(required, str) else required

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False

        role = user_role(user)
        required = tuple(self._required(request, view))
        allowed = role is not None and any(can(role, self.resource, a) for a in required)
        if not allowed:
            logger.warning(
                "Capability denied: user=%s role=%s resource=%s actions=%s",
                user.id,
                role,
                self.resource,
                ",".join(required) or "-",
            )
            self._audit_denial(request, view, role, required)
        return allowed

    def _audit_denial(self, request, view, role: str | None, required: tuple[str, ...]) -> None:
        from emr_core.iam.actors import Actor

        kwargs = getattr(view, "kwargs", {}) or {}
        attempted = required[0] if required else (self._infer_action(request, view) or request.method.lower())
        AuditRecorder.log(
            actor=Actor(id=request.user.id, role=role),
            action=_AUDIT_ACTIONS.get(attempted, attempted),
            entity=_AUDIT_ENTITIES.get(self.resource, self.resource),
            entity_id=kwargs.get("pk"),
            outcome=AuditOutcome.DENIED,
            metadata={"error": "PermissionDenied", "viewAction": getattr(view, "action", None) or ""},
        )


class LabOrderPermission(CapabilityPermission):
    resource = Resource.LAB_ORDER
    actions_per_view_action = {
        "list": Action.READ,
        "retrieve": Action.READ,
        "payment_status": Action.READ,
        "create": Action.CREATE,
        "partial_update": Action.UPDATE,
        "payment": Action.PAY,
        "change_status": (Action.PROCESS, Action.COMPLETE, Action.CANCEL),
        "cancel": Action.CANCEL,
        "destroy": Action.CANCEL,
    }


class BillingPermission(CapabilityPermission):
    resource = Resource.BILLING
    actions_per_view_action = {
        "list": Action.READ,
        "retrieve": Action.READ,
        "create": Action.CREATE,
        "items": Action.UPDATE,
        "adjustments": Action.UPDATE,
        "cancel": Action.CANCEL,
        "payments": (Action.READ, Action.PAY),
    }


class PaymentPermission(CapabilityPermission):
    resource = Resource.PAYMENT
    actions_per_view_action = {
        "list": Action.READ,
        "retrieve": Action.READ,
        "stats": Action.REPORT,
        "create": Action.CREATE,
    }


class CatalogPermission(CapabilityPermission):
    resource = Resource.CATALOG
    actions_per_view_action = {
        "list": Action.READ,
        "retrieve": Action.READ,
        "create": Action.CREATE,
        "partial_update": Action.UPDATE,
        "deactivate": Action.UPDATE,
    }


class AuditPermission(CapabilityPermission):
    resource = Resource.AUDIT
    actions_per_view_action = {
        "list": Action.READ,
    }


class NotificationPermission(CapabilityPermission):
    resource = Resource.NOTIFICATION
    actions_per_view_action = {
        "list": Action.READ,
        "retrieve": Action.READ,
        "mark_read": Action.UPDATE,
    }
