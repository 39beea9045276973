# emr_core/common/api/exceptions.py

from __future__ import annotations

import logging
import uuid
from typing import Any

from django.db import DatabaseError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    NotAuthenticated,
    PermissionDenied,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    Safe to call from middleware and DRF exception handler.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    """
    Canonical error envelope:
      {"error": {"code", "message", "details", "request_id"}}
    """
    rid = ensure_request_id(request)
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": rid,
        }
    }


class Unauthenticated(NotAuthenticated):
    """
    Missing or invalid credential when resolving an Actor outside DRF's own
    authentication classes.
    """
    default_detail = "Authentication credentials were not provided or are invalid."
    default_code = "not_authenticated"


class ConflictError(APIException):
    """
    409 Conflict that still flows through the global exception handler.
    Use when business rules block an action (duplicate billing, cancelled billing...).
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail or self.default_detail, code=code or self.default_code)


class InvalidStateTransition(ConflictError):
    default_detail = "Invalid state transition."
    default_code = "invalid_state_transition"

    def __init__(self, *, current: str, requested: str, detail: str | None = None):
        self.current = current
        self.requested = requested
        message = detail or f"Cannot move from '{current}' to '{requested}'."
        super().__init__(detail={"detail": message, "current": current, "requested": requested})


class AlreadyPaid(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Billing is already paid."
    default_code = "already_paid"


class InvalidAmount(ValidationError):
    """
    Money arithmetic that does not reconcile, or a non-positive amount.
    """
    default_detail = "Amounts do not reconcile."
    default_code = "invalid_amount"


class DependencyFailure(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "A required dependency is unavailable."
    default_code = "dependency_failure"


def _code_for(exc: Exception, http_status: int) -> str:
    if isinstance(exc, InvalidAmount):
        return InvalidAmount.default_code
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, (NotAuthenticated, AuthenticationFailed)):
        return "not_authenticated"
    if isinstance(exc, PermissionDenied):
        return "permission_denied"
    if isinstance(exc, Http404):
        return "not_found"
    if isinstance(exc, APIException):
        return getattr(exc, "default_code", "api_error") or "api_error"
    if http_status >= 500:
        return "server_error"
    return "error"


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")

    # Record store failure on a primary write: surfaced, never retried here.
    if isinstance(exc, DatabaseError):
        logger.exception("Record store failure", exc_info=exc)
        exc = DependencyFailure()

    response = drf_exception_handler(exc, context)

    # Truly unhandled error
    if response is None:
        logger.error(
            "Unhandled API error (request_id=%s)",
            ensure_request_id(request),
            exc_info=exc,
        )
        return Response(
            build_error_envelope(
                request=request,
                code="server_error",
                message="Unexpected server error.",
                details=None,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    http_status = response.status_code
    code = _code_for(exc, http_status)

    data = response.data

    # 1) {"detail": "..."} only -> message=detail, details=None
    # 2) {"detail": "...", ...} -> message=detail, details={...without detail}
    # 3) otherwise -> message="Request failed.", details=data
    message = "Request failed."
    details = data

    if isinstance(data, dict) and "detail" in data:
        message = str(data.get("detail"))
        rest = {k: v for k, v in data.items() if k != "detail"}
        details = rest or None

    return Response(
        build_error_envelope(
            request=request,
            code=code,
            message=message,
            details=details,
        ),
        status=http_status,
        headers=response.headers,
    )
