# emr_core/audit/api/views.py
from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from emr_core.audit.api.serializers import AuditEventSerializer
from emr_core.audit.models import AuditEvent
from emr_core.audit.selectors import list_audit_events
from emr_core.common.permissions import AuditPermission

DEFAULT_LIMIT = 200
MAX_LIMIT = 500


def _int_or_none(value: str | None, field_name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError({field_name: "Integer expected."})


class AuditEventViewSet(viewsets.GenericViewSet):
    """
    Admin-only audit trail listing.
    """
    permission_classes = [AuditPermission]

    serializer_class = AuditEventSerializer
    queryset = AuditEvent.objects.none()

    @extend_schema(
        tags=["Audit"],
        responses={200: AuditEventSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="entity", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             description="e.g. labOrder, billing, payment"),
            OpenApiParameter(name="entity_id", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="action", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="actor_id", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="outcome", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="limit", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False,
                             description=f"Max records (default {DEFAULT_LIMIT}, max {MAX_LIMIT})."),
        ],
    )
    def list(self, request):
        qp = request.query_params

        qs = list_audit_events(
            entity=qp.get("entity") or None,
            entity_id=qp.get("entity_id") or None,
            action=qp.get("action") or None,
            actor_id=_int_or_none(qp.get("actor_id"), "actor_id"),
            outcome=qp.get("outcome") or None,
        )

        limit = _int_or_none(qp.get("limit"), "limit") or DEFAULT_LIMIT
        limit = max(1, min(limit, MAX_LIMIT))

        return Response(AuditEventSerializer(qs[:limit], many=True).data, status=status.HTTP_200_OK)
