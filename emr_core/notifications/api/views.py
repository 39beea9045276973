from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from emr_core.common.api.pagination import UUID_RE
from emr_core.common.permissions import NotificationPermission
from emr_core.notifications.api.serializers import NotificationSerializer
from emr_core.notifications.selectors import notifications_for
from emr_core.notifications.services import NotificationService


class NotificationViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    The caller's own in-app notifications.
    """
    permission_classes = [NotificationPermission]
    serializer_class = NotificationSerializer
    lookup_value_regex = UUID_RE

    def get_queryset(self):
        is_read = self.request.query_params.get("is_read")
        return notifications_for(
            user_id=self.request.user.id,
            is_read=(is_read == "true") if is_read in ("true", "false") else None,
        )

    @extend_schema(
        tags=["Notifications"],
        parameters=[
            OpenApiParameter(name="is_read", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request, *args, **kwargs):
        return super().list(request, *args, **kwargs)

    @extend_schema(tags=["Notifications"], request=None, responses={200: NotificationSerializer})
    @action(methods=["POST"], detail=True, url_path="mark-read")
    def mark_read(self, request, pk=None):
        notif = NotificationService.mark_read(user_id=request.user.id, notification_id=UUID(str(pk)))
        return Response(NotificationSerializer(notif).data, status=status.HTTP_200_OK)
