# emr_core/iam/api/me.py

from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from emr_core.common.permissions import capabilities_for
from emr_core.iam.actors import actor_from_user
from emr_core.iam.api.schema_serializers import MeResponseSerializer


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: MeResponseSerializer}, tags=["IAM"])
    def get(self, request):
        """
        Returns the caller's identity, resolved role and flat capability list
        (for UI gating). 403 when the user has no active role.
        """
        actor = actor_from_user(request.user)

        return Response(
            {
                "user": {
                    "id": request.user.id,
                    "username": getattr(request.user, "username", None),
                    "email": getattr(request.user, "email", None) or None,
                },
                "role": actor.role,
                "capabilities": capabilities_for(actor.role),
            },
            status=status.HTTP_200_OK,
        )
