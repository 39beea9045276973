# emr_core/catalog/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from emr_core.catalog.api.serializers import (
    CatalogTestSerializer,
    CatalogTestUpdateSerializer,
    CatalogTestUpsertSerializer,
)
from emr_core.catalog.models import CatalogTest
from emr_core.catalog.selectors import list_tests, lookup
from emr_core.catalog.services import CatalogService
from emr_core.common.api.pagination import UUID_RE, paginate
from emr_core.common.permissions import CatalogPermission
from emr_core.iam.actors import actor_from_user


def _bool_or_none(value: str | None) -> bool | None:
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    return None


class CatalogTestViewSet(viewsets.GenericViewSet):
    """
    Lab test catalog. Every role may read; only Admin writes.
    """
    permission_classes = [CatalogPermission]
    serializer_class = CatalogTestSerializer
    queryset = CatalogTest.objects.none()
    lookup_value_regex = UUID_RE

    @extend_schema(
        tags=["Catalog"],
        responses={200: CatalogTestSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="category", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="active", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="q", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             description="Search name or code."),
        ],
    )
    def list(self, request):
        qp = request.query_params
        qs = list_tests(
            category=qp.get("category") or None,
            active=_bool_or_none(qp.get("active")),
            q=qp.get("q"),
        )
        return paginate(request, qs, CatalogTestSerializer)

    @extend_schema(tags=["Catalog"], responses={200: CatalogTestSerializer})
    def retrieve(self, request, pk=None):
        return Response(CatalogTestSerializer(lookup(test_id=pk)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Catalog"], request=CatalogTestUpsertSerializer, responses={201: CatalogTestSerializer})
    def create(self, request):
        ser = CatalogTestUpsertSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        obj = CatalogService.upsert(actor=actor_from_user(request.user), **ser.validated_data)
        return Response(CatalogTestSerializer(obj).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Catalog"], request=CatalogTestUpdateSerializer, responses={200: CatalogTestSerializer})
    def partial_update(self, request, pk=None):
        ser = CatalogTestUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        obj = CatalogService.update(actor=actor_from_user(request.user), test_id=UUID(str(pk)), **ser.validated_data)
        return Response(CatalogTestSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Catalog"], request=None, responses={200: CatalogTestSerializer})
    @action(detail=True, methods=["post"], url_path="deactivate")
    def deactivate(self, request, pk=None):
        obj = CatalogService.deactivate(actor=actor_from_user(request.user), test_id=UUID(str(pk)))
        return Response(CatalogTestSerializer(obj).data, status=status.HTTP_200_OK)
