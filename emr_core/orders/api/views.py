# emr_core/orders/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from emr_core.billing.api.serializers import PaymentSerializer
from emr_core.common.api.pagination import UUID_RE, paginate
from emr_core.common.idempotency import get_key, load_response, save_response
from emr_core.common.permissions import LabOrderPermission
from emr_core.iam.actors import actor_from_user
from emr_core.orders.api.serializers import (
    LabOrderCancelSerializer,
    LabOrderCreateSerializer,
    LabOrderPaymentResultSerializer,
    LabOrderPaymentSerializer,
    LabOrderPaymentStatusSerializer,
    LabOrderSerializer,
    LabOrderStatusSerializer,
    LabOrderUpdateSerializer,
    LabOrderWithBillingSerializer,
)
from emr_core.orders.models import LabOrder
from emr_core.orders.selectors import get_lab_order_for_actor, list_lab_orders, payment_status_summary
from emr_core.orders.services import LabOrderService


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise DRFValidationError({field_name: "Invalid UUID"})


def _int_or_none(value: str | None, field_name: str) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise DRFValidationError({field_name: "Integer expected."})


def _bool_or_none(value: str | None) -> bool | None:
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    return None


class LabOrderViewSet(viewsets.GenericViewSet):
    """
    Thin API layer over the lab order lifecycle:
    - capability gate (LabOrderPermission), ownership in services/selectors
    - idempotency caching on create + payment
    - serializers validation
    - delegates writes to LabOrderService, reads to orders.selectors
    """
    permission_classes = [LabOrderPermission]
    serializer_class = LabOrderSerializer
    queryset = LabOrder.objects.none()
    lookup_value_regex = UUID_RE
    idempotent_actions = {"create", "payment"}

    def _reload(self, actor, order_id) -> LabOrder:
        return get_lab_order_for_actor(actor=actor, order_id=order_id, audit=False)

    @extend_schema(
        tags=["Lab Orders"],
        responses={200: LabOrderSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="doctor", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="priority", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="payment_verified", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY,
                             required=False),
        ],
    )
    def list(self, request):
        qp = request.query_params
        qs = list_lab_orders(
            actor=actor_from_user(request.user),
            status=qp.get("status") or None,
            patient_id=_uuid_or_none(qp.get("patient") or qp.get("patientId"), "patient"),
            doctor_id=_int_or_none(qp.get("doctor") or qp.get("doctorId"), "doctor"),
            priority=qp.get("priority") or None,
            payment_verified=_bool_or_none(qp.get("payment_verified")),
        )
        return paginate(request, qs, LabOrderSerializer)

    @extend_schema(tags=["Lab Orders"], responses={200: LabOrderWithBillingSerializer})
    def retrieve(self, request, pk=None):
        order = get_lab_order_for_actor(actor=actor_from_user(request.user), order_id=UUID(str(pk)))
        return Response(LabOrderWithBillingSerializer(order).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Lab Orders"], request=LabOrderCreateSerializer, responses={201: LabOrderWithBillingSerializer})
    def create(self, request):
        idem = get_key(request)
        if idem:
            cached = load_response(request.user.id, request.method, request.path, idem)
            if cached is not None:
                code, body = cached
                return Response(body, status=code)

        ser = LabOrderCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        actor = actor_from_user(request.user)
        order = LabOrderService.create_order(
            actor=actor,
            patient_id=data["patient_id"],
            doctor_id=data.get("doctor_id"),
            tests=data["tests"],
            priority=data["priority"],
            notes=data.get("notes", ""),
            due_date=data.get("due_date"),
        )

        out = LabOrderWithBillingSerializer(self._reload(actor, order.id)).data
        if idem:
            save_response(request.user.id, request.method, request.path, idem, out, status.HTTP_201_CREATED)
        return Response(out, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Lab Orders"], request=LabOrderUpdateSerializer, responses={200: LabOrderSerializer})
    def partial_update(self, request, pk=None):
        ser = LabOrderUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        actor = actor_from_user(request.user)
        order = LabOrderService.update(
            actor=actor,
            order_id=UUID(str(pk)),
            notes=ser.validated_data.get("notes"),
            priority=ser.validated_data.get("priority"),
        )
        return Response(LabOrderSerializer(self._reload(actor, order.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Lab Orders"], request=LabOrderCancelSerializer, responses={200: LabOrderSerializer})
    def destroy(self, request, pk=None):
        return self._cancel(request, pk)

    @extend_schema(tags=["Lab Orders"], request=LabOrderCancelSerializer, responses={200: LabOrderSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        return self._cancel(request, pk)

    def _cancel(self, request, pk):
        ser = LabOrderCancelSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        actor = actor_from_user(request.user)
        order = LabOrderService.cancel(actor=actor, order_id=UUID(str(pk)), reason=ser.validated_data["reason"])
        return Response(LabOrderSerializer(self._reload(actor, order.id)).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Lab Orders"],
        request=LabOrderPaymentSerializer,
        responses={200: LabOrderPaymentResultSerializer},
    )
    @action(detail=True, methods=["post"], url_path="payment")
    def payment(self, request, pk=None):
        idem = get_key(request)
        if idem:
            cached = load_response(request.user.id, request.method, request.path, idem)
            if cached is not None:
                code, body = cached
                return Response(body, status=code)

        ser = LabOrderPaymentSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        actor = actor_from_user(request.user)
        order, payment = LabOrderService.record_payment(
            actor=actor,
            order_id=UUID(str(pk)),
            amount=ser.validated_data["amount"],
            method=ser.validated_data["method"],
            reference=ser.validated_data.get("reference", ""),
        )

        out = {
            "order": LabOrderWithBillingSerializer(self._reload(actor, order.id)).data,
            "payment": PaymentSerializer(payment).data,
        }
        if idem:
            save_response(request.user.id, request.method, request.path, idem, out, status.HTTP_200_OK)
        return Response(out, status=status.HTTP_200_OK)

    @extend_schema(tags=["Lab Orders"], request=LabOrderStatusSerializer, responses={200: LabOrderSerializer})
    @action(detail=True, methods=["patch"], url_path="status")
    def change_status(self, request, pk=None):
        ser = LabOrderStatusSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        actor = actor_from_user(request.user)
        order = LabOrderService.transition(
            actor=actor,
            order_id=UUID(str(pk)),
            status=data["status"],
            results=[dict(r) for r in data.get("results", [])],
            summary=data.get("summary", ""),
            reason=data.get("reason", ""),
        )
        return Response(LabOrderSerializer(self._reload(actor, order.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Lab Orders"], responses={200: LabOrderPaymentStatusSerializer})
    @action(detail=True, methods=["get"], url_path="payment-status")
    def payment_status(self, request, pk=None):
        order = get_lab_order_for_actor(actor=actor_from_user(request.user), order_id=UUID(str(pk)))
        return Response(payment_status_summary(order), status=status.HTTP_200_OK)
