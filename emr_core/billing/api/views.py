# emr_core/billing/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from emr_core.billing.api.serializers import (
    BillingAdjustmentsSerializer,
    BillingCancelSerializer,
    BillingCreateSerializer,
    BillingItemCreateSerializer,
    BillingSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    PaymentStatsSerializer,
)
from emr_core.billing.models import Billing, Payment
from emr_core.billing.selectors import (
    get_billing_for_actor,
    get_payment_for_actor,
    list_billings,
    list_payments,
    payment_stats,
)
from emr_core.billing.services import BillingService, PaymentService
from emr_core.common.api.pagination import UUID_RE, paginate
from emr_core.common.idempotency import get_key, load_response, save_response
from emr_core.common.permissions import BillingPermission, PaymentPermission
from emr_core.iam.actors import actor_from_user

DEFAULT_STATS_DAYS = 30
MAX_STATS_DAYS = 366


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise DRFValidationError({field_name: "Invalid UUID"})


class BillingViewSet(viewsets.GenericViewSet):
    """
    Billing ledger:
    - list/retrieve (role-scoped)
    - create standalone billing
    - items (POST), adjustments (PATCH), cancel (POST) while pending
    - payments: GET list / POST record
    """
    permission_classes = [BillingPermission]
    serializer_class = BillingSerializer
    queryset = Billing.objects.none()
    lookup_value_regex = UUID_RE
    idempotent_actions = {"payments"}

    @extend_schema(
        tags=["Billing"],
        responses={200: BillingSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="lab_order", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        qp = request.query_params
        qs = list_billings(
            actor=actor_from_user(request.user),
            patient_id=_uuid_or_none(qp.get("patient"), "patient"),
            status=qp.get("status") or None,
            lab_order_id=_uuid_or_none(qp.get("lab_order"), "lab_order"),
        )
        return paginate(request, qs, BillingSerializer)

    @extend_schema(tags=["Billing"], responses={200: BillingSerializer})
    def retrieve(self, request, pk=None):
        billing = get_billing_for_actor(actor=actor_from_user(request.user), billing_id=UUID(str(pk)))
        return Response(BillingSerializer(billing).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Billing"], request=BillingCreateSerializer, responses={201: BillingSerializer})
    def create(self, request):
        ser = BillingCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        billing = BillingService.create_billing(
            actor=actor_from_user(request.user),
            patient_id=data["patient"],
            items=data["items"],
            discount=data["discount"],
            tax=data["tax"],
            subtotal=data.get("subtotal"),
            total=data.get("total"),
            related_lab_order_id=data.get("related_lab_order"),
            notes=data.get("notes", ""),
        )
        return Response(BillingSerializer(billing).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Billing"], request=BillingItemCreateSerializer, responses={201: BillingSerializer})
    @action(detail=True, methods=["post"], url_path="items")
    def items(self, request, pk=None):
        ser = BillingItemCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        billing = BillingService.add_item(
            actor=actor_from_user(request.user),
            billing_id=UUID(str(pk)),
            **ser.validated_data,
        )
        return Response(BillingSerializer(billing).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Billing"], request=BillingAdjustmentsSerializer, responses={200: BillingSerializer})
    @action(detail=True, methods=["patch"], url_path="adjustments")
    def adjustments(self, request, pk=None):
        ser = BillingAdjustmentsSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        billing = BillingService.set_adjustments(
            actor=actor_from_user(request.user),
            billing_id=UUID(str(pk)),
            discount=ser.validated_data.get("discount"),
            tax=ser.validated_data.get("tax"),
        )
        return Response(BillingSerializer(billing).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Billing"], request=BillingCancelSerializer, responses={200: BillingSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        ser = BillingCancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        billing = BillingService.cancel(
            actor=actor_from_user(request.user),
            billing_id=UUID(str(pk)),
            reason=ser.validated_data["reason"],
        )
        return Response(BillingSerializer(billing).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Billing"],
        request=PaymentCreateSerializer,
        responses={200: PaymentSerializer(many=True), 201: PaymentSerializer},
    )
    @action(detail=True, methods=["get", "post"], url_path="payments")
    def payments(self, request, pk=None):
        """
        /billing/billings/<id>/payments/
        - GET: payments of this billing
        - POST: record a payment (standalone billings only)
        """
        actor = actor_from_user(request.user)
        billing_id = UUID(str(pk))

        if request.method.lower() == "get":
            get_billing_for_actor(actor=actor, billing_id=billing_id)
            qs = list_payments(actor=actor, billing_id=billing_id)
            return Response(PaymentSerializer(qs, many=True).data, status=status.HTTP_200_OK)

        idem = get_key(request)
        if idem:
            cached = load_response(request.user.id, request.method, request.path, idem)
            if cached is not None:
                code, body = cached
                return Response(body, status=code)

        ser = PaymentCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        payment = PaymentService.record_payment(
            actor=actor,
            billing_id=billing_id,
            amount=ser.validated_data["amount"],
            method=ser.validated_data["method"],
            reference=ser.validated_data.get("reference", ""),
        )
        out = PaymentSerializer(payment).data

        if idem:
            save_response(request.user.id, request.method, request.path, idem, out, status.HTTP_201_CREATED)
        return Response(out, status=status.HTTP_201_CREATED)


class PaymentViewSet(viewsets.GenericViewSet):
    """
    Read side of the payment ledger plus Admin/Receptionist statistics.
    """
    permission_classes = [PaymentPermission]
    serializer_class = PaymentSerializer
    queryset = Payment.objects.none()
    lookup_value_regex = UUID_RE

    @extend_schema(
        tags=["Billing"],
        responses={200: PaymentSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="billing", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="method", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        qp = request.query_params
        qs = list_payments(
            actor=actor_from_user(request.user),
            billing_id=_uuid_or_none(qp.get("billing"), "billing"),
            patient_id=_uuid_or_none(qp.get("patient"), "patient"),
            method=qp.get("method") or None,
            status=qp.get("status") or None,
        )
        return paginate(request, qs, PaymentSerializer)

    @extend_schema(tags=["Billing"], responses={200: PaymentSerializer})
    def retrieve(self, request, pk=None):
        payment = get_payment_for_actor(actor=actor_from_user(request.user), payment_id=UUID(str(pk)))
        return Response(PaymentSerializer(payment).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Billing"],
        responses={200: PaymentStatsSerializer},
        parameters=[
            OpenApiParameter(name="days", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False,
                             description=f"Trailing window (default {DEFAULT_STATS_DAYS}, max {MAX_STATS_DAYS})."),
        ],
    )
    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        raw = request.query_params.get("days")
        try:
            days = int(raw) if raw else DEFAULT_STATS_DAYS
        except ValueError:
            raise DRFValidationError({"days": "Integer expected."})
        days = max(1, min(days, MAX_STATS_DAYS))

        return Response(payment_stats(actor=actor_from_user(request.user), days=days), status=status.HTTP_200_OK)
