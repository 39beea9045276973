# emr_core/orders/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from emr_core.billing.api.serializers import BillingSerializer, PaymentSerializer
from emr_core.billing.models import PaymentMethod
from emr_core.lab.models import LabReport
from emr_core.orders.models import LabOrder, LabOrderPriority, LabOrderStatus, LabOrderTest, LabTestStatus


class LabOrderTestCreateSerializer(serializers.Serializer):
    test_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class LabOrderCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    doctor_id = serializers.IntegerField(required=False, allow_null=True)
    tests = LabOrderTestCreateSerializer(many=True, allow_empty=False)
    priority = serializers.ChoiceField(choices=LabOrderPriority.choices, default=LabOrderPriority.ROUTINE)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    due_date = serializers.DateTimeField(required=False, allow_null=True)


class LabOrderUpdateSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True)
    priority = serializers.ChoiceField(choices=LabOrderPriority.choices, required=False)


class LabOrderPaymentSerializer(serializers.Serializer):
    method = serializers.ChoiceField(choices=PaymentMethod.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reference = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")


class LabResultEntrySerializer(serializers.Serializer):
    test_id = serializers.UUIDField()
    status = serializers.ChoiceField(
        choices=[LabTestStatus.COMPLETED, LabTestStatus.CANCELLED],
        default=LabTestStatus.COMPLETED,
    )
    value = serializers.CharField(required=False, allow_blank=True, default="")
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class LabOrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=LabOrderStatus.choices)
    results = LabResultEntrySerializer(many=True, required=False, default=list)
    summary = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class LabOrderCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class LabOrderTestSerializer(serializers.ModelSerializer):
    test_id = serializers.UUIDField(source="catalog_test_id", read_only=True)

    class Meta:
        model = LabOrderTest
        fields = [
            "id",
            "test_id",
            "name",
            "code",
            "unit_price",
            "quantity",
            "status",
            "result_value",
            "result_unit",
            "result_notes",
        ]
        read_only_fields = fields


class LabReportSerializer(serializers.ModelSerializer):
    class Meta:
        model = LabReport
        fields = ["id", "findings", "summary", "performed_by_id", "issued_at"]
        read_only_fields = fields


class LabOrderSerializer(serializers.ModelSerializer):
    tests = LabOrderTestSerializer(many=True, read_only=True)
    billing_id = serializers.SerializerMethodField()
    report = serializers.SerializerMethodField()

    class Meta:
        model = LabOrder
        fields = [
            "id",
            "patient",
            "doctor",
            "status",
            "payment_status",
            "payment_verified",
            "billing_id",
            "payment",
            "priority",
            "due_date",
            "notes",
            "tests",
            "report",
            "paid_at",
            "processing_started_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_billing_id(self, obj) -> str | None:
        billing_id = obj.billing_id
        return str(billing_id) if billing_id else None

    def get_report(self, obj) -> dict | None:
        report = getattr(obj, "report", None)
        return LabReportSerializer(report).data if report is not None else None


class LabOrderWithBillingSerializer(LabOrderSerializer):
    billing = serializers.SerializerMethodField()

    class Meta(LabOrderSerializer.Meta):
        fields = LabOrderSerializer.Meta.fields + ["billing"]
        read_only_fields = fields

    def get_billing(self, obj) -> dict | None:
        billing = getattr(obj, "billing", None)
        return BillingSerializer(billing).data if billing is not None else None


class LabOrderPaymentResultSerializer(serializers.Serializer):
    order = LabOrderWithBillingSerializer()
    payment = PaymentSerializer()


class LabOrderPaymentStatusSerializer(serializers.Serializer):
    lab_order_id = serializers.UUIDField()
    paid = serializers.BooleanField()
    payment_verified = serializers.BooleanField()
    billing_id = serializers.UUIDField(allow_null=True)
    billing_status = serializers.CharField(allow_null=True)
    total = serializers.CharField(allow_null=True)
    amount_paid = serializers.CharField(allow_null=True)
    balance_due = serializers.CharField(allow_null=True)
    receipt_number = serializers.CharField(allow_null=True)
