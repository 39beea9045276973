# emr_core/billing/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from emr_core.billing.models import Billing, BillingItem, Payment, PaymentMethod


class BillingItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = BillingItem
        fields = ["id", "description", "code", "quantity", "unit_price", "total"]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "billing",
            "patient",
            "amount",
            "method",
            "status",
            "receipt_number",
            "reference",
            "processed_by_id",
            "payment_date",
            "created_at",
        ]
        read_only_fields = fields


class BillingSerializer(serializers.ModelSerializer):
    items = BillingItemSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Billing
        fields = [
            "id",
            "patient",
            "related_lab_order",
            "status",
            "currency",
            "subtotal",
            "discount",
            "tax",
            "total",
            "amount_paid",
            "balance_due",
            "created_by_id",
            "paid_at",
            "cancelled_at",
            "notes",
            "items",
            "payments",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BillingItemCreateSerializer(serializers.Serializer):
    """
    `total` is optional; when sent it must equal unit_price * quantity.
    """
    description = serializers.CharField(max_length=255)
    code = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"))
    total = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)


class BillingCreateSerializer(serializers.Serializer):
    patient = serializers.UUIDField()
    items = BillingItemCreateSerializer(many=True)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax = serializers.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    total = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    related_lab_order = serializers.UUIDField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class BillingAdjustmentsSerializer(serializers.Serializer):
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    tax = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)


class BillingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    reference = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")


class PaymentStatsSerializer(serializers.Serializer):
    days = serializers.IntegerField()
    since = serializers.DateTimeField()
    count = serializers.IntegerField()
    total = serializers.CharField()
    by_method = serializers.ListField(child=serializers.DictField())
