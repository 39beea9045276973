# emr_core/billing/tests/test_billing_services.py
from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from emr_core.audit.models import AuditAction, AuditEvent
from emr_core.billing.models import Billing, BillingStatus, Payment
from emr_core.billing.selectors import payment_stats
from emr_core.billing.services import BillingService, PaymentService
from emr_core.common.api.exceptions import AlreadyPaid, ConflictError, InvalidAmount


def _items():
    return [
        {"description": "Consultation", "quantity": 1, "unit_price": "40.00"},
        {"description": "Dressing", "quantity": 3, "unit_price": "5.00", "total": "15.00"},
    ]


@pytest.fixture
def billing(receptionist_actor, patient):
    return BillingService.create_billing(
        actor=receptionist_actor,
        patient_id=patient.id,
        items=_items(),
        discount="5.00",
        tax="2.00",
    )


@pytest.mark.django_db
def test_create_billing_arithmetic(billing):
    assert billing.status == BillingStatus.PENDING
    assert billing.subtotal == Decimal("55.00")
    assert billing.total == Decimal("52.00")
    assert billing.balance_due == Decimal("52.00")
    assert sorted(i.total for i in billing.items.all()) == [Decimal("15.00"), Decimal("40.00")]
    assert AuditEvent.objects.filter(entity="billing", entity_id=str(billing.id), action=AuditAction.CREATE).exists()


@pytest.mark.django_db
def test_item_total_that_does_not_reconcile_is_rejected(receptionist_actor, patient):
    items = [{"description": "Dressing", "quantity": 3, "unit_price": "5.00", "total": "16.00"}]
    with pytest.raises(InvalidAmount):
        BillingService.create_billing(actor=receptionist_actor, patient_id=patient.id, items=items)
    assert Billing.objects.count() == 0


@pytest.mark.django_db
def test_claimed_totals_are_checked_with_tolerance(receptionist_actor, patient):
    b = BillingService.create_billing(
        actor=receptionist_actor,
        patient_id=patient.id,
        items=_items(),
        subtotal=Decimal("55.01"),
        total=Decimal("55.00"),
    )
    assert b.total == Decimal("55.00")

    with pytest.raises(InvalidAmount):
        BillingService.create_billing(
            actor=receptionist_actor,
            patient_id=patient.id,
            items=_items(),
            total=Decimal("50.00"),
        )


@pytest.mark.django_db
def test_create_billing_requires_items_and_patient(receptionist_actor, patient):
    with pytest.raises(ValidationError):
        BillingService.create_billing(actor=receptionist_actor, patient_id=patient.id, items=[])
    with pytest.raises(NotFound):
        BillingService.create_billing(
            actor=receptionist_actor,
            patient_id="00000000-0000-0000-0000-000000000007",
            items=_items(),
        )


@pytest.mark.django_db
def test_second_billing_for_lab_order_conflicts(receptionist_actor, lab_order, patient):
    with pytest.raises(ConflictError):
        BillingService.create_billing(
            actor=receptionist_actor,
            patient_id=patient.id,
            items=_items(),
            related_lab_order_id=lab_order.id,
        )


@pytest.mark.django_db
def test_doctor_cannot_create_billing(doctor_actor, patient):
    with pytest.raises(PermissionDenied):
        BillingService.create_billing(actor=doctor_actor, patient_id=patient.id, items=_items())


@pytest.mark.django_db
def test_add_item_and_adjustments_keep_totals_consistent(billing, receptionist_actor):
    b = BillingService.add_item(
        actor=receptionist_actor,
        billing_id=billing.id,
        description="Syringe",
        quantity=2,
        unit_price="1.50",
    )
    assert b.subtotal == Decimal("58.00")
    assert b.total == Decimal("55.00")

    b = BillingService.set_adjustments(actor=receptionist_actor, billing_id=billing.id, discount="0", tax="0")
    assert b.total == Decimal("58.00")
    assert b.total == sum(i.total for i in b.items.all()) - b.discount + b.tax

    with pytest.raises(InvalidAmount):
        BillingService.set_adjustments(actor=receptionist_actor, billing_id=billing.id, discount="100")


@pytest.mark.django_db
def test_partial_then_full_payment(billing, receptionist_actor):
    p1 = PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="30.00")
    billing.refresh_from_db()
    assert billing.status == BillingStatus.PARTIALLY_PAID
    assert billing.amount_paid == Decimal("30.00")

    p2 = PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="22.00", method="card")
    billing.refresh_from_db()
    assert billing.status == BillingStatus.PAID
    assert billing.balance_due == Decimal("0.00")
    assert billing.paid_at is not None

    assert p1.receipt_number == "RCT-00000001"
    assert p2.receipt_number == "RCT-00000002"


@pytest.mark.django_db
def test_paid_billing_rejects_payment_and_edits(billing, receptionist_actor):
    PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="52.00")

    with pytest.raises(AlreadyPaid):
        PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="1.00")
    with pytest.raises(ConflictError):
        BillingService.add_item(actor=receptionist_actor, billing_id=billing.id, description="x", unit_price="1")
    with pytest.raises(ConflictError):
        BillingService.cancel(actor=receptionist_actor, billing_id=billing.id)

    assert Payment.objects.count() == 1


@pytest.mark.django_db
def test_payment_on_stale_instance_reconciles_from_stored_payments(billing, receptionist_actor):
    # both read before either payment, as two concurrent callers would
    first_reader = Billing.objects.get(id=billing.id)
    second_reader = Billing.objects.get(id=billing.id)

    PaymentService.apply_payment(actor=receptionist_actor, billing=first_reader, amount="30.00")
    assert second_reader.amount_paid == Decimal("0.00")

    PaymentService.apply_payment(actor=receptionist_actor, billing=second_reader, amount="22.00", method="card")

    billing.refresh_from_db()
    assert billing.status == BillingStatus.PAID
    assert billing.amount_paid == Decimal("52.00")
    assert billing.balance_due == Decimal("0.00")
    assert sorted(Payment.objects.values_list("receipt_number", flat=True)) == ["RCT-00000001", "RCT-00000002"]


@pytest.mark.django_db
def test_reconcile_is_idempotent(billing, receptionist_actor):
    PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="30.00")

    first = PaymentService.reconcile(Billing.objects.get(id=billing.id))
    snapshot = (first.status, first.amount_paid, first.balance_due)
    second = PaymentService.reconcile(Billing.objects.get(id=billing.id))

    assert (second.status, second.amount_paid, second.balance_due) == snapshot


@pytest.mark.django_db
def test_lab_order_billing_must_be_paid_through_the_order(lab_order, receptionist_actor):
    with pytest.raises(ConflictError):
        PaymentService.record_payment(actor=receptionist_actor, billing_id=lab_order.billing.id, amount="55.00")


@pytest.mark.django_db
def test_unknown_billing_is_not_found(receptionist_actor):
    with pytest.raises(NotFound):
        PaymentService.record_payment(
            actor=receptionist_actor,
            billing_id="00000000-0000-0000-0000-000000000003",
            amount="1.00",
        )


@pytest.mark.django_db
def test_cancel_pending_billing(billing, receptionist_actor):
    b = BillingService.cancel(actor=receptionist_actor, billing_id=billing.id, reason="duplicate")
    assert b.status == BillingStatus.CANCELLED
    assert "duplicate" in b.notes

    with pytest.raises(ConflictError):
        PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="5.00")
    with pytest.raises(ConflictError):
        BillingService.cancel(actor=receptionist_actor, billing_id=billing.id)


@pytest.mark.django_db
def test_payment_stats_by_method(billing, receptionist_actor, doctor_actor):
    PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="30.00", method="cash")
    PaymentService.record_payment(actor=receptionist_actor, billing_id=billing.id, amount="22.00", method="card")

    stats = payment_stats(actor=receptionist_actor, days=7)
    assert stats["count"] == 2
    assert stats["total"] == "52.00"
    assert {row["method"]: (row["count"], row["total"]) for row in stats["by_method"]} == {
        "card": (1, "22.00"),
        "cash": (1, "30.00"),
    }

    with pytest.raises(PermissionDenied):
        payment_stats(actor=doctor_actor)
