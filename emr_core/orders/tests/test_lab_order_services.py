# emr_core/orders/tests/test_lab_order_services.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from emr_core.audit.models import AuditAction, AuditEvent, AuditOutcome
from emr_core.billing.models import Billing, BillingStatus, Payment, PaymentStatus, ReceiptSequence
from emr_core.common.api.exceptions import AlreadyPaid, ConflictError, InvalidAmount, InvalidStateTransition
from emr_core.lab.models import LabReport
from emr_core.notifications.models import Notification, NotificationKind
from emr_core.orders import state_machine
from emr_core.orders.models import (
    LabOrder,
    LabOrderPaymentStatus,
    LabOrderPriority,
    LabOrderStatus,
    LabTestStatus,
)
from emr_core.orders.services import LabOrderService


def _pay_in_full(actor, order):
    return LabOrderService.record_payment(actor=actor, order_id=order.id, amount=Decimal("55.00"), method="cash")


def _complete_all(order):
    return [{"test_id": t.id, "status": LabTestStatus.COMPLETED, "value": "ok"} for t in order.tests.all()]


@pytest.mark.django_db
def test_create_order_snapshots_prices_and_derives_billing(lab_order, doctor, patient):
    assert lab_order.status == LabOrderStatus.PENDING_PAYMENT
    assert lab_order.payment_status == LabOrderPaymentStatus.PENDING
    assert lab_order.payment_verified is False
    assert lab_order.doctor_id == doctor.id
    assert lab_order.patient_id == patient.id

    tests = {t.code: t for t in lab_order.tests.all()}
    assert tests["CBC"].unit_price == Decimal("20.00")
    assert tests["CBC"].quantity == 2
    assert tests["LFT"].unit_price == Decimal("15.00")
    assert all(t.status == LabTestStatus.PENDING for t in tests.values())

    billing = Billing.objects.get(related_lab_order=lab_order)
    assert billing.status == BillingStatus.PENDING
    assert billing.subtotal == Decimal("55.00")
    assert billing.total == Decimal("55.00")
    assert billing.balance_due == Decimal("55.00")
    assert billing.items.count() == 2
    assert lab_order.total == Decimal("55.00")


@pytest.mark.django_db
def test_create_order_audits_and_notifies_lab_assistants(lab_assistant, doctor, lab_order):
    ev = AuditEvent.objects.get(entity="labOrder", entity_id=str(lab_order.id), action=AuditAction.CREATE)
    assert ev.outcome == AuditOutcome.SUCCESS
    assert ev.actor_id == doctor.id
    assert AuditEvent.objects.filter(entity="billing", action=AuditAction.CREATE).count() == 1

    notes = Notification.objects.filter(recipient=lab_assistant, kind=NotificationKind.NEW_LAB_ORDER)
    assert notes.count() == 1
    assert notes.get().related_id == str(lab_order.id)


@pytest.mark.django_db
def test_due_date_defaults_from_priority(monkeypatch, doctor_actor, patient, t1):
    fixed = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    monkeypatch.setattr("emr_core.common.clock.now", lambda: fixed)

    order = LabOrderService.create_order(
        actor=doctor_actor,
        patient_id=patient.id,
        tests=[{"test_id": t1.id}],
        priority=LabOrderPriority.STAT,
    )
    assert order.due_date == fixed + timedelta(hours=24)


@pytest.mark.django_db
def test_price_change_after_creation_does_not_reprice_order(lab_order, t1):
    t1.unit_price = Decimal("99.00")
    t1.save()

    row = lab_order.tests.get(code="CBC")
    assert row.unit_price == Decimal("20.00")
    assert Billing.objects.get(related_lab_order=lab_order).total == Decimal("55.00")


@pytest.mark.django_db
def test_create_rejects_empty_and_unknown_and_inactive_tests(doctor_actor, patient, t1):
    with pytest.raises(ValidationError):
        LabOrderService.create_order(actor=doctor_actor, patient_id=patient.id, tests=[])

    with pytest.raises(NotFound):
        LabOrderService.create_order(
            actor=doctor_actor,
            patient_id=patient.id,
            tests=[{"test_id": "00000000-0000-0000-0000-000000000001"}],
        )

    t1.is_active = False
    t1.save()
    with pytest.raises(ValidationError):
        LabOrderService.create_order(actor=doctor_actor, patient_id=patient.id, tests=[{"test_id": t1.id}])

    assert LabOrder.objects.count() == 0
    assert Billing.objects.count() == 0


@pytest.mark.django_db
def test_create_rejects_duplicate_test_rows(doctor_actor, patient, t1):
    with pytest.raises(ValidationError):
        LabOrderService.create_order(
            actor=doctor_actor,
            patient_id=patient.id,
            tests=[{"test_id": t1.id}, {"test_id": t1.id, "quantity": 2}],
        )


@pytest.mark.django_db
def test_create_rejects_unknown_patient(doctor_actor, t1):
    with pytest.raises(NotFound):
        LabOrderService.create_order(
            actor=doctor_actor,
            patient_id="00000000-0000-0000-0000-000000000002",
            tests=[{"test_id": t1.id}],
        )


@pytest.mark.django_db
def test_doctor_cannot_create_order_for_another_doctor(doctor_actor, other_doctor, patient, t1):
    with pytest.raises(PermissionDenied):
        LabOrderService.create_order(
            actor=doctor_actor,
            patient_id=patient.id,
            doctor_id=other_doctor.id,
            tests=[{"test_id": t1.id}],
        )

    ev = AuditEvent.objects.get(entity="labOrder", action=AuditAction.CREATE)
    assert ev.outcome == AuditOutcome.DENIED


@pytest.mark.django_db
def test_admin_creates_for_named_doctor_and_doctor_must_be_active(admin_actor, doctor, lab_assistant, patient, t1):
    with pytest.raises(ValidationError):
        LabOrderService.create_order(actor=admin_actor, patient_id=patient.id, tests=[{"test_id": t1.id}])

    with pytest.raises(NotFound):
        LabOrderService.create_order(
            actor=admin_actor,
            patient_id=patient.id,
            doctor_id=lab_assistant.id,
            tests=[{"test_id": t1.id}],
        )

    order = LabOrderService.create_order(
        actor=admin_actor,
        patient_id=patient.id,
        doctor_id=doctor.id,
        tests=[{"test_id": t1.id}],
    )
    assert order.doctor_id == doctor.id
    assert order.created_by_id == admin_actor.id


@pytest.mark.django_db
@pytest.mark.parametrize("fixture_name", ["receptionist_actor", "lab_actor", "patient_actor"])
def test_only_admin_and_doctor_create_orders(request, fixture_name, doctor, patient, t1):
    actor = request.getfixturevalue(fixture_name)
    with pytest.raises(PermissionDenied):
        LabOrderService.create_order(
            actor=actor,
            patient_id=patient.id,
            doctor_id=doctor.id,
            tests=[{"test_id": t1.id}],
        )


@pytest.mark.django_db
def test_full_payment_marks_order_paid(lab_order, receptionist_actor, lab_assistant):
    order, payment = _pay_in_full(receptionist_actor, lab_order)

    assert payment.status == PaymentStatus.COMPLETED
    assert payment.receipt_number.startswith("RCT-")

    order.refresh_from_db()
    assert order.status == LabOrderStatus.PAID
    assert order.payment_status == LabOrderPaymentStatus.PAID
    assert order.payment_verified is True
    assert order.payment_id == payment.id
    assert order.paid_at is not None

    billing = Billing.objects.get(related_lab_order=order)
    assert billing.status == BillingStatus.PAID
    assert billing.amount_paid == Decimal("55.00")
    assert billing.balance_due == Decimal("0.00")

    assert Notification.objects.filter(recipient=lab_assistant, kind=NotificationKind.LAB_ORDER_PAID).count() == 1
    assert AuditEvent.objects.filter(entity="payment", action=AuditAction.PAYMENT).count() == 1
    assert AuditEvent.objects.filter(
        entity="labOrder", entity_id=str(order.id), action=AuditAction.TRANSITION
    ).count() == 1


@pytest.mark.django_db
def test_partial_then_remaining_payment(lab_order, receptionist_actor):
    order, first = LabOrderService.record_payment(
        actor=receptionist_actor, order_id=lab_order.id, amount=Decimal("30.00"), method="cash"
    )
    order.refresh_from_db()
    billing = Billing.objects.get(related_lab_order=order)
    assert billing.status == BillingStatus.PARTIALLY_PAID
    assert billing.balance_due == Decimal("25.00")
    assert order.status == LabOrderStatus.PENDING_PAYMENT
    assert order.payment_status == LabOrderPaymentStatus.PARTIALLY_PAID
    assert order.payment_verified is False

    order, second = LabOrderService.record_payment(
        actor=receptionist_actor, order_id=lab_order.id, amount=Decimal("25.00"), method="card"
    )
    order.refresh_from_db()
    billing.refresh_from_db()
    assert billing.status == BillingStatus.PAID
    assert order.status == LabOrderStatus.PAID
    assert order.payment_id == second.id
    assert first.receipt_number != second.receipt_number


@pytest.mark.django_db
def test_paying_a_paid_order_is_already_paid_and_creates_nothing(lab_order, receptionist_actor):
    _, payment = _pay_in_full(receptionist_actor, lab_order)

    with pytest.raises(AlreadyPaid):
        _pay_in_full(receptionist_actor, lab_order)

    assert Payment.objects.count() == 1
    ev = AuditEvent.objects.get(entity="labOrder", entity_id=str(lab_order.id), action=AuditAction.PAYMENT)
    assert ev.outcome == AuditOutcome.REJECTED

    # the rejected attempt did not consume a receipt number
    assert ReceiptSequence.objects.get().last_value == 1
    assert payment.receipt_number == "RCT-00000001"


@pytest.mark.django_db
@pytest.mark.parametrize("amount", [Decimal("0.00"), Decimal("-5.00")])
def test_non_positive_amount_is_invalid(lab_order, receptionist_actor, amount):
    with pytest.raises(InvalidAmount):
        LabOrderService.record_payment(actor=receptionist_actor, order_id=lab_order.id, amount=amount)
    assert Payment.objects.count() == 0


@pytest.mark.django_db
def test_overpayment_is_accepted(lab_order, receptionist_actor):
    order, _ = LabOrderService.record_payment(
        actor=receptionist_actor, order_id=lab_order.id, amount=Decimal("60.00"), method="cash"
    )
    billing = Billing.objects.get(related_lab_order=order)
    assert billing.status == BillingStatus.PAID
    assert billing.amount_paid == Decimal("60.00")
    assert billing.balance_due == Decimal("0.00")


@pytest.mark.django_db
def test_doctor_cannot_record_payment(lab_order, doctor_actor):
    with pytest.raises(PermissionDenied):
        _pay_in_full(doctor_actor, lab_order)


@pytest.mark.django_db
def test_processing_and_results_complete_the_order(lab_order, receptionist_actor, lab_actor):
    _pay_in_full(receptionist_actor, lab_order)

    order = LabOrderService.begin_processing(actor=lab_actor, order_id=lab_order.id)
    assert order.status == LabOrderStatus.IN_PROGRESS
    assert order.processed_by_id == lab_actor.id
    assert set(order.tests.values_list("status", flat=True)) == {LabTestStatus.IN_PROGRESS}

    order = LabOrderService.submit_results(
        actor=lab_actor,
        order_id=lab_order.id,
        results=_complete_all(order),
        summary="All within range.",
    )
    assert order.status == LabOrderStatus.COMPLETED
    assert order.completed_at is not None

    report = LabReport.objects.get(order=order)
    assert report.summary == "All within range."
    assert {f["code"] for f in report.findings} == {"CBC", "LFT"}
    assert AuditEvent.objects.filter(entity="labReport", action=AuditAction.CREATE).count() == 1


@pytest.mark.django_db
def test_results_missing_for_a_test_changes_nothing(lab_order, receptionist_actor, lab_actor):
    _pay_in_full(receptionist_actor, lab_order)
    LabOrderService.begin_processing(actor=lab_actor, order_id=lab_order.id)

    cbc = lab_order.tests.get(code="CBC")
    with pytest.raises(ValidationError):
        LabOrderService.submit_results(
            actor=lab_actor,
            order_id=lab_order.id,
            results=[{"test_id": cbc.id, "status": LabTestStatus.COMPLETED, "value": "5.1"}],
        )

    lab_order.refresh_from_db()
    cbc.refresh_from_db()
    assert lab_order.status == LabOrderStatus.IN_PROGRESS
    assert cbc.status == LabTestStatus.IN_PROGRESS
    assert cbc.result_value == ""
    assert not LabReport.objects.filter(order=lab_order).exists()


@pytest.mark.django_db
def test_completed_on_pending_payment_is_invalid_transition(lab_order, lab_actor):
    with pytest.raises(InvalidStateTransition) as ei:
        LabOrderService.transition(
            actor=lab_actor,
            order_id=lab_order.id,
            status=LabOrderStatus.COMPLETED,
            results=_complete_all(lab_order),
        )
    assert ei.value.current == LabOrderStatus.PENDING_PAYMENT
    assert ei.value.requested == LabOrderStatus.COMPLETED

    lab_order.refresh_from_db()
    assert lab_order.status == LabOrderStatus.PENDING_PAYMENT

    ev = AuditEvent.objects.get(entity="labOrder", action=AuditAction.TRANSITION)
    assert ev.outcome == AuditOutcome.REJECTED


@pytest.mark.django_db
def test_transition_to_paid_points_at_payment(lab_order, admin_actor):
    with pytest.raises(ValidationError):
        LabOrderService.transition(actor=admin_actor, order_id=lab_order.id, status=LabOrderStatus.PAID)


@pytest.mark.django_db
def test_transition_to_paid_on_terminal_order_is_invalid_transition(lab_order, admin_actor):
    LabOrderService.cancel(actor=admin_actor, order_id=lab_order.id)

    with pytest.raises(InvalidStateTransition) as exc:
        LabOrderService.transition(actor=admin_actor, order_id=lab_order.id, status=LabOrderStatus.PAID)
    assert exc.value.current == LabOrderStatus.CANCELLED
    assert exc.value.requested == LabOrderStatus.PAID


@pytest.mark.django_db
def test_transition_back_to_pending_is_rejected(lab_order, admin_actor):
    with pytest.raises(InvalidStateTransition):
        LabOrderService.transition(actor=admin_actor, order_id=lab_order.id, status=LabOrderStatus.PENDING_PAYMENT)


@pytest.mark.django_db
def test_lab_assistant_cannot_cancel(lab_order, lab_actor):
    with pytest.raises(PermissionDenied):
        LabOrderService.cancel(actor=lab_actor, order_id=lab_order.id)


@pytest.mark.django_db
def test_cancel_unpaid_order_cancels_billing(lab_order, doctor_actor):
    order = LabOrderService.cancel(actor=doctor_actor, order_id=lab_order.id, reason="ordered in error")

    assert order.status == LabOrderStatus.CANCELLED
    assert order.cancellation_reason == "ordered in error"
    assert set(order.tests.values_list("status", flat=True)) == {LabTestStatus.CANCELLED}
    assert Billing.objects.get(related_lab_order=order).status == BillingStatus.CANCELLED


@pytest.mark.django_db
def test_cancel_paid_order_keeps_billing_and_notifies_doctor(lab_order, receptionist_actor, admin_actor, doctor):
    _pay_in_full(receptionist_actor, lab_order)

    order = LabOrderService.cancel(actor=admin_actor, order_id=lab_order.id, reason="patient left")
    assert order.status == LabOrderStatus.CANCELLED
    assert order.payment_verified is False
    assert order.payment.status == PaymentStatus.COMPLETED

    order.refresh_from_db()
    assert order.payment_verified is False
    assert order.payment_id is not None
    assert Billing.objects.get(related_lab_order=order).status == BillingStatus.PAID

    note = Notification.objects.get(recipient=doctor, kind=NotificationKind.LAB_ORDER_CANCELLED)
    assert "patient left" in note.message


@pytest.mark.django_db
def test_other_doctor_cannot_cancel_or_update(lab_order, other_doctor_actor):
    with pytest.raises(PermissionDenied):
        LabOrderService.cancel(actor=other_doctor_actor, order_id=lab_order.id)
    with pytest.raises(PermissionDenied):
        LabOrderService.update(actor=other_doctor_actor, order_id=lab_order.id, notes="mine now")

    lab_order.refresh_from_db()
    assert lab_order.status == LabOrderStatus.PENDING_PAYMENT
    assert lab_order.notes == ""


@pytest.mark.django_db
def test_cancelled_order_is_terminal(lab_order, doctor_actor, receptionist_actor):
    LabOrderService.cancel(actor=doctor_actor, order_id=lab_order.id)

    with pytest.raises(InvalidStateTransition):
        LabOrderService.cancel(actor=doctor_actor, order_id=lab_order.id)
    with pytest.raises(InvalidStateTransition):
        _pay_in_full(receptionist_actor, lab_order)
    with pytest.raises(ConflictError):
        LabOrderService.update(actor=doctor_actor, order_id=lab_order.id, notes="late note")


@pytest.mark.django_db
def test_update_priority_rederives_due_date(lab_order, doctor_actor):
    order = LabOrderService.update(
        actor=doctor_actor,
        order_id=lab_order.id,
        notes="fasting sample",
        priority=LabOrderPriority.URGENT,
    )
    assert order.notes == "fasting sample"
    assert order.priority == LabOrderPriority.URGENT
    assert order.due_date == order.created_at + timedelta(hours=72)
    assert AuditEvent.objects.filter(entity="labOrder", action=AuditAction.UPDATE).count() == 1


@pytest.mark.django_db
def test_observed_statuses_form_a_valid_path(lab_order, receptionist_actor, lab_actor):
    seen = [lab_order.status]

    _pay_in_full(receptionist_actor, lab_order)
    lab_order.refresh_from_db()
    seen.append(lab_order.status)

    order = LabOrderService.begin_processing(actor=lab_actor, order_id=lab_order.id)
    seen.append(order.status)

    order = LabOrderService.submit_results(actor=lab_actor, order_id=lab_order.id, results=_complete_all(order))
    seen.append(order.status)

    assert state_machine.is_valid_path(seen)
    assert seen[-1] == LabOrderStatus.COMPLETED
