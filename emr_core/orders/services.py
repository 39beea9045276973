# emr_core/orders/services.py
from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from emr_core.audit.models import AuditAction
from emr_core.audit.services import AuditRecorder
from emr_core.billing.models import BillingStatus, PaymentMethod
from emr_core.billing.services import BillingService, PaymentService, lock_billing_for_order
from emr_core.catalog.selectors import active_tests_by_id
from emr_core.common import clock
from emr_core.common.api.exceptions import AlreadyPaid, ConflictError, InvalidStateTransition
from emr_core.common.effects import post_commit
from emr_core.common.permissions import Action, Resource, Role, require
from emr_core.iam.selectors import get_active_doctor
from emr_core.lab.services import LabReportService
from emr_core.notifications.models import NotificationKind
from emr_core.notifications.services import NotificationService
from emr_core.orders import state_machine
from emr_core.orders.models import (
    LabOrder,
    LabOrderPaymentStatus,
    LabOrderPriority,
    LabOrderStatus,
    LabOrderTest,
    LabTestStatus,
    TERMINAL_TEST_STATUSES,
)
from emr_core.patients.selectors import get_patient

ENTITY = "labOrder"
REPORT_ENTITY = "labReport"

DUE_AFTER = {
    LabOrderPriority.STAT: timedelta(hours=24),
    LabOrderPriority.URGENT: timedelta(hours=72),
    LabOrderPriority.ROUTINE: timedelta(days=7),
}


def default_due_date(priority: str, start: datetime) -> datetime:
    return start + DUE_AFTER.get(priority, DUE_AFTER[LabOrderPriority.ROUTINE])


def _lock_order(order_id: UUID) -> LabOrder:
    order = LabOrder.objects.select_for_update().filter(id=order_id).first()
    if order is None:
        raise NotFound(f"Lab order {order_id} not found.")
    return order


def _ensure_owner(actor, order: LabOrder) -> None:
    """
    Doctors may only write their own orders. Every other role that passed the
    capability check acts on any order.
    """
    if actor.role == Role.DOCTOR and order.doctor_id != actor.id:
        raise PermissionDenied("Only the ordering doctor may modify this lab order.")


def _normalize_tests(tests: list[dict]) -> list[tuple[UUID, int]]:
    if not tests:
        raise ValidationError({"tests": "At least one test is required."})

    out: list[tuple[UUID, int]] = []
    seen: set[str] = set()
    for idx, raw in enumerate(tests):
        test_id = raw.get("test_id")
        if not test_id:
            raise ValidationError({"tests": {idx: "test_id is required."}})
        try:
            test_id = UUID(str(test_id))
        except ValueError:
            raise ValidationError({"tests": {idx: "test_id must be a UUID."}})
        if str(test_id) in seen:
            raise ValidationError({"tests": {idx: "Each test may be ordered once; use quantity instead."}})
        seen.add(str(test_id))

        try:
            quantity = int(raw.get("quantity", 1))
        except (TypeError, ValueError):
            raise ValidationError({"tests": {idx: "quantity must be an integer."}})
        if quantity < 1:
            raise ValidationError({"tests": {idx: "quantity must be >= 1."}})

        out.append((test_id, quantity))
    return out


class LabOrderService:
    """
    Write-model for the lab order lifecycle:

      create -> pending-payment
      record_payment (full settlement) -> paid
      begin_processing -> in-progress
      submit_results -> completed
      cancel (any non-terminal) -> cancelled

    Every call takes an explicit actor. Audit writes and notifications are
    effects that run after the primary transaction commits; a rejected call is
    still audited.
    """

    @staticmethod
    def create_order(
        *,
        actor,
        patient_id: UUID,
        tests: list[dict],
        doctor_id: int | None = None,
        priority: str = LabOrderPriority.ROUTINE,
        notes: str = "",
        due_date: datetime | None = None,
    ) -> LabOrder:
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.CREATE, entity=ENTITY):
            require(actor, Resource.LAB_ORDER, Action.CREATE)

            if actor.role == Role.DOCTOR:
                if doctor_id is not None and int(doctor_id) != actor.id:
                    raise PermissionDenied("Doctors can only create lab orders under their own name.")
                doctor_id = actor.id
            elif doctor_id is None:
                raise ValidationError({"doctor_id": "This field is required."})

            if priority not in LabOrderPriority.values:
                raise ValidationError({"priority": f"Unsupported priority '{priority}'."})

            wanted = _normalize_tests(tests)

            with post_commit() as effects:
                patient = get_patient(patient_id=patient_id)
                doctor = get_active_doctor(doctor_id)

                # prices are read once, here, and copied onto the order
                catalog = active_tests_by_id(test_id for test_id, _ in wanted)

                now = clock.now()
                order = LabOrder.objects.create(
                    patient=patient,
                    doctor=doctor,
                    status=LabOrderStatus.PENDING_PAYMENT,
                    payment_status=LabOrderPaymentStatus.PENDING,
                    priority=priority,
                    due_date=due_date or default_due_date(priority, now),
                    notes=notes or "",
                    created_by_id=actor.id,
                )
                rows = LabOrderTest.objects.bulk_create(
                    [
                        LabOrderTest(
                            order=order,
                            catalog_test=catalog[test_id],
                            name=catalog[test_id].name,
                            code=catalog[test_id].code,
                            unit_price=catalog[test_id].unit_price,
                            quantity=quantity,
                            status=LabTestStatus.PENDING,
                        )
                        for test_id, quantity in wanted
                    ]
                )

                billing = BillingService.derive_from_lab_order(actor=actor, order=order, tests=rows, effects=effects)

                effects.add(
                    "audit.lab_order.create",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.CREATE,
                        entity=ENTITY,
                        entity_id=order.id,
                        changes={
                            "status": order.status,
                            "tests": [r.code for r in rows],
                            "total": str(billing.total),
                        },
                        metadata={"patientId": str(patient.id), "doctorId": doctor.id, "billingId": str(billing.id)},
                    ),
                )
                effects.add(
                    "notify.lab_assistants.new_order",
                    NotificationService.deferred_role_group(
                        role=Role.LAB_ASSISTANT,
                        kind=NotificationKind.NEW_LAB_ORDER,
                        message=f"New {priority} lab order for {patient.full_name}: {', '.join(r.code for r in rows)}",
                        related_entity=ENTITY,
                        related_id=order.id,
                    ),
                )
        return order

    @staticmethod
    def record_payment(
        *,
        actor,
        order_id: UUID,
        amount,
        method: str = PaymentMethod.CASH,
        reference: str = "",
    ):
        """
        Record a payment against the order's billing. The order moves to `paid`
        only once the billing is fully settled; a partial payment leaves it in
        `pending-payment` with payment_status=partially-paid.

        Returns (order, payment).
        """
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.PAYMENT, entity=ENTITY, entity_id=order_id):
            require(actor, Resource.LAB_ORDER, Action.PAY)

            with post_commit() as effects:
                order = _lock_order(order_id)

                if order.status == LabOrderStatus.CANCELLED:
                    raise InvalidStateTransition(current=order.status, requested=LabOrderStatus.PAID)
                if order.status != LabOrderStatus.PENDING_PAYMENT:
                    raise AlreadyPaid("Lab order is already paid.")

                # order -> billing lock order; the whole read/insert/recompute/write runs under both
                billing = lock_billing_for_order(order)
                payment = PaymentService.apply_payment(
                    actor=actor,
                    billing=billing,
                    amount=amount,
                    method=method,
                    reference=reference,
                )

                previous = order.status
                order.payment_status = billing.status
                update_fields = ["payment_status", "updated_at"]

                if billing.status == BillingStatus.PAID:
                    order.status = state_machine.next_status(order.status, state_machine.PAY)
                    order.payment_verified = True
                    order.payment = payment
                    order.paid_at = payment.payment_date
                    update_fields += ["status", "payment_verified", "payment", "paid_at"]

                order.save(update_fields=update_fields)

                effects.add("audit.payment", PaymentService.audit_payment(actor=actor, payment=payment, billing=billing))
                if order.status != previous:
                    effects.add(
                        "audit.lab_order.paid",
                        AuditRecorder.deferred(
                            actor=actor,
                            action=AuditAction.TRANSITION,
                            entity=ENTITY,
                            entity_id=order.id,
                            changes={"from": previous, "to": order.status},
                            metadata={"paymentId": str(payment.id), "receiptNumber": payment.receipt_number},
                        ),
                    )
                    effects.add(
                        "notify.lab_assistants.paid",
                        NotificationService.deferred_role_group(
                            role=Role.LAB_ASSISTANT,
                            kind=NotificationKind.LAB_ORDER_PAID,
                            message=f"Lab order {order.id} is paid and ready for processing.",
                            related_entity=ENTITY,
                            related_id=order.id,
                        ),
                    )
        return order, payment

    @staticmethod
    def begin_processing(*, actor, order_id: UUID) -> LabOrder:
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.TRANSITION, entity=ENTITY, entity_id=order_id):
            require(actor, Resource.LAB_ORDER, Action.PROCESS)

            with post_commit() as effects:
                order = _lock_order(order_id)
                previous = order.status
                order.status = state_machine.next_status(order.status, state_machine.BEGIN_PROCESSING)

                now = clock.now()
                order.processing_started_at = now
                order.processed_by_id = actor.id
                order.save(update_fields=["status", "processing_started_at", "processed_by_id", "updated_at"])
                order.tests.filter(status=LabTestStatus.PENDING).update(status=LabTestStatus.IN_PROGRESS, updated_at=now)

                effects.add(
                    "audit.lab_order.processing",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.TRANSITION,
                        entity=ENTITY,
                        entity_id=order.id,
                        changes={"from": previous, "to": order.status},
                    ),
                )
        return order

    @staticmethod
    def submit_results(*, actor, order_id: UUID, results: list[dict], summary: str = "") -> LabOrder:
        """
        Each result: {"test_id": <LabOrderTest id>, "status": "completed"|"cancelled",
        "value"?, "unit"?, "notes"?}. After applying, every test must be terminal,
        otherwise nothing is written.
        """
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.TRANSITION, entity=ENTITY, entity_id=order_id):
            require(actor, Resource.LAB_ORDER, Action.COMPLETE)

            with post_commit() as effects:
                order = _lock_order(order_id)
                previous = order.status
                target = state_machine.next_status(order.status, state_machine.SUBMIT_RESULTS)

                rows = {str(t.id): t for t in order.tests.select_for_update()}
                for idx, raw in enumerate(results or []):
                    row = rows.get(str(raw.get("test_id")))
                    if row is None:
                        raise ValidationError({"results": {idx: "Unknown test for this order."}})

                    status = raw.get("status") or LabTestStatus.COMPLETED
                    if status not in TERMINAL_TEST_STATUSES:
                        raise ValidationError({"results": {idx: "status must be 'completed' or 'cancelled'."}})

                    row.status = status
                    row.result_value = str(raw.get("value") or "")
                    row.result_unit = str(raw.get("unit") or "")
                    row.result_notes = str(raw.get("notes") or "")

                open_codes = sorted(t.code for t in rows.values() if t.status not in TERMINAL_TEST_STATUSES)
                if open_codes:
                    raise ValidationError({"results": f"Missing results for: {', '.join(open_codes)}"})

                now = clock.now()
                for row in rows.values():
                    row.updated_at = now
                LabOrderTest.objects.bulk_update(
                    list(rows.values()),
                    ["status", "result_value", "result_unit", "result_notes", "updated_at"],
                )

                order.status = target
                order.completed_at = now
                order.save(update_fields=["status", "completed_at", "updated_at"])

                report = LabReportService.create_for_order(
                    actor=actor,
                    order=order,
                    tests=sorted(rows.values(), key=lambda t: t.code),
                    summary=summary,
                )

                effects.add(
                    "audit.lab_order.completed",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.TRANSITION,
                        entity=ENTITY,
                        entity_id=order.id,
                        changes={"from": previous, "to": order.status},
                        metadata={"reportId": str(report.id)},
                    ),
                )
                effects.add(
                    "audit.lab_report.create",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.CREATE,
                        entity=REPORT_ENTITY,
                        entity_id=report.id,
                        metadata={"labOrderId": str(order.id)},
                    ),
                )
        return order

    @staticmethod
    def cancel(*, actor, order_id: UUID, reason: str = "") -> LabOrder:
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.CANCEL, entity=ENTITY, entity_id=order_id):
            require(actor, Resource.LAB_ORDER, Action.CANCEL)

            with post_commit() as effects:
                order = _lock_order(order_id)
                _ensure_owner(actor, order)

                previous = order.status
                order.status = state_machine.next_status(order.status, state_machine.CANCEL)

                now = clock.now()
                order.cancelled_at = now
                order.cancelled_by_id = actor.id
                order.cancellation_reason = reason or ""
                # payment stays linked: the money is still on record
                order.payment_verified = False
                order.save(
                    update_fields=[
                        "status",
                        "payment_verified",
                        "cancelled_at",
                        "cancelled_by_id",
                        "cancellation_reason",
                        "updated_at",
                    ]
                )
                order.tests.exclude(status__in=TERMINAL_TEST_STATUSES).update(
                    status=LabTestStatus.CANCELLED,
                    updated_at=now,
                )

                billing = lock_billing_for_order(order)
                billing_cancelled = BillingService.cancel_if_unpaid(actor=actor, billing=billing, effects=effects)

                effects.add(
                    "audit.lab_order.cancel",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.CANCEL,
                        entity=ENTITY,
                        entity_id=order.id,
                        changes={"from": previous, "to": order.status, "reason": reason or ""},
                        metadata={"billingId": str(billing.id), "billingCancelled": billing_cancelled},
                    ),
                )
                if actor.id != order.doctor_id:
                    effects.add(
                        "notify.doctor.cancelled",
                        NotificationService.deferred_users(
                            user_ids=[order.doctor_id],
                            kind=NotificationKind.LAB_ORDER_CANCELLED,
                            message=f"Lab order {order.id} was cancelled. {reason}".strip(),
                            related_entity=ENTITY,
                            related_id=order.id,
                        ),
                    )
        return order

    @staticmethod
    def update(*, actor, order_id: UUID, notes: str | None = None, priority: str | None = None) -> LabOrder:
        """
        Only notes and priority are editable; patient, doctor and tests are fixed
        at creation. A priority change re-derives the due date from created_at.
        """
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.UPDATE, entity=ENTITY, entity_id=order_id):
            require(actor, Resource.LAB_ORDER, Action.UPDATE)

            with post_commit() as effects:
                order = _lock_order(order_id)
                _ensure_owner(actor, order)

                if state_machine.is_terminal(order.status):
                    raise ConflictError(f"Lab order is {order.status} and can no longer be edited.")

                changes: dict = {}
                if notes is not None and notes != order.notes:
                    changes["notes"] = {"from": order.notes, "to": notes}
                    order.notes = notes
                if priority is not None and priority != order.priority:
                    if priority not in LabOrderPriority.values:
                        raise ValidationError({"priority": f"Unsupported priority '{priority}'."})
                    changes["priority"] = {"from": order.priority, "to": priority}
                    order.priority = priority
                    order.due_date = default_due_date(priority, order.created_at)

                if changes:
                    order.save(update_fields=["notes", "priority", "due_date", "updated_at"])
                    effects.add(
                        "audit.lab_order.update",
                        AuditRecorder.deferred(
                            actor=actor,
                            action=AuditAction.UPDATE,
                            entity=ENTITY,
                            entity_id=order.id,
                            changes=changes,
                        ),
                    )
        return order

    @staticmethod
    def transition(
        *,
        actor,
        order_id: UUID,
        status: str,
        results: list[dict] | None = None,
        reason: str = "",
        summary: str = "",
    ) -> LabOrder:
        """
        Status-change entry point used by PATCH /lab-orders/{id}/status.
        """
        if status == LabOrderStatus.IN_PROGRESS:
            return LabOrderService.begin_processing(actor=actor, order_id=order_id)
        if status == LabOrderStatus.COMPLETED:
            return LabOrderService.submit_results(actor=actor, order_id=order_id, results=results or [], summary=summary)
        if status == LabOrderStatus.CANCELLED:
            return LabOrderService.cancel(actor=actor, order_id=order_id, reason=reason)

        with AuditRecorder.on_failure(actor=actor, action=AuditAction.TRANSITION, entity=ENTITY, entity_id=order_id):
            order = LabOrder.objects.filter(id=order_id).only("status").first()
            if order is None:
                raise NotFound(f"Lab order {order_id} not found.")

            if status == LabOrderStatus.PAID and not state_machine.is_terminal(order.status):
                raise ValidationError({"status": "Use the payment endpoint to mark a lab order paid."})
            raise InvalidStateTransition(current=order.status, requested=status)
