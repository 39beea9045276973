# emr_core/billing/services.py
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from uuid import UUID

from django.apps import apps
from django.db import IntegrityError
from rest_framework.exceptions import NotFound, ValidationError

from emr_core.audit.models import AuditAction
from emr_core.audit.services import AuditRecorder
from emr_core.billing import reconciliation
from emr_core.billing.models import (
    Billing,
    BillingItem,
    BillingStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ReceiptSequence,
)
from emr_core.common import clock
from emr_core.common.api.exceptions import AlreadyPaid, ConflictError, InvalidAmount
from emr_core.common.effects import Effects, post_commit
from emr_core.common.permissions import Action, Resource, require
from emr_core.patients.models import Patient
from emr_core.patients.selectors import get_patient

logger = logging.getLogger(__name__)

BILLING = "billing"
PAYMENT = "payment"
RECEIPT_SEQUENCE = "receipt"


def _decimal(value, field_name: str) -> Decimal:
    try:
        return reconciliation.money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError({field_name: "Invalid decimal value."})


def _lock_billing(billing_id: UUID) -> Billing:
    try:
        return Billing.objects.select_for_update().get(id=billing_id)
    except Billing.DoesNotExist:
        raise NotFound(f"Billing {billing_id} not found.")


def lock_billing_for_order(order) -> Billing:
    """
    Row-lock the order's billing. Callers lock the order first, then the
    billing, so concurrent payment and cancel never deadlock.
    """
    billing = Billing.objects.select_for_update().filter(related_lab_order=order).first()
    if billing is None:
        raise NotFound(f"No billing exists for lab order {order.id}.")
    return billing


def next_receipt_number() -> str:
    """
    RCT-00000001, RCT-00000002, ... Must run inside a transaction: the counter
    row stays locked until commit, so numbers follow creation order.
    """
    seq, _ = ReceiptSequence.objects.select_for_update().get_or_create(key=RECEIPT_SEQUENCE)
    seq.last_value += 1
    seq.save(update_fields=["last_value"])
    return f"RCT-{seq.last_value:08d}"


class BillingService:
    @staticmethod
    def _normalize_items(items: list[dict]) -> list[dict]:
        """
        Validates each item and checks a client-supplied `total` against
        unit_price * quantity.
        """
        if not items:
            raise ValidationError({"items": "At least one item is required."})

        out = []
        for idx, raw in enumerate(items):
            description = (raw.get("description") or "").strip()
            if not description:
                raise ValidationError({"items": {idx: "description is required."}})

            try:
                quantity = int(raw.get("quantity", 1))
            except (TypeError, ValueError):
                raise ValidationError({"items": {idx: "quantity must be an integer."}})
            if quantity < 1:
                raise ValidationError({"items": {idx: "quantity must be >= 1."}})

            unit_price = _decimal(raw.get("unit_price", "0.00"), "unit_price")
            if unit_price < reconciliation.ZERO:
                raise InvalidAmount({"items": {idx: "unit_price must be >= 0."}})

            total = reconciliation.line_total(unit_price, quantity)
            claimed = raw.get("total")
            if claimed is not None and not reconciliation.matches(_decimal(claimed, "total"), total):
                raise InvalidAmount({"items": {idx: f"total {claimed} != unit_price * quantity ({total})."}})

            out.append(
                {
                    "description": description,
                    "code": raw.get("code") or "",
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "total": total,
                }
            )
        return out

    @staticmethod
    def _build(
        *,
        actor,
        patient: Patient,
        items: list[dict],
        discount=Decimal("0.00"),
        tax=Decimal("0.00"),
        related_lab_order=None,
        claimed_subtotal=None,
        claimed_total=None,
        notes: str = "",
    ) -> Billing:
        """
        Validates arithmetic and persists Billing + items. Caller owns the transaction.
        """
        lines = BillingService._normalize_items(items)
        totals = reconciliation.compute_totals(
            (line["total"] for line in lines),
            discount=_decimal(discount, "discount"),
            tax=_decimal(tax, "tax"),
        )

        if claimed_subtotal is not None and not reconciliation.matches(claimed_subtotal, totals.subtotal):
            raise InvalidAmount({"subtotal": f"subtotal {claimed_subtotal} != sum of items ({totals.subtotal})."})
        if claimed_total is not None and not reconciliation.matches(claimed_total, totals.total):
            raise InvalidAmount({"total": f"total {claimed_total} != subtotal - discount + tax ({totals.total})."})

        billing = Billing.objects.create(
            patient=patient,
            related_lab_order=related_lab_order,
            status=BillingStatus.PENDING,
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            total=totals.total,
            amount_paid=reconciliation.ZERO,
            balance_due=totals.total,
            created_by_id=actor.id,
            created_by_role=actor.role,
            notes=notes or "",
        )
        BillingItem.objects.bulk_create([BillingItem(billing=billing, **line) for line in lines])
        return billing

    @staticmethod
    def _recalc_totals(billing: Billing) -> None:
        totals = reconciliation.compute_totals(
            billing.items.values_list("total", flat=True),
            discount=billing.discount,
            tax=billing.tax,
        )
        billing.subtotal = totals.subtotal
        billing.total = totals.total
        billing.balance_due = reconciliation.balance_due(billing.total, billing.amount_paid)
        billing.save(update_fields=["subtotal", "total", "balance_due", "updated_at"])

    @staticmethod
    def _ensure_editable(billing: Billing) -> None:
        if billing.status != BillingStatus.PENDING:
            raise ConflictError(f"Billing is {billing.status}; only pending billings can be edited.")

    @staticmethod
    def create_billing(
        *,
        actor,
        patient_id: UUID,
        items: list[dict],
        discount=Decimal("0.00"),
        tax=Decimal("0.00"),
        related_lab_order_id: UUID | None = None,
        subtotal=None,
        total=None,
        notes: str = "",
    ) -> Billing:
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.CREATE, entity=BILLING):
            require(actor, Resource.BILLING, Action.CREATE)

            with post_commit() as effects:
                patient = get_patient(patient_id=patient_id)

                order = None
                if related_lab_order_id:
                    LabOrder = apps.get_model("orders", "LabOrder")
                    order = LabOrder.objects.select_for_update().filter(id=related_lab_order_id).first()
                    if order is None:
                        raise NotFound(f"Lab order {related_lab_order_id} not found.")
                    if order.patient_id != patient.id:
                        raise ValidationError({"related_lab_order_id": "Lab order belongs to another patient."})
                    if Billing.objects.filter(related_lab_order=order).exists():
                        raise ConflictError("A billing already exists for this lab order.")

                try:
                    billing = BillingService._build(
                        actor=actor,
                        patient=patient,
                        items=items,
                        discount=discount,
                        tax=tax,
                        related_lab_order=order,
                        claimed_subtotal=subtotal,
                        claimed_total=total,
                        notes=notes,
                    )
                except IntegrityError:
                    raise ConflictError("A billing already exists for this lab order.")

                effects.add(
                    "audit.billing.create",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.CREATE,
                        entity=BILLING,
                        entity_id=billing.id,
                        changes={"total": str(billing.total), "items": len(items)},
                        metadata={"labOrderId": str(order.id) if order else None},
                    ),
                )
        return billing

    @staticmethod
    def derive_from_lab_order(*, actor, order, tests, effects: Effects) -> Billing:
        """
        Billing for a freshly created lab order, one item per ordered test at
        its snapshot price. Runs inside the order's transaction; the role check
        is the lab order's own.
        """
        if Billing.objects.filter(related_lab_order=order).exists():
            raise ConflictError("A billing already exists for this lab order.")

        billing = BillingService._build(
            actor=actor,
            patient=order.patient,
            items=[
                {
                    "description": t.name,
                    "code": t.code,
                    "quantity": t.quantity,
                    "unit_price": t.unit_price,
                }
                for t in tests
            ],
            related_lab_order=order,
        )
        effects.add(
            "audit.billing.derive",
            AuditRecorder.deferred(
                actor=actor,
                action=AuditAction.CREATE,
                entity=BILLING,
                entity_id=billing.id,
                changes={"subtotal": str(billing.subtotal), "total": str(billing.total)},
                metadata={"labOrderId": str(order.id)},
            ),
        )
        return billing

    @staticmethod
    def add_item(
        *,
        actor,
        billing_id: UUID,
        description: str,
        quantity: int = 1,
        unit_price=Decimal("0.00"),
        code: str = "",
        total=None,
    ) -> Billing:
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.UPDATE, entity=BILLING, entity_id=billing_id):
            require(actor, Resource.BILLING, Action.UPDATE)

            with post_commit() as effects:
                billing = _lock_billing(billing_id)
                BillingService._ensure_editable(billing)

                (line,) = BillingService._normalize_items(
                    [{"description": description, "quantity": quantity, "unit_price": unit_price, "code": code, "total": total}]
                )
                BillingItem.objects.create(billing=billing, **line)
                BillingService._recalc_totals(billing)

                effects.add(
                    "audit.billing.add_item",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.UPDATE,
                        entity=BILLING,
                        entity_id=billing.id,
                        changes={"addedItem": line["description"], "total": str(billing.total)},
                    ),
                )
        return billing

    @staticmethod
    def set_adjustments(*, actor, billing_id: UUID, discount=None, tax=None) -> Billing:
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.UPDATE, entity=BILLING, entity_id=billing_id):
            require(actor, Resource.BILLING, Action.UPDATE)

            with post_commit() as effects:
                billing = _lock_billing(billing_id)
                BillingService._ensure_editable(billing)

                if discount is not None:
                    billing.discount = _decimal(discount, "discount")
                if tax is not None:
                    billing.tax = _decimal(tax, "tax")
                billing.save(update_fields=["discount", "tax", "updated_at"])
                BillingService._recalc_totals(billing)

                effects.add(
                    "audit.billing.adjust",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.UPDATE,
                        entity=BILLING,
                        entity_id=billing.id,
                        changes={"discount": str(billing.discount), "tax": str(billing.tax), "total": str(billing.total)},
                    ),
                )
        return billing

    @staticmethod
    def _has_completed_payment(billing: Billing) -> bool:
        return billing.payments.filter(status=PaymentStatus.COMPLETED).exists()

    @staticmethod
    def cancel_if_unpaid(*, actor, billing: Billing, effects: Effects) -> bool:
        """
        Used by lab order cancellation. Billing must already be locked.
        Returns True when the billing was cancelled.
        """
        if billing.status == BillingStatus.CANCELLED or BillingService._has_completed_payment(billing):
            return False

        billing.status = BillingStatus.CANCELLED
        billing.cancelled_at = clock.now()
        billing.save(update_fields=["status", "cancelled_at", "updated_at"])
        effects.add(
            "audit.billing.cancel",
            AuditRecorder.deferred(actor=actor, action=AuditAction.CANCEL, entity=BILLING, entity_id=billing.id),
        )
        return True

    @staticmethod
    def cancel(*, actor, billing_id: UUID, reason: str = "") -> Billing:
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.CANCEL, entity=BILLING, entity_id=billing_id):
            require(actor, Resource.BILLING, Action.CANCEL)

            with post_commit() as effects:
                billing = _lock_billing(billing_id)

                if billing.related_lab_order_id:
                    raise ConflictError("Billing belongs to a lab order; cancel the lab order instead.")
                if billing.status == BillingStatus.CANCELLED:
                    raise ConflictError("Billing is already cancelled.")
                if BillingService._has_completed_payment(billing):
                    raise ConflictError("Billing has completed payments and cannot be cancelled.")

                if reason:
                    billing.notes = (billing.notes + "\n" + f"CANCELLED: {reason}").strip()
                    billing.save(update_fields=["notes", "updated_at"])
                BillingService.cancel_if_unpaid(actor=actor, billing=billing, effects=effects)
        return billing


class PaymentService:
    @staticmethod
    def reconcile(billing: Billing) -> Billing:
        """
        Recompute amount_paid / balance_due / status from the completed payments
        in the store. Idempotent.
        """
        completed = list(
            Payment.objects.filter(billing=billing, status=PaymentStatus.COMPLETED).values_list("amount", flat=True)
        )
        status = reconciliation.reconcile_status(
            billing.total,
            completed,
            cancelled=billing.status == BillingStatus.CANCELLED,
        )

        billing.amount_paid = reconciliation.money(sum(completed, reconciliation.ZERO))
        billing.balance_due = reconciliation.balance_due(billing.total, billing.amount_paid)
        if status == BillingStatus.PAID and billing.paid_at is None:
            billing.paid_at = clock.now()
        billing.status = status

        billing.save(update_fields=["status", "amount_paid", "balance_due", "paid_at", "updated_at"])
        return billing

    @staticmethod
    def apply_payment(
        *,
        actor,
        billing: Billing,
        amount,
        method: str = PaymentMethod.CASH,
        reference: str = "",
    ) -> Payment:
        """
        Insert a completed payment and reconcile. Billing must already be locked
        (select_for_update) by the caller for the whole sequence.
        """
        if billing.status == BillingStatus.CANCELLED:
            raise ConflictError("Cannot record payment for a cancelled billing.")
        if billing.status == BillingStatus.PAID:
            raise AlreadyPaid()

        amount = _decimal(amount, "amount")
        if amount <= reconciliation.ZERO:
            raise InvalidAmount({"amount": "Payment amount must be > 0."})
        if method not in PaymentMethod.values:
            raise ValidationError({"method": f"Unsupported payment method '{method}'."})

        payment = Payment.objects.create(
            billing=billing,
            patient_id=billing.patient_id,
            amount=amount,
            method=method,
            status=PaymentStatus.COMPLETED,
            receipt_number=next_receipt_number(),
            reference=reference or "",
            processed_by_id=actor.id,
            processed_by_role=actor.role,
            payment_date=clock.now(),
        )
        PaymentService.reconcile(billing)

        if billing.amount_paid > billing.total:
            logger.info("Overpayment on billing %s: paid=%s total=%s", billing.id, billing.amount_paid, billing.total)
        return payment

    @staticmethod
    def record_payment(
        *,
        actor,
        billing_id: UUID,
        amount,
        method: str = PaymentMethod.CASH,
        reference: str = "",
    ) -> Payment:
        """
        Payment against a standalone billing. Billings derived from a lab order
        are settled through the lab order so the order status stays in sync.
        """
        with AuditRecorder.on_failure(actor=actor, action=AuditAction.PAYMENT, entity=BILLING, entity_id=billing_id):
            require(actor, Resource.PAYMENT, Action.CREATE)
            require(actor, Resource.BILLING, Action.PAY)

            with post_commit() as effects:
                billing = _lock_billing(billing_id)
                if billing.related_lab_order_id:
                    raise ConflictError("Billing belongs to a lab order; record the payment on the lab order.")

                payment = PaymentService.apply_payment(
                    actor=actor,
                    billing=billing,
                    amount=amount,
                    method=method,
                    reference=reference,
                )
                effects.add("audit.payment", PaymentService.audit_payment(actor=actor, payment=payment, billing=billing))
        return payment

    @staticmethod
    def audit_payment(*, actor, payment: Payment, billing: Billing):
        return AuditRecorder.deferred(
            actor=actor,
            action=AuditAction.PAYMENT,
            entity=PAYMENT,
            entity_id=payment.id,
            changes={
                "amount": str(payment.amount),
                "method": payment.method,
                "receiptNumber": payment.receipt_number,
                "billingStatus": billing.status,
            },
            metadata={"billingId": str(billing.id)},
        )
