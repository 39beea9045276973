# emr_core/billing/selectors.py
from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from django.db.models import Count, QuerySet, Sum
from rest_framework.exceptions import NotFound, PermissionDenied

from emr_core.audit.models import AuditAction
from emr_core.audit.services import AuditRecorder
from emr_core.billing import reconciliation
from emr_core.billing.models import Billing, Payment, PaymentStatus
from emr_core.common import clock
from emr_core.common.permissions import Action, Resource, Role, require

logger = logging.getLogger(__name__)

_READ_ALL = frozenset({Role.ADMIN, Role.RECEPTIONIST})


# -------------------------------------------------------------------
# Billings
# -------------------------------------------------------------------

def scope_billings(qs: QuerySet[Billing], *, actor) -> QuerySet[Billing]:
    if actor.role in _READ_ALL:
        return qs
    if actor.role == Role.DOCTOR:
        return qs.filter(related_lab_order__doctor_id=actor.id)
    if actor.role == Role.PATIENT:
        return qs.filter(patient__user_id=actor.id)
    return qs.none()


def list_billings(
    *,
    actor,
    patient_id: UUID | None = None,
    status: str | None = None,
    lab_order_id: UUID | None = None,
) -> QuerySet[Billing]:
    require(actor, Resource.BILLING, Action.READ)

    qs = scope_billings(Billing.objects.select_related("patient").prefetch_related("items"), actor=actor)

    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if status:
        qs = qs.filter(status=status)
    if lab_order_id:
        qs = qs.filter(related_lab_order_id=lab_order_id)

    return qs.order_by("-created_at")


def get_billing_for_actor(*, actor, billing_id: UUID) -> Billing:
    with AuditRecorder.on_failure(actor=actor, action=AuditAction.READ, entity="billing", entity_id=billing_id):
        require(actor, Resource.BILLING, Action.READ)

        billing = Billing.objects.filter(id=billing_id).first()
        if billing is None:
            raise NotFound(f"Billing {billing_id} not found.")
        if not scope_billings(Billing.objects.filter(id=billing_id), actor=actor).exists():
            logger.warning("Denied billing read: billing=%s actor=%s role=%s", billing_id, actor.id, actor.role)
            raise PermissionDenied("You do not have access to this billing.")
    return billing


# -------------------------------------------------------------------
# Payments
# -------------------------------------------------------------------

def scope_payments(qs: QuerySet[Payment], *, actor) -> QuerySet[Payment]:
    if actor.role in _READ_ALL:
        return qs
    if actor.role == Role.DOCTOR:
        return qs.filter(billing__related_lab_order__doctor_id=actor.id)
    if actor.role == Role.PATIENT:
        return qs.filter(patient__user_id=actor.id)
    return qs.none()


def list_payments(
    *,
    actor,
    billing_id: UUID | None = None,
    patient_id: UUID | None = None,
    method: str | None = None,
    status: str | None = None,
) -> QuerySet[Payment]:
    require(actor, Resource.PAYMENT, Action.READ)

    qs = scope_payments(Payment.objects.select_related("billing"), actor=actor)

    if billing_id:
        qs = qs.filter(billing_id=billing_id)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if method:
        qs = qs.filter(method=method)
    if status:
        qs = qs.filter(status=status)

    return qs.order_by("-payment_date")


def get_payment_for_actor(*, actor, payment_id: UUID) -> Payment:
    with AuditRecorder.on_failure(actor=actor, action=AuditAction.READ, entity="payment", entity_id=payment_id):
        require(actor, Resource.PAYMENT, Action.READ)

        payment = Payment.objects.select_related("billing").filter(id=payment_id).first()
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found.")
        if not scope_payments(Payment.objects.filter(id=payment_id), actor=actor).exists():
            logger.warning("Denied payment read: payment=%s actor=%s role=%s", payment_id, actor.id, actor.role)
            raise PermissionDenied("You do not have access to this payment.")
    return payment


def payment_stats(*, actor, days: int = 30) -> dict:
    """
    Completed payment totals over the trailing `days`, overall and by method.
    """
    require(actor, Resource.PAYMENT, Action.REPORT)

    since = clock.now() - timedelta(days=days)
    qs = Payment.objects.filter(status=PaymentStatus.COMPLETED, payment_date__gte=since)

    overall = qs.aggregate(count=Count("id"), total=Sum("amount"))
    by_method = qs.values("method").annotate(count=Count("id"), total=Sum("amount")).order_by("method")

    return {
        "days": days,
        "since": since.isoformat(),
        "count": overall["count"] or 0,
        "total": str(reconciliation.money(overall["total"] or reconciliation.ZERO)),
        "by_method": [
            {
                "method": row["method"],
                "count": row["count"],
                "total": str(reconciliation.money(row["total"] or reconciliation.ZERO)),
            }
            for row in by_method
        ],
    }
