# emr_core/orders/selectors.py
from __future__ import annotations

import logging
from uuid import UUID

from django.db.models import QuerySet
from rest_framework.exceptions import NotFound, PermissionDenied

from emr_core.audit.models import AuditAction
from emr_core.audit.services import AuditRecorder
from emr_core.billing import reconciliation
from emr_core.common.permissions import Action, Resource, Role, require
from emr_core.orders.models import LabOrder

logger = logging.getLogger(__name__)

ENTITY = "labOrder"

# roles that read every lab order
_READ_ALL = frozenset({Role.ADMIN, Role.LAB_ASSISTANT, Role.RECEPTIONIST})


def _base_qs() -> QuerySet[LabOrder]:
    return LabOrder.objects.select_related("patient", "doctor", "billing", "payment").prefetch_related("tests")


def scope_lab_orders(qs: QuerySet[LabOrder], *, actor) -> QuerySet[LabOrder]:
    """
    Row-level read scope. List and single-record reads share this rule.
    """
    if actor.role in _READ_ALL:
        return qs
    if actor.role == Role.DOCTOR:
        return qs.filter(doctor_id=actor.id)
    if actor.role == Role.PATIENT:
        return qs.filter(patient__user_id=actor.id)
    return qs.none()


def can_view_lab_order(*, actor, order: LabOrder) -> bool:
    if actor.role in _READ_ALL:
        return True
    if actor.role == Role.DOCTOR:
        return order.doctor_id == actor.id
    if actor.role == Role.PATIENT:
        return order.patient.user_id == actor.id
    return False


def list_lab_orders(
    *,
    actor,
    status: str | None = None,
    patient_id: UUID | None = None,
    doctor_id: int | None = None,
    priority: str | None = None,
    payment_verified: bool | None = None,
) -> QuerySet[LabOrder]:
    require(actor, Resource.LAB_ORDER, Action.READ)

    qs = scope_lab_orders(_base_qs(), actor=actor)

    if status:
        qs = qs.filter(status=status)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if doctor_id is not None:
        qs = qs.filter(doctor_id=doctor_id)
    if priority:
        qs = qs.filter(priority=priority)
    if payment_verified is not None:
        qs = qs.filter(payment_verified=payment_verified)

    return qs.order_by("-created_at")


def get_lab_order_for_actor(*, actor, order_id: UUID, audit: bool = True) -> LabOrder:
    """
    NotFound when the id does not resolve, PermissionDenied when it resolves
    outside the actor's scope. Both outcomes and successful reads are audited.
    """
    with AuditRecorder.on_failure(actor=actor, action=AuditAction.READ, entity=ENTITY, entity_id=order_id):
        require(actor, Resource.LAB_ORDER, Action.READ)

        order = _base_qs().filter(id=order_id).first()
        if order is None:
            raise NotFound(f"Lab order {order_id} not found.")

        if not can_view_lab_order(actor=actor, order=order):
            logger.warning("Denied lab order read: order=%s actor=%s role=%s", order_id, actor.id, actor.role)
            raise PermissionDenied("You do not have access to this lab order.")

    if audit:
        AuditRecorder.log(actor=actor, action=AuditAction.READ, entity=ENTITY, entity_id=order.id)
    return order


def payment_status_summary(order: LabOrder) -> dict:
    billing = getattr(order, "billing", None)
    if billing is None:
        return {
            "lab_order_id": str(order.id),
            "paid": False,
            "payment_verified": order.payment_verified,
            "billing_id": None,
            "billing_status": None,
            "total": None,
            "amount_paid": None,
            "balance_due": None,
            "receipt_number": None,
        }

    return {
        "lab_order_id": str(order.id),
        "paid": order.payment_verified,
        "payment_verified": order.payment_verified,
        "billing_id": str(billing.id),
        "billing_status": billing.status,
        "total": str(reconciliation.money(billing.total)),
        "amount_paid": str(reconciliation.money(billing.amount_paid)),
        "balance_due": str(reconciliation.money(billing.balance_due)),
        "receipt_number": order.payment.receipt_number if order.payment_id else None,
    }
