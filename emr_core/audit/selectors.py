# emr_core/audit/selectors.py
from __future__ import annotations

from django.db.models import QuerySet

from emr_core.audit.models import AuditEvent


def list_audit_events(
    *,
    entity: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    actor_id: int | None = None,
    outcome: str | None = None,
) -> QuerySet[AuditEvent]:
    qs = AuditEvent.objects.all()

    if entity:
        qs = qs.filter(entity=entity)
    if entity_id:
        qs = qs.filter(entity_id=str(entity_id))
    if action:
        qs = qs.filter(action=action)
    if actor_id is not None:
        qs = qs.filter(actor_id=actor_id)
    if outcome:
        qs = qs.filter(outcome=outcome)

    return qs.order_by("-id")
