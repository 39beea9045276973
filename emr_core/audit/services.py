# emr_core/audit/services.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator

from django.db import DatabaseError, transaction
from rest_framework.exceptions import APIException, NotAuthenticated, PermissionDenied

from emr_core.audit.models import AuditOutcome
from emr_core.audit.sinks import get_sink
from emr_core.common import clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    action: str
    entity: str
    entity_id: str | None
    actor_id: int | None
    actor_role: str | None
    timestamp: datetime
    outcome: str = AuditOutcome.SUCCESS
    changes: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditRecorder:
    """
    Central audit writer.

    record() never raises: a sink failure is logged locally and the triggering
    operation carries on.
    """

    @staticmethod
    def build(
        *,
        actor,
        action: str,
        entity: str,
        entity_id=None,
        outcome: str = AuditOutcome.SUCCESS,
        changes: dict | None = None,
        metadata: dict | None = None,
    ) -> AuditRecord:
        return AuditRecord(
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor_id=getattr(actor, "id", None),
            actor_role=getattr(actor, "role", None),
            timestamp=clock.now(),
            outcome=outcome,
            changes=changes or {},
            metadata=metadata or {},
        )

    @staticmethod
    def record(record: AuditRecord) -> None:
        try:
            with transaction.atomic():
                get_sink().write(record)
        except Exception:
            logger.exception(
                "Audit write failed: %s %s:%s",
                record.action,
                record.entity,
                record.entity_id,
            )

    @staticmethod
    def log(**kwargs) -> None:
        AuditRecorder.record(AuditRecorder.build(**kwargs))

    @staticmethod
    def deferred(**kwargs) -> Callable[[], None]:
        """
        Build the record now (timestamp = when the change happened) and return
        a callable that writes it. Meant for Effects.add().
        """
        rec = AuditRecorder.build(**kwargs)
        return lambda: AuditRecorder.record(rec)

    @staticmethod
    def log_failure(*, actor, action: str, entity: str, entity_id=None, exc: Exception, metadata: dict | None = None) -> None:
        """
        Record an attempt that did not go through: denied (forbidden), rejected
        (invalid transition, conflict) or failed (storage or server error).
        """
        if isinstance(exc, (PermissionDenied, NotAuthenticated)):
            outcome = AuditOutcome.DENIED
        elif isinstance(exc, DatabaseError) or getattr(exc, "status_code", 400) >= 500:
            outcome = AuditOutcome.FAILED
        else:
            outcome = AuditOutcome.REJECTED
        meta = dict(metadata or {})
        meta["error"] = type(exc).__name__
        AuditRecorder.log(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id,
            outcome=outcome,
            metadata=meta,
            changes={"errorMessage": str(getattr(exc, "detail", exc))},
        )

    @staticmethod
    @contextmanager
    def on_failure(*, actor, action: str, entity: str, entity_id=None, metadata: dict | None = None) -> Iterator[None]:
        """
        Wrap a service call so that a rejected attempt still leaves an audit
        trail. The error is re-raised unchanged.

        Place it outside the primary transaction block: by the time the error
        reaches here the writes have rolled back, so the audit row survives.
        """
        try:
            yield
        except (APIException, DatabaseError) as exc:
            AuditRecorder.log_failure(
                actor=actor,
                action=action,
                entity=entity,
                entity_id=entity_id,
                exc=exc,
                metadata=metadata,
            )
            raise
