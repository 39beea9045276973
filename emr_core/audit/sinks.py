# emr_core/audit/sinks.py
from __future__ import annotations

import threading

from django.conf import settings
from django.utils.module_loading import import_string

from emr_core.audit.models import AuditEvent

DEFAULT_SINK = "emr_core.audit.sinks.DatabaseAuditSink"


class AuditSink:
    def write(self, record) -> None:
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    def write(self, record) -> None:
        AuditEvent.objects.create(
            action=record.action,
            entity=record.entity,
            entity_id=record.entity_id or "",
            actor_id=record.actor_id,
            actor_role=record.actor_role or "",
            outcome=record.outcome,
            changes=record.changes,
            metadata=record.metadata,
            occurred_at=record.timestamp,
        )


class InMemoryAuditSink(AuditSink):
    """
    Process-local sink for tests and local runs. Records are kept in write order.
    """
    _lock = threading.Lock()
    records: list = []

    def write(self, record) -> None:
        with self._lock:
            InMemoryAuditSink.records.append(record)

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls.records.clear()


def get_sink() -> AuditSink:
    path = getattr(settings, "EMR_AUDIT_SINK", None) or DEFAULT_SINK
    return import_string(path)()
