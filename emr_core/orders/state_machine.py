# emr_core/orders/state_machine.py
"""
Lab order lifecycle as a lookup table. No database access.

    pending-payment --pay--> paid --begin_processing--> in-progress --submit_results--> completed
    any non-terminal --cancel--> cancelled
"""
from __future__ import annotations

from typing import Iterable

from emr_core.common.api.exceptions import InvalidStateTransition
from emr_core.orders.models import LabOrderStatus

PAY = "pay"
BEGIN_PROCESSING = "begin_processing"
SUBMIT_RESULTS = "submit_results"
CANCEL = "cancel"

EVENT_TARGET: dict[str, str] = {
    PAY: LabOrderStatus.PAID,
    BEGIN_PROCESSING: LabOrderStatus.IN_PROGRESS,
    SUBMIT_RESULTS: LabOrderStatus.COMPLETED,
    CANCEL: LabOrderStatus.CANCELLED,
}

TRANSITIONS: dict[tuple[str, str], str] = {
    (LabOrderStatus.PENDING_PAYMENT, PAY): LabOrderStatus.PAID,
    (LabOrderStatus.PAID, BEGIN_PROCESSING): LabOrderStatus.IN_PROGRESS,
    (LabOrderStatus.IN_PROGRESS, SUBMIT_RESULTS): LabOrderStatus.COMPLETED,
    (LabOrderStatus.PENDING_PAYMENT, CANCEL): LabOrderStatus.CANCELLED,
    (LabOrderStatus.PAID, CANCEL): LabOrderStatus.CANCELLED,
    (LabOrderStatus.IN_PROGRESS, CANCEL): LabOrderStatus.CANCELLED,
}

TERMINAL = frozenset({LabOrderStatus.COMPLETED, LabOrderStatus.CANCELLED})


def next_status(current: str, event: str) -> str:
    """
    Target status for `event` from `current`, or InvalidStateTransition.
    """
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidStateTransition(current=current, requested=EVENT_TARGET.get(event, event))
    return target


def event_for_target(target: str) -> str | None:
    for event, status in EVENT_TARGET.items():
        if status == target:
            return event
    return None


def is_terminal(status: str) -> bool:
    return status in TERMINAL


def is_valid_path(statuses: Iterable[str]) -> bool:
    """
    True when consecutive statuses are each one allowed transition apart.
    """
    seq = list(statuses)
    if not seq or seq[0] != LabOrderStatus.PENDING_PAYMENT:
        return False
    allowed = {(src, dst) for (src, _event), dst in TRANSITIONS.items()}
    return all((a, b) in allowed for a, b in zip(seq, seq[1:]))
