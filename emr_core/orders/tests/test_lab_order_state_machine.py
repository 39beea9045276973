# emr_core/orders/tests/test_lab_order_state_machine.py
import pytest

from emr_core.common.api.exceptions import InvalidStateTransition
from emr_core.orders import state_machine as sm
from emr_core.orders.models import LabOrderStatus as S


def test_happy_path_transitions():
    assert sm.next_status(S.PENDING_PAYMENT, sm.PAY) == S.PAID
    assert sm.next_status(S.PAID, sm.BEGIN_PROCESSING) == S.IN_PROGRESS
    assert sm.next_status(S.IN_PROGRESS, sm.SUBMIT_RESULTS) == S.COMPLETED


@pytest.mark.parametrize("current", [S.PENDING_PAYMENT, S.PAID, S.IN_PROGRESS])
def test_cancel_allowed_from_every_non_terminal(current):
    assert sm.next_status(current, sm.CANCEL) == S.CANCELLED


@pytest.mark.parametrize(
    "current,event",
    [
        (S.PENDING_PAYMENT, sm.BEGIN_PROCESSING),
        (S.PENDING_PAYMENT, sm.SUBMIT_RESULTS),
        (S.PAID, sm.PAY),
        (S.PAID, sm.SUBMIT_RESULTS),
        (S.IN_PROGRESS, sm.PAY),
        (S.COMPLETED, sm.CANCEL),
        (S.COMPLETED, sm.PAY),
        (S.CANCELLED, sm.PAY),
        (S.CANCELLED, sm.CANCEL),
    ],
)
def test_disallowed_transitions_raise(current, event):
    with pytest.raises(InvalidStateTransition) as ei:
        sm.next_status(current, event)

    assert ei.value.current == current
    assert ei.value.requested == sm.EVENT_TARGET[event]
    assert ei.value.status_code == 409


def test_terminal_states():
    assert sm.is_terminal(S.COMPLETED)
    assert sm.is_terminal(S.CANCELLED)
    assert not sm.is_terminal(S.PAID)


def test_event_for_target():
    assert sm.event_for_target(S.IN_PROGRESS) == sm.BEGIN_PROCESSING
    assert sm.event_for_target(S.PENDING_PAYMENT) is None


def test_valid_paths():
    assert sm.is_valid_path([S.PENDING_PAYMENT, S.PAID, S.IN_PROGRESS, S.COMPLETED])
    assert sm.is_valid_path([S.PENDING_PAYMENT, S.CANCELLED])
    assert not sm.is_valid_path([S.PENDING_PAYMENT, S.IN_PROGRESS])
    assert not sm.is_valid_path([S.PAID, S.IN_PROGRESS])
    assert not sm.is_valid_path([])
