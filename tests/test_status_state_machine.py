from datetime import datetime, timezone
from itertools import product

import pytest

from status_service.statuses.errors import StatusValidationError
from status_service.statuses.models import HistoryEntry, StatusRecord
from status_service.statuses.state import StatusStateMachine, TicketStatus, parse_status


def _record(status: TicketStatus, *, is_active: bool = True) -> StatusRecord:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return StatusRecord(
        ticket_id="T-1",
        current_status=status,
        history=[HistoryEntry(status=status, timestamp=now, updated_by="alice")],
        last_updated=now,
        is_active=is_active,
    )


ACTIVE_STATUSES = (TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED)

EXPECTED_TRANSITIONS = {
    TicketStatus.OPEN: {TicketStatus.IN_PROGRESS, TicketStatus.CLOSED},
    TicketStatus.IN_PROGRESS: {TicketStatus.RESOLVED, TicketStatus.CLOSED},
    TicketStatus.RESOLVED: {TicketStatus.CLOSED, TicketStatus.IN_PROGRESS},
    TicketStatus.CLOSED: set(),
}


@pytest.mark.parametrize("current, target", list(product(ACTIVE_STATUSES, ACTIVE_STATUSES)))
def test_transitions_between_active_statuses_follow_the_table(current, target):
    machine = StatusStateMachine()
    expected = target in EXPECTED_TRANSITIONS[current]

    assert machine.can_transition(current, target) is expected
    assert machine.is_valid_transition(_record(current), target) is expected
    assert (target in machine.allowed_targets(current)) is expected


@pytest.mark.parametrize("status", ACTIVE_STATUSES)
def test_deletion_is_allowed_from_every_active_state(status):
    machine = StatusStateMachine()
    assert machine.is_valid_transition(_record(status), TicketStatus.DELETED)
    assert TicketStatus.DELETED in machine.allowed_targets(status)


def test_inactive_record_accepts_nothing():
    machine = StatusStateMachine()
    record = _record(TicketStatus.DELETED, is_active=False)

    for target in TicketStatus:
        assert not machine.is_valid_transition(record, target)
    assert machine.allowed_targets(TicketStatus.DELETED) == ()


def test_custom_transition_table():
    machine = StatusStateMachine({TicketStatus.OPEN: (TicketStatus.RESOLVED,)})
    assert machine.can_transition(TicketStatus.OPEN, TicketStatus.RESOLVED)
    assert not machine.can_transition(TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("open", TicketStatus.OPEN),
        ("IN_PROGRESS", TicketStatus.IN_PROGRESS),
        ("in-progress", TicketStatus.IN_PROGRESS),
        (" In Progress ", TicketStatus.IN_PROGRESS),
        (TicketStatus.CLOSED, TicketStatus.CLOSED),
    ],
)
def test_parse_status_normalizes_input(raw, expected):
    assert parse_status(raw) is expected


@pytest.mark.parametrize("raw", [None, "", "   ", "pending", 3])
def test_parse_status_rejects_unknown_values(raw):
    with pytest.raises(StatusValidationError):
        parse_status(raw)


def test_status_renders_as_its_value():
    assert str(TicketStatus.IN_PROGRESS) == "in_progress"
    assert f"{TicketStatus.CLOSED}" == "closed"


def test_empty_transition_table_only_allows_deletion():
    machine = StatusStateMachine({})

    assert not machine.can_transition(TicketStatus.OPEN, TicketStatus.IN_PROGRESS)
    assert machine.allowed_targets(TicketStatus.OPEN) == (TicketStatus.DELETED,)
    assert machine.is_valid_transition(_record(TicketStatus.OPEN), TicketStatus.DELETED)
