from datetime import datetime, timedelta, timezone

import pytest

from status_service.statuses.dedup import DEFAULT_DUPLICATE_WINDOW, DuplicateFilter, reasons_match
from status_service.statuses.models import HistoryEntry, StatusRecord, UpdateCandidate
from status_service.statuses.state import TicketStatus

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(*, status=TicketStatus.IN_PROGRESS, updated_by="alice", reason="Working on it") -> StatusRecord:
    return StatusRecord(
        ticket_id="T-1",
        current_status=status,
        history=[
            HistoryEntry(status=TicketStatus.OPEN, timestamp=NOW - timedelta(minutes=5), updated_by="system"),
            HistoryEntry(status=status, timestamp=NOW, updated_by=updated_by, reason=reason),
        ],
        last_updated=NOW,
    )


def _candidate(*, status=TicketStatus.IN_PROGRESS, updated_by="alice", reason="Working on it", after=1.0):
    return UpdateCandidate(status=status, updated_by=updated_by, reason=reason, now=NOW + timedelta(seconds=after))


def test_default_window_is_five_seconds():
    assert DuplicateFilter().window == DEFAULT_DUPLICATE_WINDOW == timedelta(seconds=5)


def test_matching_update_inside_window_is_duplicate():
    assert DuplicateFilter().is_duplicate(_record(), _candidate())


def test_window_boundary_is_exclusive():
    duplicate_filter = DuplicateFilter()
    assert duplicate_filter.is_duplicate(_record(), _candidate(after=4.999))
    assert not duplicate_filter.is_duplicate(_record(), _candidate(after=5.0))


def test_clock_skew_counts_as_zero_elapsed():
    assert DuplicateFilter().is_duplicate(_record(), _candidate(after=-2.0))


def test_different_status_is_not_duplicate():
    assert not DuplicateFilter().is_duplicate(_record(), _candidate(status=TicketStatus.RESOLVED))


def test_actor_comparison_can_be_disabled():
    duplicate_filter = DuplicateFilter()
    candidate = _candidate(updated_by="ticket-system")

    assert not duplicate_filter.is_duplicate(_record(), candidate)
    assert duplicate_filter.is_duplicate(_record(), candidate, match_actor=False)


def test_record_without_history_is_never_duplicate():
    record = StatusRecord(ticket_id="T-1", current_status=TicketStatus.OPEN, history=[], last_updated=NOW)
    assert not DuplicateFilter().is_duplicate(record, _candidate(status=TicketStatus.OPEN))


def test_custom_window():
    duplicate_filter = DuplicateFilter(timedelta(seconds=30))
    assert duplicate_filter.is_duplicate(_record(), _candidate(after=20))


@pytest.mark.parametrize(
    "recorded, candidate, expected",
    [
        ("Working on it", "Working on it", True),
        ("Working on it", "working", False),
        ("Assigned to bob", "Assigned", True),
        ("fixed", "not fixed", True),
        ("Working on it", None, True),
        (None, None, True),
        (None, "", True),
        (None, "Working", False),
        ("Working", "", False),
        ("Escalated", "Waiting for customer", False),
    ],
)
def test_reasons_match(recorded, candidate, expected):
    assert reasons_match(recorded, candidate) is expected
