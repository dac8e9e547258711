from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .state import TicketStatus


class UpdateSource(str, Enum):
    """Entry point an update arrived through."""

    API = "api"
    EVENT_FEED = "event_feed"


class UpdateOutcome(str, Enum):
    """How the engine classified an applied update."""

    CREATED = "created"
    CHANGED = "changed"
    REAFFIRMED = "reaffirmed"
    DUPLICATE = "duplicate"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Immutable audit record of a status assignment."""

    status: TicketStatus
    timestamp: datetime
    updated_by: str
    reason: str | None = None


@dataclass(slots=True)
class StatusRecord:
    """Current status and append-only history for one ticket."""

    ticket_id: str
    current_status: TicketStatus
    history: list[HistoryEntry]
    last_updated: datetime
    is_active: bool = True
    version: int = 0
    created_at: datetime | None = None
    # set when the latest change could not be published yet
    notification_pending: bool = False

    @property
    def latest_entry(self) -> HistoryEntry | None:
        return self.history[-1] if self.history else None

    def copy(self) -> StatusRecord:
        return StatusRecord(
            ticket_id=self.ticket_id,
            current_status=self.current_status,
            history=list(self.history),
            last_updated=self.last_updated,
            is_active=self.is_active,
            version=self.version,
            created_at=self.created_at,
            notification_pending=self.notification_pending,
        )


@dataclass(frozen=True, slots=True)
class UpdateCandidate:
    """Incoming update compared against the latest history entry."""

    status: TicketStatus
    updated_by: str
    reason: str | None
    now: datetime


@dataclass(slots=True)
class UpdateResult:
    """Outcome of :meth:`StatusUpdateEngine.apply_update`."""

    record: StatusRecord
    outcome: UpdateOutcome
    notify: bool
    published: bool = False


@dataclass(frozen=True, slots=True)
class StatusSummary:
    """Current status of a ticket without its history."""

    ticket_id: str
    current_status: TicketStatus
    last_updated: datetime


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Current status of a ticket with only its most recent history entry."""

    ticket_id: str
    current_status: TicketStatus
    last_updated: datetime
    latest_entry: HistoryEntry | None = field(default=None)
