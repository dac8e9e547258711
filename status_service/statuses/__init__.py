"""Ticket status domain types.

The update engine lives in :mod:`status_service.statuses.service` and is
imported from there directly; the event schemas import this package.
"""

from .errors import (
    InvalidTransitionError,
    NotFoundError,
    NotifierError,
    PersistenceError,
    RecordExistsError,
    StaleRecordError,
    StatusServiceError,
    StatusValidationError,
)
from .models import (
    HistoryEntry,
    StatusRecord,
    StatusSnapshot,
    StatusSummary,
    UpdateCandidate,
    UpdateOutcome,
    UpdateResult,
    UpdateSource,
)
from .state import StatusStateMachine, TicketStatus, parse_status

__all__ = [
    "HistoryEntry",
    "InvalidTransitionError",
    "NotFoundError",
    "NotifierError",
    "PersistenceError",
    "RecordExistsError",
    "StaleRecordError",
    "StatusRecord",
    "StatusServiceError",
    "StatusSnapshot",
    "StatusStateMachine",
    "StatusSummary",
    "StatusValidationError",
    "TicketStatus",
    "UpdateCandidate",
    "UpdateOutcome",
    "UpdateResult",
    "UpdateSource",
    "parse_status",
]
