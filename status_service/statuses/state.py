from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Mapping, Sequence

from .errors import StatusValidationError

if TYPE_CHECKING:
    from .models import StatusRecord


class TicketStatus(str, Enum):
    """Canonical states of the ticket lifecycle, plus the terminal ``deleted`` marker."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    DELETED = "deleted"

    def __str__(self) -> str:
        return self.value


def parse_status(value: object) -> TicketStatus:
    """Map a raw status value onto :class:`TicketStatus`.

    Case and the ``-``/space separators are normalized, so ``"in-progress"``
    and ``"In Progress"`` both map to ``in_progress``. Anything else is a
    validation error.
    """

    if isinstance(value, TicketStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise StatusValidationError("Status is required")
    normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return TicketStatus(normalized)
    except ValueError:
        allowed = ", ".join(status.value for status in TicketStatus)
        raise StatusValidationError(
            f"Invalid status value: {value}. Valid values are: {allowed}"
        ) from None


class StatusStateMachine:
    """Validate ticket status transitions."""

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.OPEN: (TicketStatus.IN_PROGRESS, TicketStatus.CLOSED),
        TicketStatus.IN_PROGRESS: (TicketStatus.RESOLVED, TicketStatus.CLOSED),
        TicketStatus.RESOLVED: (TicketStatus.CLOSED, TicketStatus.IN_PROGRESS),
        TicketStatus.CLOSED: (),
    }

    def __init__(self, transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None) -> None:
        self._transitions = transitions if transitions is not None else self._DEFAULT_TRANSITIONS

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        if target is TicketStatus.DELETED:
            return current is not TicketStatus.DELETED
        return target in self._transitions.get(current, ())

    def is_valid_transition(self, record: StatusRecord, target: TicketStatus) -> bool:
        """Return whether ``record`` may move to ``target``.

        Inactive records accept nothing; soft deletion is accepted from every
        active state, including ``closed``.
        """

        if not record.is_active:
            return False
        return self.can_transition(record.current_status, target)

    def allowed_targets(self, current: TicketStatus) -> tuple[TicketStatus, ...]:
        if current is TicketStatus.DELETED:
            return ()
        return (*self._transitions.get(current, ()), TicketStatus.DELETED)
