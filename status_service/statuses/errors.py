from __future__ import annotations


class StatusServiceError(RuntimeError):
    """Base error for status service issues."""

    retryable = False


class StatusValidationError(StatusServiceError):
    """Raised when a request carries missing or malformed fields."""


class InvalidTransitionError(StatusServiceError):
    """Raised when a legal status value is not reachable from the current one."""

    def __init__(self, ticket_id: str, current: str, target: str) -> None:
        super().__init__(f"Invalid status transition for ticket {ticket_id}: {current} -> {target}")
        self.ticket_id = ticket_id
        self.current = current
        self.target = target


class NotFoundError(StatusServiceError):
    """Raised when a read targets a ticket without a status record."""


class RecordExistsError(StatusServiceError):
    """Raised when explicitly creating a record for a ticket that already has one."""


class PersistenceError(StatusServiceError):
    """Raised when the status store fails to load or write a record."""

    retryable = True


class StaleRecordError(PersistenceError):
    """Raised when a conditional write lost a race against another writer."""


class NotifierError(StatusServiceError):
    """Raised when a change notification could not be published."""

    retryable = True
