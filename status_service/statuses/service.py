from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Sequence

from opentelemetry import trace

from status_service.events.notifier import EventNotifier
from status_service.events.schemas import StatusUpdatedEvent
from status_service.metrics import MetricsRegistry, register_default_metrics, track_duration
from status_service.metrics.definitions import (
    STATUS_DUPLICATES_SUPPRESSED_TOTAL,
    STATUS_NOTIFICATIONS_PUBLISHED_TOTAL,
    STATUS_NOTIFICATIONS_SUPPRESSED_TOTAL,
    STATUS_TRANSITIONS_REJECTED_TOTAL,
    STATUS_UPDATE_DURATION_SECONDS,
    STATUS_UPDATES_TOTAL,
)

from .dedup import DuplicateFilter
from .errors import (
    InvalidTransitionError,
    NotFoundError,
    NotifierError,
    RecordExistsError,
    StaleRecordError,
    StatusServiceError,
    StatusValidationError,
)
from .locks import KeyedLock
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
from .repository import StatusRepository
from .state import StatusStateMachine, TicketStatus, parse_status

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _require_text(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise StatusValidationError(f"Missing required field: {field}")
    return value.strip()


def _clean_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    reason = reason.strip()
    return reason or None


class StatusUpdateEngine:
    """Apply status updates for tickets and decide when to notify the event feed.

    API requests and inbound events share :meth:`apply_update`; the
    ``source`` argument only changes the notification defaults and whether the
    duplicate check compares actors. Updates for the same ticket are applied
    one at a time.
    """

    def __init__(
        self,
        repository: StatusRepository,
        notifier: EventNotifier,
        *,
        state_machine: StatusStateMachine | None = None,
        duplicate_filter: DuplicateFilter | None = None,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        notifier_timeout: float = 5.0,
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._state_machine = state_machine or StatusStateMachine()
        self._duplicate_filter = duplicate_filter or DuplicateFilter()
        self._clock = clock or _utcnow
        self._notifier_timeout = notifier_timeout
        self._locks = KeyedLock()

        registry = register_default_metrics(metrics)
        self._updates = registry.counter(STATUS_UPDATES_TOTAL)
        self._rejected = registry.counter(STATUS_TRANSITIONS_REJECTED_TOTAL)
        self._duplicates = registry.counter(STATUS_DUPLICATES_SUPPRESSED_TOTAL)
        self._published = registry.counter(STATUS_NOTIFICATIONS_PUBLISHED_TOTAL)
        self._suppressed = registry.counter(STATUS_NOTIFICATIONS_SUPPRESSED_TOTAL)
        self._duration = registry.distribution(STATUS_UPDATE_DURATION_SECONDS)

    async def apply_update(
        self,
        ticket_id: str,
        new_status: TicketStatus | str,
        *,
        updated_by: str,
        reason: str | None = None,
        source: UpdateSource = UpdateSource.API,
        prevent_loop: bool = False,
    ) -> UpdateResult:
        """Record ``new_status`` for ``ticket_id``.

        Raises :class:`StatusValidationError` before touching the store when
        an input is missing or the status is unknown, and
        :class:`InvalidTransitionError` when the transition is not allowed.
        Publishing happens only when the update warrants a notification and
        neither ``prevent_loop`` nor an event-feed source withholds it.
        """

        ticket_id = _require_text(ticket_id, "ticketId")
        actor = _require_text(updated_by, "updatedBy")
        status = parse_status(new_status)
        reason = _clean_reason(reason)
        source = UpdateSource(source)

        logger.info("Updating status for ticket %s to %s by %s (%s)", ticket_id, status, actor, source.value)
        with tracer.start_as_current_span("status.apply_update") as span, track_duration(
            self._duration, labels={"source": source.value}
        ):
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("status.target", status.value)
            span.set_attribute("status.source", source.value)
            async with self._locks.hold(ticket_id):
                result = await self._apply_locked(ticket_id, status, actor, reason, source)
                span.set_attribute("status.outcome", result.outcome.value)
                self._updates.inc(labels={"source": source.value, "outcome": result.outcome.value})
                await self._maybe_publish(result, source=source, prevent_loop=prevent_loop)
        return result

    async def create_record(
        self,
        ticket_id: str,
        status: TicketStatus | str,
        *,
        updated_by: str,
        reason: str | None = None,
        prevent_loop: bool = False,
    ) -> UpdateResult:
        """Explicitly create the status record for a ticket that has none."""

        ticket_id = _require_text(ticket_id, "ticketId")
        actor = _require_text(updated_by, "updatedBy")
        initial = parse_status(status)

        async with self._locks.hold(ticket_id):
            if await self._repository.get(ticket_id) is not None:
                raise RecordExistsError(f"Status already exists for ticket {ticket_id}")
            result = await self._create(
                ticket_id, initial, actor, _clean_reason(reason), self._clock(), explicit=True
            )
            self._updates.inc(labels={"source": UpdateSource.API.value, "outcome": result.outcome.value})
            await self._maybe_publish(result, source=UpdateSource.API, prevent_loop=prevent_loop)
        return result

    async def get_record(self, ticket_id: str) -> StatusRecord:
        record = await self._repository.get(ticket_id)
        if record is None:
            raise NotFoundError(f"Status not found for ticket {ticket_id}")
        return record

    async def get_history(
        self,
        ticket_id: str,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int | None = None,
    ) -> list[HistoryEntry]:
        """Return history entries within inclusive date bounds, keeping the latest ``limit``."""

        if limit is not None and limit < 1:
            raise StatusValidationError("limit must be a positive integer")
        record = await self.get_record(ticket_id)

        history: Sequence[HistoryEntry] = record.history
        if start_date is not None:
            start = _as_utc(start_date)
            history = [entry for entry in history if entry.timestamp >= start]
        if end_date is not None:
            end = _as_utc(end_date)
            history = [entry for entry in history if entry.timestamp <= end]
        if limit is not None:
            history = history[-limit:]
        return list(history)

    async def get_batch(self, ticket_ids: Sequence[str]) -> dict[str, StatusSummary]:
        records = await self._repository.get_many(ticket_ids)
        return {
            record.ticket_id: StatusSummary(
                ticket_id=record.ticket_id,
                current_status=record.current_status,
                last_updated=record.last_updated,
            )
            for record in records
        }

    async def get_updates_since(
        self, ticket_ids: Sequence[str], since: datetime | None = None
    ) -> dict[str, StatusSnapshot]:
        """Latest status and history entry for tickets changed after ``since``."""

        threshold = _as_utc(since) if since is not None else None
        records = await self._repository.get_many(ticket_ids)
        return {
            record.ticket_id: StatusSnapshot(
                ticket_id=record.ticket_id,
                current_status=record.current_status,
                last_updated=record.last_updated,
                latest_entry=record.latest_entry,
            )
            for record in records
            if threshold is None or record.last_updated > threshold
        }

    async def _apply_locked(
        self,
        ticket_id: str,
        status: TicketStatus,
        actor: str,
        reason: str | None,
        source: UpdateSource,
    ) -> UpdateResult:
        record = await self._repository.get(ticket_id)
        now = self._clock()
        if record is None:
            return await self._create(ticket_id, status, actor, reason, now)

        latest = record.latest_entry
        if latest is not None and now < latest.timestamp:
            now = latest.timestamp

        if not record.is_active:
            if status is TicketStatus.DELETED:
                logger.info("Ticket %s is already deleted; ignoring repeated deletion", ticket_id)
                return UpdateResult(
                    record=record, outcome=UpdateOutcome.DUPLICATE, notify=self._republish(record, source)
                )
            raise self._reject(record, status, source)

        if status is TicketStatus.DELETED:
            entry = HistoryEntry(status=status, timestamp=now, updated_by=actor, reason=reason or "Ticket deleted")
            return await self._append(record, entry, UpdateOutcome.DELETED, notify=True)

        candidate = UpdateCandidate(status=status, updated_by=actor, reason=reason, now=now)
        if self._duplicate_filter.is_duplicate(record, candidate, match_actor=source is UpdateSource.API):
            self._duplicates.inc(labels={"source": source.value})
            logger.info("Suppressed duplicate %s update for ticket %s from %s", status, ticket_id, actor)
            return UpdateResult(
                record=record, outcome=UpdateOutcome.DUPLICATE, notify=self._republish(record, source)
            )

        if status == record.current_status:
            entry = HistoryEntry(
                status=status,
                timestamp=now,
                updated_by=actor,
                reason=reason or f"Status reaffirmed as {status}",
            )
            return await self._append(
                record, entry, UpdateOutcome.REAFFIRMED, notify=source is UpdateSource.API
            )

        if not self._state_machine.is_valid_transition(record, status):
            raise self._reject(record, status, source)

        entry = HistoryEntry(
            status=status,
            timestamp=now,
            updated_by=actor,
            reason=reason or f"Status changed from {record.current_status} to {status}",
        )
        return await self._append(record, entry, UpdateOutcome.CHANGED, notify=True)

    def _reject(self, record: StatusRecord, status: TicketStatus, source: UpdateSource) -> InvalidTransitionError:
        self._rejected.inc(labels={"source": source.value})
        logger.warning(
            "Rejected transition for ticket %s: %s -> %s", record.ticket_id, record.current_status, status
        )
        return InvalidTransitionError(record.ticket_id, record.current_status.value, status.value)

    async def _create(
        self,
        ticket_id: str,
        status: TicketStatus,
        actor: str,
        reason: str | None,
        now: datetime,
        *,
        explicit: bool = False,
    ) -> UpdateResult:
        entry = HistoryEntry(status=status, timestamp=now, updated_by=actor, reason=reason or "Initial status")
        record = StatusRecord(
            ticket_id=ticket_id,
            current_status=status,
            history=[entry],
            last_updated=now,
            is_active=status is not TicketStatus.DELETED,
            version=1,
            created_at=now,
        )
        try:
            await self._repository.create(record)
        except RecordExistsError as exc:
            if explicit:
                raise
            raise StaleRecordError(f"Status for ticket {ticket_id} was created concurrently") from exc
        logger.info("Created status record for ticket %s with status %s", ticket_id, status)
        return UpdateResult(record=record, outcome=UpdateOutcome.CREATED, notify=True)

    async def _append(
        self,
        record: StatusRecord,
        entry: HistoryEntry,
        outcome: UpdateOutcome,
        *,
        notify: bool,
    ) -> UpdateResult:
        updated = record.copy()
        updated.history.append(entry)
        updated.current_status = entry.status
        updated.is_active = entry.status is not TicketStatus.DELETED
        updated.last_updated = entry.timestamp
        updated.version = record.version + 1
        await self._repository.save(updated, new_entries=[entry], expected_version=record.version)
        logger.info(
            "Recorded %s for ticket %s: %s (%s)", outcome.value, record.ticket_id, entry.status, entry.reason
        )
        return UpdateResult(record=updated, outcome=outcome, notify=notify)

    async def _maybe_publish(self, result: UpdateResult, *, source: UpdateSource, prevent_loop: bool) -> None:
        if not result.notify:
            return
        ticket_id = result.record.ticket_id
        if prevent_loop or source is UpdateSource.EVENT_FEED:
            self._suppressed.inc(labels={"source": source.value})
            logger.debug("Loop prevention withheld notification for ticket %s", ticket_id)
            return

        entry = result.record.latest_entry
        if entry is None:
            return
        event = StatusUpdatedEvent.from_entry(ticket_id, entry)
        try:
            await asyncio.wait_for(self._notifier.publish(event), timeout=self._notifier_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Timed out publishing status update for ticket %s", ticket_id)
            await self._mark_notification(result, pending=True)
            raise NotifierError(f"Timed out publishing status update for ticket {ticket_id}") from exc
        except NotifierError:
            logger.error("Failed to publish status update for ticket %s", ticket_id)
            await self._mark_notification(result, pending=True)
            raise
        result.published = True
        self._published.inc()
        await self._mark_notification(result, pending=False)

    @staticmethod
    def _republish(record: StatusRecord, source: UpdateSource) -> bool:
        # an API retry of a change whose notification failed publishes it again
        return record.notification_pending and source is UpdateSource.API

    async def _mark_notification(self, result: UpdateResult, *, pending: bool) -> None:
        """Persist whether the latest change still awaits publication.

        Store failures are logged only; a stale flag costs at most one extra
        publish on a later retry.
        """

        record = result.record
        if record.notification_pending == pending:
            return
        updated = record.copy()
        updated.notification_pending = pending
        updated.version = record.version + 1
        try:
            await self._repository.save(updated, new_entries=[], expected_version=record.version)
        except StatusServiceError:
            logger.warning(
                "Could not record notification state for ticket %s", record.ticket_id, exc_info=True
            )
            return
        result.record = updated
