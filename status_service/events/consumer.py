"""Route inbound ticket events to the update engine.

The broker (or webhook) transport hands each raw message to
:meth:`TicketEventConsumer.handle_message` and acts on the returned
:class:`MessageOutcome`: ``ACK`` removes the message, ``REJECT`` drops it
without requeueing and ``REQUEUE`` asks for redelivery. Validation and
transition errors are rejected so a malformed message cannot cycle forever;
persistence and connectivity errors are requeued.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping

from opentelemetry import trace
from pydantic import ValidationError

from status_service.metrics import MetricsRegistry, register_default_metrics
from status_service.metrics.definitions import TICKET_EVENTS_CONSUMED_TOTAL
from status_service.statuses.errors import StatusServiceError, StatusValidationError
from status_service.statuses.models import UpdateResult, UpdateSource
from status_service.statuses.service import SYSTEM_ACTOR, StatusUpdateEngine
from status_service.statuses.state import TicketStatus

from .schemas import TicketEvent, TicketEventData

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class MessageOutcome(str, Enum):
    ACK = "ack"
    REJECT = "reject"
    REQUEUE = "requeue"


@dataclass(slots=True)
class ConsumeResult:
    """What happened to one inbound message."""

    outcome: MessageOutcome
    event_type: str | None = None
    ticket_id: str | None = None
    update: UpdateResult | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class _Route:
    status: TicketStatus | None
    reason: Callable[[TicketEventData], str | None]


def _status_changed_reason(data: TicketEventData) -> str | None:
    if data.previous_status and data.current_status:
        return f"Status changed from {data.previous_status} to {data.current_status}"
    return None


# status None means "take currentStatus from the payload"
_ROUTES: Mapping[str, _Route] = {
    "ticket.created": _Route(TicketStatus.OPEN, lambda data: "Ticket created"),
    "ticket.updated": _Route(None, _status_changed_reason),
    "ticket.status.changed": _Route(None, _status_changed_reason),
    "ticket.assigned": _Route(TicketStatus.IN_PROGRESS, lambda data: f"Assigned to {data.assigned_to or 'unknown'}"),
    "ticket.resolved": _Route(TicketStatus.RESOLVED, lambda data: f"Resolved by {data.resolved_by or 'unknown'}"),
    "ticket.closed": _Route(TicketStatus.CLOSED, lambda data: f"Closed by {data.closed_by or 'unknown'}"),
    "ticket.deleted": _Route(TicketStatus.DELETED, lambda data: "Ticket deleted"),
}


class TicketEventConsumer:
    """Apply ticket events from the feed as event-sourced status updates."""

    def __init__(self, engine: StatusUpdateEngine, *, metrics: MetricsRegistry | None = None) -> None:
        self._engine = engine
        self._consumed = register_default_metrics(metrics).counter(TICKET_EVENTS_CONSUMED_TOTAL)

    async def handle_message(self, body: bytes | str | Mapping[str, object]) -> ConsumeResult:
        """Decode, validate and apply one message, classifying any failure."""

        try:
            event = self._decode(body)
        except (ValueError, ValidationError) as exc:
            logger.warning("Rejecting malformed ticket event: %s", exc)
            return self._finish(ConsumeResult(outcome=MessageOutcome.REJECT, error="Malformed event payload"))

        with tracer.start_as_current_span("events.handle_message") as span:
            span.set_attribute("event.type", event.type)
            span.set_attribute("ticket.id", event.data.id)
            result = await self._dispatch(event)
            span.set_attribute("event.outcome", result.outcome.value)
        return self._finish(result)

    async def process(self, event: TicketEvent) -> UpdateResult | None:
        """Apply a decoded event; returns ``None`` when it carries no status change."""

        route = _ROUTES.get(event.type)
        if route is None:
            logger.warning("Unknown message type: %s", event.type)
            return None

        data = event.data
        status: TicketStatus | str | None = route.status
        if status is None:
            if not data.current_status:
                if event.type == "ticket.status.changed":
                    raise StatusValidationError(f"{event.type} for ticket {data.id} is missing currentStatus")
                logger.debug("Ignoring %s for ticket %s without a status change", event.type, data.id)
                return None
            status = data.current_status
        elif event.type == "ticket.created" and data.current_status:
            status = data.current_status

        return await self._engine.apply_update(
            data.id,
            status,
            updated_by=data.updated_by or SYSTEM_ACTOR,
            reason=data.reason or route.reason(data),
            source=UpdateSource.EVENT_FEED,
        )

    @staticmethod
    def _decode(body: bytes | str | Mapping[str, object]) -> TicketEvent:
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8")
        if isinstance(body, str):
            body = json.loads(body)
        if not isinstance(body, Mapping):
            raise ValueError("Event payload must be a JSON object")
        return TicketEvent.model_validate(body)

    async def _dispatch(self, event: TicketEvent) -> ConsumeResult:
        ticket_id = event.data.id
        try:
            update = await self.process(event)
        except StatusServiceError as exc:
            outcome = MessageOutcome.REQUEUE if exc.retryable else MessageOutcome.REJECT
            log = logger.error if exc.retryable else logger.warning
            log("Failed to process %s for ticket %s (%s): %s", event.type, ticket_id, outcome.value, exc)
            return ConsumeResult(
                outcome=outcome, event_type=event.type, ticket_id=ticket_id, error=type(exc).__name__
            )
        except Exception:
            logger.exception("Unexpected error processing %s for ticket %s", event.type, ticket_id)
            return ConsumeResult(
                outcome=MessageOutcome.REQUEUE, event_type=event.type, ticket_id=ticket_id, error="InternalError"
            )
        return ConsumeResult(outcome=MessageOutcome.ACK, event_type=event.type, ticket_id=ticket_id, update=update)

    def _finish(self, result: ConsumeResult) -> ConsumeResult:
        self._consumed.inc(labels={"event_type": result.event_type or "unknown", "outcome": result.outcome.value})
        return result

