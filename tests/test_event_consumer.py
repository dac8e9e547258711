from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from status_service.events.consumer import MessageOutcome, TicketEventConsumer
from status_service.events.schemas import TicketEvent
from status_service.metrics.definitions import TICKET_EVENTS_CONSUMED_TOTAL
from status_service.statuses.errors import InvalidTransitionError, PersistenceError, StatusValidationError
from status_service.statuses.models import UpdateOutcome, UpdateSource
from status_service.statuses.state import TicketStatus


@pytest.fixture
def consumer(engine, registry) -> TicketEventConsumer:
    return TicketEventConsumer(engine, metrics=registry)


def _event(event_type: str, **data) -> dict:
    return {"type": event_type, "data": {"id": "T1", **data}}


@pytest.mark.asyncio
async def test_created_event_opens_ticket_without_republishing(consumer, engine, notifier):
    result = await consumer.handle_message(json.dumps(_event("ticket.created")).encode())

    assert result.outcome is MessageOutcome.ACK
    assert result.update.outcome is UpdateOutcome.CREATED
    record = await engine.get_record("T1")
    assert record.current_status is TicketStatus.OPEN
    assert record.history[0].updated_by == "system"
    assert record.history[0].reason == "Ticket created"
    assert notifier.published == []


@pytest.mark.asyncio
async def test_created_event_honours_payload_status(consumer, engine):
    await consumer.handle_message(_event("ticket.created", currentStatus="in-progress", updatedBy="importer"))

    record = await engine.get_record("T1")
    assert record.current_status is TicketStatus.IN_PROGRESS
    assert record.history[0].updated_by == "importer"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event_type, data, expected_status, expected_reason",
    [
        ("ticket.assigned", {"assignedTo": "bob"}, TicketStatus.IN_PROGRESS, "Assigned to bob"),
        ("ticket.closed", {"closedBy": "carol"}, TicketStatus.CLOSED, "Closed by carol"),
        ("ticket.deleted", {}, TicketStatus.DELETED, "Ticket deleted"),
        (
            "ticket.status.changed",
            {"previousStatus": "open", "currentStatus": "in_progress"},
            TicketStatus.IN_PROGRESS,
            "Status changed from open to in_progress",
        ),
    ],
)
async def test_events_route_to_engine(consumer, engine, clock, event_type, data, expected_status, expected_reason):
    await engine.apply_update("T1", "open", updated_by="alice")
    clock.advance(60)

    result = await consumer.handle_message(_event(event_type, **data))

    assert result.outcome is MessageOutcome.ACK
    assert result.event_type == event_type
    assert result.ticket_id == "T1"
    record = await engine.get_record("T1")
    assert record.current_status is expected_status
    assert record.history[-1].reason == expected_reason


@pytest.mark.asyncio
async def test_resolved_event_uses_resolver_in_reason(consumer, engine, clock):
    await engine.apply_update("T1", "in_progress", updated_by="alice")
    clock.advance(60)

    await consumer.handle_message(_event("ticket.resolved", resolvedBy="bob"))

    record = await engine.get_record("T1")
    assert record.current_status is TicketStatus.RESOLVED
    assert record.history[-1].reason == "Resolved by bob"


@pytest.mark.asyncio
async def test_numeric_ticket_ids_are_accepted(consumer, engine):
    result = await consumer.handle_message({"type": "ticket.created", "data": {"id": 42}})

    assert result.outcome is MessageOutcome.ACK
    assert (await engine.get_record("42")).current_status is TicketStatus.OPEN


@pytest.mark.asyncio
async def test_updated_event_without_status_is_ignored(consumer, engine):
    result = await consumer.handle_message(_event("ticket.updated", assignedTo="bob"))

    assert result.outcome is MessageOutcome.ACK
    assert result.update is None
    assert len(await engine.get_batch(["T1"])) == 0


@pytest.mark.asyncio
async def test_unknown_event_type_is_acknowledged(consumer, registry):
    result = await consumer.handle_message(_event("ticket.commented"))

    assert result.outcome is MessageOutcome.ACK
    assert result.update is None
    counter = registry.counter(TICKET_EVENTS_CONSUMED_TOTAL)
    assert counter.value(labels={"event_type": "ticket.commented", "outcome": "ack"}) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        "[1, 2]",
        {"type": "ticket.created"},
        {"type": "ticket.created", "data": {"id": ""}},
    ],
)
async def test_malformed_messages_are_rejected(consumer, registry, body):
    result = await consumer.handle_message(body)

    assert result.outcome is MessageOutcome.REJECT
    counter = registry.counter(TICKET_EVENTS_CONSUMED_TOTAL)
    assert counter.value(labels={"event_type": "unknown", "outcome": "reject"}) == 1


@pytest.mark.asyncio
async def test_status_changed_without_status_is_rejected(consumer):
    result = await consumer.handle_message(_event("ticket.status.changed"))

    assert result.outcome is MessageOutcome.REJECT
    assert result.error == "StatusValidationError"


@pytest.mark.asyncio
async def test_unknown_status_value_is_rejected(consumer):
    result = await consumer.handle_message(_event("ticket.status.changed", currentStatus="archived"))

    assert result.outcome is MessageOutcome.REJECT


@pytest.mark.asyncio
async def test_invalid_transition_is_rejected(consumer, engine, clock):
    await engine.apply_update("T1", "closed", updated_by="alice")
    clock.advance(60)

    result = await consumer.handle_message(_event("ticket.assigned", assignedTo="bob"))

    assert result.outcome is MessageOutcome.REJECT
    assert result.error == "InvalidTransitionError"


@pytest.mark.asyncio
async def test_redelivered_event_is_absorbed(consumer, engine, clock):
    await engine.apply_update("T1", "open", updated_by="alice")
    clock.advance(60)
    message = _event("ticket.assigned", assignedTo="bob")

    await consumer.handle_message(message)
    clock.advance(1)
    second = await consumer.handle_message(message)

    assert second.outcome is MessageOutcome.ACK
    assert second.update.outcome is UpdateOutcome.DUPLICATE
    assert len((await engine.get_record("T1")).history) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (PersistenceError("database unavailable"), MessageOutcome.REQUEUE),
        (StatusValidationError("bad"), MessageOutcome.REJECT),
        (InvalidTransitionError("T1", "closed", "open"), MessageOutcome.REJECT),
        (ConnectionError("reset"), MessageOutcome.REQUEUE),
    ],
)
async def test_failures_are_classified(registry, error, expected):
    engine = AsyncMock()
    engine.apply_update.side_effect = error
    consumer = TicketEventConsumer(engine, metrics=registry)

    result = await consumer.handle_message(_event("ticket.closed"))

    assert result.outcome is expected


@pytest.mark.asyncio
async def test_process_passes_event_source(registry):
    engine = AsyncMock()
    consumer = TicketEventConsumer(engine, metrics=registry)

    await consumer.process(TicketEvent.model_validate(_event("ticket.closed", reason="Customer confirmed")))

    engine.apply_update.assert_awaited_once_with(
        "T1",
        TicketStatus.CLOSED,
        updated_by="system",
        reason="Customer confirmed",
        source=UpdateSource.EVENT_FEED,
    )
