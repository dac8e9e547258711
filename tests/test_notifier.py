from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from status_service.events.notifier import InMemoryEventNotifier, WebhookEventNotifier
from status_service.events.schemas import StatusUpdatedEvent
from status_service.statuses.errors import NotifierError
from status_service.statuses.models import HistoryEntry
from status_service.statuses.state import TicketStatus


def _event() -> StatusUpdatedEvent:
    entry = HistoryEntry(
        status=TicketStatus.RESOLVED,
        timestamp=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        updated_by="bob",
        reason="fixed",
    )
    return StatusUpdatedEvent.from_entry("T1", entry)


def test_status_updated_payload_uses_wire_names():
    payload = _event().to_payload()

    assert payload["type"] == "ticket.status.updated"
    assert payload["data"] == {
        "ticketId": "T1",
        "status": "resolved",
        "updatedBy": "bob",
        "reason": "fixed",
        "timestamp": "2024-03-01T12:00:00Z",
    }


@pytest.mark.asyncio
async def test_in_memory_notifier_fans_out_to_subscribers():
    notifier = InMemoryEventNotifier()
    queue = notifier.subscribe()

    await notifier.publish(_event())

    assert len(notifier.published) == 1
    delivered = queue.get_nowait()
    assert delivered.data.ticket_id == "T1"
    await notifier.close()


@pytest.mark.asyncio
async def test_webhook_notifier_posts_payload_with_headers():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookEventNotifier(
        "https://tickets.example.com/hooks/status",
        headers={"X-Internal-Service": "true"},
        client=client,
    )

    await notifier.publish(_event())

    assert len(captured) == 1
    request = captured[0]
    assert request.method == "POST"
    assert request.headers["X-Internal-Service"] == "true"
    assert b'"ticketId":"T1"' in request.content.replace(b" ", b"")
    await notifier.close()
    assert not client.is_closed
    await client.aclose()


@pytest.mark.asyncio
async def test_webhook_notifier_raises_on_error_status():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    notifier = WebhookEventNotifier("https://tickets.example.com/hooks/status", client=client)

    with pytest.raises(NotifierError, match="500"):
        await notifier.publish(_event())
    await client.aclose()


@pytest.mark.asyncio
async def test_webhook_notifier_wraps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookEventNotifier("https://tickets.example.com/hooks/status", client=client)

    with pytest.raises(NotifierError):
        await notifier.publish(_event())
    await client.aclose()


@pytest.mark.asyncio
async def test_webhook_notifier_closes_owned_client():
    notifier = WebhookEventNotifier("https://tickets.example.com/hooks/status", timeout=1.0)

    await notifier.close()

    assert notifier._client.is_closed
