from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Protocol

import httpx

from status_service.statuses.errors import NotifierError

from .schemas import StatusUpdatedEvent

logger = logging.getLogger(__name__)


class EventNotifier(Protocol):
    """Outbound side of the event feed."""

    async def publish(self, event: StatusUpdatedEvent) -> None:
        ...

    async def close(self) -> None:
        ...


class InMemoryEventNotifier:
    """Keep published events in memory and fan them out to local subscribers."""

    def __init__(self) -> None:
        self.published: list[StatusUpdatedEvent] = []
        self._subscribers: list[asyncio.Queue[StatusUpdatedEvent]] = []

    def subscribe(self) -> asyncio.Queue[StatusUpdatedEvent]:
        queue: asyncio.Queue[StatusUpdatedEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    async def publish(self, event: StatusUpdatedEvent) -> None:
        self.published.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)
        logger.debug("Published %s for ticket %s", event.type, event.data.ticket_id)

    async def close(self) -> None:
        self._subscribers.clear()


class WebhookEventNotifier:
    """POST change notifications to the ticketing system's webhook endpoint.

    Requests carry the internal-service header so the receiving side can
    recognise relayed changes and avoid echoing them back.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def publish(self, event: StatusUpdatedEvent) -> None:
        try:
            response = await self._client.post(self._url, json=event.to_payload(), headers=self._headers)
        except httpx.HTTPError as exc:
            raise NotifierError(f"Failed to publish {event.type} for ticket {event.data.ticket_id}: {exc}") from exc

        if response.status_code >= 400:
            raise NotifierError(
                f"[{response.status_code}] Webhook rejected {event.type} for ticket {event.data.ticket_id}"
            )
        logger.debug("Delivered %s for ticket %s to %s", event.type, event.data.ticket_id, self._url)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
