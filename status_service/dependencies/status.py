from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from status_service.core.config import Settings, get_settings
from status_service.events.consumer import TicketEventConsumer
from status_service.statuses.service import StatusUpdateEngine

_TRUTHY = {"1", "true", "yes", "on"}


async def get_status_engine(request: Request) -> StatusUpdateEngine:
    engine = getattr(request.app.state, "status_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Status service is not configured")
    return engine


async def get_event_consumer(request: Request) -> TicketEventConsumer:
    consumer = getattr(request.app.state, "event_consumer", None)
    if consumer is None:
        raise HTTPException(status_code=503, detail="Event consumer is not configured")
    return consumer


async def is_internal_request(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> bool:
    """Whether the caller marked the request as relayed by another internal service."""

    value = request.headers.get(settings.internal_service_header)
    return value is not None and value.strip().lower() in _TRUTHY


StatusEngineDep = Annotated[StatusUpdateEngine, Depends(get_status_engine)]
EventConsumerDep = Annotated[TicketEventConsumer, Depends(get_event_consumer)]
InternalRequest = Annotated[bool, Depends(is_internal_request)]
