"""HTTP ingress for ticket events pushed by the ticketing system."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Response, status
from fastapi.responses import JSONResponse

from status_service.dependencies.status import EventConsumerDep
from status_service.events.consumer import MessageOutcome

router = APIRouter(prefix="/events", tags=["events"])

_OUTCOME_STATUS = {
    MessageOutcome.ACK: status.HTTP_202_ACCEPTED,
    MessageOutcome.REJECT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    MessageOutcome.REQUEUE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def receive_event(consumer: EventConsumerDep, payload: Any = Body(...)) -> Response:
    result = await consumer.handle_message(payload)
    content: dict[str, Any] = {"outcome": result.outcome.value}
    if result.ticket_id is not None:
        content["ticketId"] = result.ticket_id
    if result.update is not None:
        content["result"] = result.update.outcome.value
    if result.error is not None:
        content["error"] = result.error
    headers = {"Retry-After": "5"} if result.outcome is MessageOutcome.REQUEUE else None
    return JSONResponse(status_code=_OUTCOME_STATUS[result.outcome], content=content, headers=headers)
