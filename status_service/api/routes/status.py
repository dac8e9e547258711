from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from status_service.dependencies.status import InternalRequest, StatusEngineDep
from status_service.statuses.errors import (
    InvalidTransitionError,
    NotFoundError,
    RecordExistsError,
    StatusServiceError,
    StatusValidationError,
)
from status_service.statuses.models import StatusRecord, UpdateResult, UpdateSource
from status_service.statuses.state import TicketStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/status", tags=["status"])

OUTCOME_HEADER = "X-Status-Outcome"
MAX_BATCH_SIZE = 500


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StatusCreateRequest(_CamelModel):
    ticket_id: str = Field(..., min_length=1, max_length=255)
    current_status: str = Field(..., min_length=1)
    updated_by: str = Field(..., min_length=1, max_length=255)
    reason: str | None = Field(default=None, max_length=1000)


class StatusUpdateRequest(_CamelModel):
    status: str = Field(..., min_length=1)
    updated_by: str = Field(..., min_length=1, max_length=255)
    reason: str | None = Field(default=None, max_length=1000)
    from_message_queue: bool = False


class TicketIdsRequest(_CamelModel):
    ticket_ids: list[str] = Field(..., max_length=MAX_BATCH_SIZE)


class HistoryEntryResponse(_CamelModel):
    status: TicketStatus
    timestamp: datetime
    updated_by: str
    reason: str | None = None


class StatusRecordResponse(_CamelModel):
    ticket_id: str
    current_status: TicketStatus
    history: list[HistoryEntryResponse]
    last_updated: datetime
    is_active: bool


class StatusSummaryResponse(_CamelModel):
    current_status: TicketStatus
    last_updated: datetime


class StatusSnapshotResponse(StatusSummaryResponse):
    latest_entry: HistoryEntryResponse | None = None


def _to_response(record: StatusRecord) -> StatusRecordResponse:
    return StatusRecordResponse.model_validate(record)


def _server_error(exc: StatusServiceError, *, ticket_id: str | None, operation: str) -> HTTPException:
    logger.error("%s failed for ticket %s: %s", operation, ticket_id, exc, exc_info=exc)
    return HTTPException(status_code=500, detail="Internal server error")


def _set_outcome(response: Response, result: UpdateResult) -> None:
    response.headers[OUTCOME_HEADER] = result.outcome.value


@router.post("", response_model=StatusRecordResponse, status_code=status.HTTP_201_CREATED)
async def create_status(
    payload: StatusCreateRequest,
    engine: StatusEngineDep,
    internal: InternalRequest,
    response: Response,
) -> StatusRecordResponse:
    try:
        result = await engine.create_record(
            payload.ticket_id,
            payload.current_status,
            updated_by=payload.updated_by,
            reason=payload.reason,
            prevent_loop=internal,
        )
    except StatusValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RecordExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StatusServiceError as exc:
        raise _server_error(exc, ticket_id=payload.ticket_id, operation="create_status") from exc
    _set_outcome(response, result)
    return _to_response(result.record)


@router.post("/batch", response_model=dict[str, StatusSummaryResponse])
async def get_batch_status(payload: TicketIdsRequest, engine: StatusEngineDep) -> dict[str, StatusSummaryResponse]:
    try:
        summaries = await engine.get_batch(payload.ticket_ids)
    except StatusServiceError as exc:
        raise _server_error(exc, ticket_id=None, operation="get_batch_status") from exc
    return {ticket_id: StatusSummaryResponse.model_validate(summary) for ticket_id, summary in summaries.items()}


@router.post("/updates", response_model=dict[str, StatusSnapshotResponse])
async def get_status_updates(
    payload: TicketIdsRequest,
    engine: StatusEngineDep,
    since: datetime | None = Query(default=None),
) -> dict[str, StatusSnapshotResponse]:
    try:
        snapshots = await engine.get_updates_since(payload.ticket_ids, since)
    except StatusServiceError as exc:
        raise _server_error(exc, ticket_id=None, operation="get_status_updates") from exc
    return {ticket_id: StatusSnapshotResponse.model_validate(snapshot) for ticket_id, snapshot in snapshots.items()}


@router.get("/{ticket_id}", response_model=StatusRecordResponse)
async def get_status(ticket_id: str, engine: StatusEngineDep) -> StatusRecordResponse:
    try:
        record = await engine.get_record(ticket_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StatusServiceError as exc:
        raise _server_error(exc, ticket_id=ticket_id, operation="get_status") from exc
    return _to_response(record)


@router.get("/{ticket_id}/history", response_model=list[HistoryEntryResponse])
async def get_status_history(
    ticket_id: str,
    engine: StatusEngineDep,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    limit: int | None = Query(default=None, ge=1),
) -> list[HistoryEntryResponse]:
    try:
        entries = await engine.get_history(ticket_id, start_date=start_date, end_date=end_date, limit=limit)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StatusValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StatusServiceError as exc:
        raise _server_error(exc, ticket_id=ticket_id, operation="get_status_history") from exc
    logger.debug("Found %d history entries for ticket %s", len(entries), ticket_id)
    return [HistoryEntryResponse.model_validate(entry) for entry in entries]


@router.post("/{ticket_id}/update", response_model=StatusRecordResponse)
async def update_status(
    ticket_id: str,
    payload: StatusUpdateRequest,
    engine: StatusEngineDep,
    internal: InternalRequest,
    response: Response,
) -> StatusRecordResponse:
    try:
        result = await engine.apply_update(
            ticket_id,
            payload.status,
            updated_by=payload.updated_by,
            reason=payload.reason,
            source=UpdateSource.API,
            prevent_loop=payload.from_message_queue or internal,
        )
    except StatusValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StatusServiceError as exc:
        raise _server_error(exc, ticket_id=ticket_id, operation="update_status") from exc
    _set_outcome(response, result)
    return _to_response(result.record)
