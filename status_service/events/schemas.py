from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from status_service.statuses.models import HistoryEntry
from status_service.statuses.state import TicketStatus

STATUS_UPDATED_EVENT = "ticket.status.updated"


class TicketEventData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    previous_status: str | None = None
    current_status: str | None = None
    assigned_to: str | None = None
    resolved_by: str | None = None
    closed_by: str | None = None
    reason: str | None = None
    updated_by: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        # upstream emits numeric ids for some ticket sources
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class TicketEvent(BaseModel):
    """Envelope published by the ticketing system."""

    type: str = Field(..., min_length=1)
    data: TicketEventData


class StatusUpdatedData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ticket_id: str
    status: TicketStatus
    updated_by: str
    reason: str | None = None
    timestamp: datetime


class StatusUpdatedEvent(BaseModel):
    """Notification emitted when the service records a status change."""

    type: Literal["ticket.status.updated"] = STATUS_UPDATED_EVENT
    data: StatusUpdatedData

    @classmethod
    def from_entry(cls, ticket_id: str, entry: HistoryEntry) -> StatusUpdatedEvent:
        return cls(
            data=StatusUpdatedData(
                ticket_id=ticket_id,
                status=entry.status,
                updated_by=entry.updated_by,
                reason=entry.reason,
                timestamp=entry.timestamp,
            )
        )

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)
