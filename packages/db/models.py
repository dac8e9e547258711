"""SQLModel table definitions for the status service data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class TicketStatusTable(SQLModel, table=True):
    """Current status of a tracked ticket."""

    __tablename__ = "ticket_statuses"

    ticket_id: str = Field(sa_column=Column(String(255), primary_key=True))
    current_status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    notification_pending: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    version: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_updated: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class StatusHistoryTable(SQLModel, table=True):
    """Append-only status history; ``position`` preserves insertion order."""

    __tablename__ = "ticket_status_history"
    __table_args__ = (UniqueConstraint("ticket_id", "position", name="uq_status_history_position"),)

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(
            String(255),
            ForeignKey("ticket_statuses.ticket_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    position: int = Field(sa_column=Column(Integer, nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False))
    updated_by: str = Field(sa_column=Column(String(255), nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    timestamp: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
