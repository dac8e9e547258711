from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Protocol, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import StatusHistoryTable, TicketStatusTable

from .errors import PersistenceError, RecordExistsError, StaleRecordError
from .models import HistoryEntry, StatusRecord
from .state import TicketStatus


class StatusRepository(Protocol):
    """Storage contract used by the update engine.

    ``save`` is a conditional write: it must fail with
    :class:`StaleRecordError` when the stored version differs from
    ``expected_version`` and must persist either everything or nothing.
    """

    async def ensure_schema(self) -> None:
        ...

    async def get(self, ticket_id: str) -> StatusRecord | None:
        ...

    async def get_many(self, ticket_ids: Sequence[str]) -> list[StatusRecord]:
        ...

    async def create(self, record: StatusRecord) -> None:
        ...

    async def save(
        self,
        record: StatusRecord,
        *,
        new_entries: Sequence[HistoryEntry],
        expected_version: int,
    ) -> None:
        ...


class InMemoryStatusRepository:
    """Process-local store used for development and tests."""

    def __init__(self) -> None:
        self._records: dict[str, StatusRecord] = {}

    async def ensure_schema(self) -> None:
        return None

    async def get(self, ticket_id: str) -> StatusRecord | None:
        record = self._records.get(ticket_id)
        return record.copy() if record is not None else None

    async def get_many(self, ticket_ids: Sequence[str]) -> list[StatusRecord]:
        return [
            self._records[ticket_id].copy()
            for ticket_id in dict.fromkeys(ticket_ids)
            if ticket_id in self._records
        ]

    async def create(self, record: StatusRecord) -> None:
        if record.ticket_id in self._records:
            raise RecordExistsError(f"Status already exists for ticket {record.ticket_id}")
        self._records[record.ticket_id] = record.copy()

    async def save(
        self,
        record: StatusRecord,
        *,
        new_entries: Sequence[HistoryEntry],
        expected_version: int,
    ) -> None:
        stored = self._records.get(record.ticket_id)
        if stored is None or stored.version != expected_version:
            raise StaleRecordError(f"Status for ticket {record.ticket_id} changed concurrently")
        self._records[record.ticket_id] = record.copy()

    def __len__(self) -> int:
        return len(self._records)


class SQLStatusRepository:
    """Persistence helper wrapping ``ticket_statuses`` and their history."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def get(self, ticket_id: str) -> StatusRecord | None:
        try:
            async with self._session_factory() as session:
                status_row = await session.get(TicketStatusTable, ticket_id)
                if status_row is None:
                    return None
                result = await session.execute(
                    select(StatusHistoryTable)
                    .where(StatusHistoryTable.ticket_id == ticket_id)
                    .order_by(StatusHistoryTable.position.asc())
                )
                history_rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load status for ticket {ticket_id}") from exc
        return self._table_to_record(status_row, history_rows)

    async def get_many(self, ticket_ids: Sequence[str]) -> list[StatusRecord]:
        unique_ids = list(dict.fromkeys(ticket_ids))
        if not unique_ids:
            return []
        try:
            async with self._session_factory() as session:
                status_result = await session.execute(
                    select(TicketStatusTable).where(TicketStatusTable.ticket_id.in_(unique_ids))
                )
                history_result = await session.execute(
                    select(StatusHistoryTable)
                    .where(StatusHistoryTable.ticket_id.in_(unique_ids))
                    .order_by(StatusHistoryTable.ticket_id.asc(), StatusHistoryTable.position.asc())
                )
                status_rows = status_result.scalars().all()
                history_rows = history_result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load statuses for {len(unique_ids)} tickets") from exc

        grouped: dict[str, list[StatusHistoryTable]] = defaultdict(list)
        for row in history_rows:
            grouped[row.ticket_id].append(row)
        by_id = {row.ticket_id: row for row in status_rows}
        return [
            self._table_to_record(by_id[ticket_id], grouped[ticket_id])
            for ticket_id in unique_ids
            if ticket_id in by_id
        ]

    async def create(self, record: StatusRecord) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        TicketStatusTable(
                            ticket_id=record.ticket_id,
                            current_status=record.current_status.value,
                            is_active=record.is_active,
                            notification_pending=record.notification_pending,
                            version=record.version,
                            last_updated=record.last_updated,
                            created_at=record.created_at or record.last_updated,
                        )
                    )
                    # flush the parent row before its history references it
                    await session.flush()
                    for position, entry in enumerate(record.history):
                        session.add(self._entry_to_table(record.ticket_id, position, entry))
        except IntegrityError as exc:
            raise RecordExistsError(f"Status already exists for ticket {record.ticket_id}") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create status for ticket {record.ticket_id}") from exc

    async def save(
        self,
        record: StatusRecord,
        *,
        new_entries: Sequence[HistoryEntry],
        expected_version: int,
    ) -> None:
        first_position = len(record.history) - len(new_entries)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(TicketStatusTable)
                        .where(
                            TicketStatusTable.ticket_id == record.ticket_id,
                            TicketStatusTable.version == expected_version,
                        )
                        .values(
                            current_status=record.current_status.value,
                            is_active=record.is_active,
                            notification_pending=record.notification_pending,
                            version=record.version,
                            last_updated=record.last_updated,
                        )
                    )
                    if result.rowcount != 1:
                        raise StaleRecordError(f"Status for ticket {record.ticket_id} changed concurrently")
                    for offset, entry in enumerate(new_entries):
                        session.add(self._entry_to_table(record.ticket_id, first_position + offset, entry))
        except IntegrityError as exc:
            # another writer already claimed the history position
            raise StaleRecordError(f"Status for ticket {record.ticket_id} changed concurrently") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save status for ticket {record.ticket_id}") from exc

    @staticmethod
    def _entry_to_table(ticket_id: str, position: int, entry: HistoryEntry) -> StatusHistoryTable:
        return StatusHistoryTable(
            ticket_id=ticket_id,
            position=position,
            status=entry.status.value,
            updated_by=entry.updated_by,
            reason=entry.reason,
            timestamp=entry.timestamp,
        )

    @staticmethod
    def _table_to_entry(row: StatusHistoryTable) -> HistoryEntry:
        return HistoryEntry(
            status=TicketStatus(row.status),
            timestamp=_ensure_datetime(row.timestamp),
            updated_by=row.updated_by,
            reason=row.reason,
        )

    @classmethod
    def _table_to_record(
        cls, row: TicketStatusTable, history_rows: Sequence[StatusHistoryTable]
    ) -> StatusRecord:
        return StatusRecord(
            ticket_id=row.ticket_id,
            current_status=TicketStatus(row.current_status),
            history=[cls._table_to_entry(entry) for entry in history_rows],
            last_updated=_ensure_datetime(row.last_updated),
            is_active=row.is_active,
            notification_pending=row.notification_pending,
            version=row.version,
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
