"""SQLite-backed thread store (SQLAlchemy async ORM over aiosqlite)."""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    delete,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from agent_runtime.errors import AlreadyExistsError, NotFoundError
from agent_runtime.threads.store import ThreadStore, generate_event_id
from agent_runtime.threads.types import (
    EventPayload,
    EventType,
    Thread,
    ThreadEvent,
    payload_from_dict,
    utcnow,
)


class Base(DeclarativeBase):
    pass


class ThreadRow(Base):
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)  # ISO-8601, UTC
    next_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class EventRow(Base):
    __tablename__ = "thread_events"
    __table_args__ = (UniqueConstraint("thread_id", "sequence"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    thread_id: Mapped[str] = mapped_column(
        String, ForeignKey("threads.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[str] = mapped_column(String, nullable=False)
    data: Mapped[str] = mapped_column(Text, nullable=False)  # JSON-serialized payload
    compacted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


def _to_event(row: EventRow) -> ThreadEvent:
    event_type = EventType(row.type)
    return ThreadEvent(
        id=row.id,
        thread_id=row.thread_id,
        type=event_type,
        sequence=row.sequence,
        timestamp=datetime.fromisoformat(row.timestamp),
        data=payload_from_dict(event_type, json.loads(row.data)),
        compacted=row.compacted,
    )


class SqliteThreadStore(ThreadStore):
    """Persists threads and events; sequence numbers live on the thread row.

    The counter is read and bumped in the same transaction as the event
    insert, under a per-thread lock, and the ``(thread_id, sequence)``
    unique constraint backs that up at the database level.
    """

    def __init__(self, database_url: str) -> None:
        kwargs: dict = {}
        if ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database.
            kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        self._engine: AsyncEngine = create_async_engine(database_url, **kwargs)
        self._session = async_sessionmaker(self._engine, expire_on_commit=False)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def create_thread(self, thread_id: str) -> Thread:
        created_at = utcnow()
        async with self._session() as session:
            session.add(
                ThreadRow(id=thread_id, created_at=created_at.isoformat(), next_sequence=1)
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                raise AlreadyExistsError("Thread", thread_id) from exc
        return Thread(id=thread_id, created_at=created_at)

    async def get_thread(self, thread_id: str) -> Thread | None:
        async with self._session() as session:
            row = await session.get(ThreadRow, thread_id)
            if row is None:
                return None
            events = await self._load_events(session, thread_id)
        return Thread(
            id=row.id,
            created_at=datetime.fromisoformat(row.created_at),
            events=tuple(events),
        )

    async def list_threads(self) -> list[str]:
        async with self._session() as session:
            result = await session.execute(
                select(ThreadRow.id).order_by(ThreadRow.created_at)
            )
            return list(result.scalars().all())

    async def append_event(
        self, thread_id: str, event_type: EventType, data: EventPayload
    ) -> ThreadEvent:
        async with self._locks[thread_id]:
            async with self._session() as session:
                async with session.begin():
                    thread = await session.get(ThreadRow, thread_id)
                    if thread is None:
                        raise NotFoundError("Thread", thread_id)
                    sequence = thread.next_sequence
                    thread.next_sequence = sequence + 1
                    event = ThreadEvent(
                        id=generate_event_id(),
                        thread_id=thread_id,
                        type=event_type,
                        sequence=sequence,
                        timestamp=utcnow(),
                        data=data,
                    )
                    session.add(
                        EventRow(
                            id=event.id,
                            thread_id=thread_id,
                            sequence=sequence,
                            type=event_type.value,
                            timestamp=event.timestamp.isoformat(),
                            data=json.dumps(data.to_dict()),
                            compacted=False,
                        )
                    )
        return event

    async def get_events(self, thread_id: str) -> list[ThreadEvent]:
        async with self._session() as session:
            if await session.get(ThreadRow, thread_id) is None:
                raise NotFoundError("Thread", thread_id)
            return await self._load_events(session, thread_id)

    async def replace_events(self, thread_id: str, events: list[ThreadEvent]) -> None:
        async with self._locks[thread_id]:
            async with self._session() as session:
                async with session.begin():
                    for event in events:
                        row = await session.get(EventRow, event.id)
                        if row is None or row.thread_id != thread_id:
                            raise NotFoundError("Event", event.id)
                        if row.sequence != event.sequence:
                            raise ValueError(
                                f"Replacement for {event.id} changes its sequence number"
                            )
                        row.data = json.dumps(event.data.to_dict())
                        row.compacted = event.compacted

    async def clear_events(self, thread_id: str) -> None:
        async with self._locks[thread_id]:
            async with self._session() as session:
                async with session.begin():
                    if await session.get(ThreadRow, thread_id) is None:
                        raise NotFoundError("Thread", thread_id)
                    await session.execute(
                        delete(EventRow).where(EventRow.thread_id == thread_id)
                    )

    @staticmethod
    async def _load_events(session, thread_id: str) -> list[ThreadEvent]:
        result = await session.execute(
            select(EventRow)
            .where(EventRow.thread_id == thread_id)
            .order_by(EventRow.sequence)
        )
        return [_to_event(row) for row in result.scalars().all()]
