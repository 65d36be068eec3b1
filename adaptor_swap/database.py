"""
Local log of observed swap records.

Relays deliver records late, out of order and more than once. This store
keeps one copy of each, remembers the order we first saw them in, and hands
back everything linked to a proposal so the reducer can recompute its state.
Nothing here interprets the records beyond pulling out linkage tags.
"""

import structlog
from sqlalchemy import Column, Index, Integer, String, Text, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import config
from .errors import SwapError
from .events import parse_proposal
from .models import Event, Kind

logger = structlog.get_logger()
Base = declarative_base()


class RecordRow(Base):
    """
    One observed record.

    ``seq`` is the log-assigned arrival order; the raw JSON is kept verbatim
    so the record can be re-validated and re-broadcast.
    """

    __tablename__ = "records"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(64), nullable=False)
    sig = Column(String(128), nullable=False)
    pubkey = Column(String(64), nullable=False)
    kind = Column(Integer, nullable=False)
    created_at = Column(Integer, nullable=False)

    # Linkage: the proposal this record hangs off, if any
    proposal_ref = Column(String(64), nullable=True)

    raw_json = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_event_sig", "event_id", "sig", unique=True),
        Index("idx_proposal_ref", "proposal_ref"),
        Index("idx_kind", "kind"),
    )


def _proposal_ref(event: Event) -> str | None:
    if event.kind == Kind.ADAPTOR:
        return event.first_tag("E")
    if event.kind in (Kind.NONCE, Kind.DELETION):
        return event.first_tag("e")
    return None


class RecordStore:
    """
    Async persistence for observed records.

    Adding a record that is already stored is a no-op.
    """

    def __init__(self, database_url: str | None = None):
        """Initialize database connection."""
        self.engine = create_async_engine(
            database_url or config.database_url, echo=False, pool_pre_ping=True
        )
        self.async_session = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init(self):
        """Initialize database schema."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Record store initialized")

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    async def add(self, event: Event) -> bool:
        """Store a record. Returns False if it was already present."""
        async with self.async_session() as session:
            existing = await session.execute(
                select(RecordRow.seq).where(
                    RecordRow.event_id == event.id, RecordRow.sig == event.sig
                )
            )
            if existing.first() is not None:
                return False

            session.add(
                RecordRow(
                    event_id=event.id,
                    sig=event.sig,
                    pubkey=event.pubkey,
                    kind=event.kind,
                    created_at=event.created_at,
                    proposal_ref=_proposal_ref(event),
                    raw_json=event.model_dump_json(),
                )
            )
            await session.commit()

        logger.debug("Stored record", event_id=event.id, kind=event.kind)
        return True

    async def add_many(self, events: list[Event]) -> int:
        added = 0
        for event in events:
            if await self.add(event):
                added += 1
        return added

    async def get(self, event_id: str) -> Event | None:
        """Get the first-seen copy of a record by id."""
        async with self.async_session() as session:
            result = await session.execute(
                select(RecordRow.raw_json)
                .where(RecordRow.event_id == event_id)
                .order_by(RecordRow.seq)
                .limit(1)
            )
            row = result.first()
            if row:
                return Event.model_validate_json(row[0])
            return None

    async def _rows(self, statement) -> list[Event]:
        async with self.async_session() as session:
            result = await session.execute(statement)
            return [Event.model_validate_json(row[0]) for row in result]

    async def records_for(self, proposal_id: str) -> list[Event]:
        """
        The proposal plus every stored record that links to it.

        Settlement messages are found by their content-addressed ids, which
        follow from the proposal itself.
        """
        events = await self._rows(
            select(RecordRow.raw_json)
            .where(
                (RecordRow.event_id == proposal_id)
                | (RecordRow.proposal_ref == proposal_id)
            )
            .order_by(RecordRow.seq)
        )

        proposal_event = next((e for e in events if e.id == proposal_id), None)
        if proposal_event is None:
            return events

        try:
            terms = parse_proposal(proposal_event).terms()
        except SwapError as e:
            logger.debug("Proposal has no settlement ids", proposal_id=proposal_id, reason=str(e))
            return events

        events += await self._rows(
            select(RecordRow.raw_json)
            .where(RecordRow.event_id.in_([terms.give_id, terms.take_id]))
            .order_by(RecordRow.seq)
        )
        return events

    async def list_proposals(self, pubkey: str | None = None, limit: int = 20) -> list[Event]:
        """Recent proposals, optionally only those involving ``pubkey``."""
        statement = (
            select(RecordRow.raw_json)
            .where(RecordRow.kind == int(Kind.PROPOSAL))
            .order_by(RecordRow.created_at.desc())
        )
        events = await self._rows(statement)
        if pubkey:
            events = [e for e in events if e.pubkey == pubkey or pubkey in e.tag_values("p")]
        return events[:limit]
