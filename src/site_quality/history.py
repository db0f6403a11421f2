"""Capped per-identity history of searches and analyses.

Each identity keeps at most ``max_items`` entries; appending past the cap
evicts the oldest. Mutations for one identity are serialized by a
per-identity asyncio lock, so different identities never contend.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.models import HistoryEntry, utcnow
from .sqlmodels import HistoryEntryRow

logger = logging.getLogger(__name__)


def _to_entry(row: HistoryEntryRow) -> HistoryEntry:
    timestamp = row.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return HistoryEntry(
        identity=row.identity,
        term=row.term,
        location=row.location or "",
        industry=row.industry or "",
        count=row.count or 0,
        timestamp=timestamp,
    )


class HistoryStore:
    """Newest-first log of past requests, capped per identity."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_items: int = 10):
        if max_items <= 0:
            raise ValueError("max_items must be positive")
        self._session_factory = session_factory
        self.max_items = max_items
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        return lock

    async def append(self, identity: str, entry: HistoryEntry) -> HistoryEntry:
        """Insert ``entry`` at the head of ``identity``'s history.

        An existing entry for the same query (term, location, industry and
        count) is removed first, so repeating a query moves it to the head
        instead of duplicating it. Entries beyond the cap are evicted.
        """
        if entry.identity != identity:
            entry = entry.model_copy(update={"identity": identity})

        async with self._lock_for(identity):
            async with self._session_factory() as session:
                await session.execute(
                    delete(HistoryEntryRow).where(
                        HistoryEntryRow.identity == identity,
                        HistoryEntryRow.term == entry.term,
                        HistoryEntryRow.location == entry.location,
                        HistoryEntryRow.industry == entry.industry,
                        HistoryEntryRow.count == entry.count,
                    )
                )
                session.add(HistoryEntryRow(
                    identity=identity,
                    term=entry.term,
                    location=entry.location,
                    industry=entry.industry,
                    count=entry.count,
                    timestamp=entry.timestamp,
                ))
                await session.flush()

                overflow = (await session.execute(
                    select(HistoryEntryRow.id)
                    .where(HistoryEntryRow.identity == identity)
                    .order_by(HistoryEntryRow.id.desc())
                    .offset(self.max_items)
                )).scalars().all()
                if overflow:
                    await session.execute(delete(HistoryEntryRow).where(HistoryEntryRow.id.in_(overflow)))
                    logger.debug("Evicted %d history entries for %s", len(overflow), identity)
                await session.commit()
        return entry

    async def list(self, identity: str) -> list[HistoryEntry]:
        """Entries for ``identity``, newest first, at most ``max_items``."""
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(HistoryEntryRow)
                .where(HistoryEntryRow.identity == identity)
                .order_by(HistoryEntryRow.id.desc())
                .limit(self.max_items)
            )).scalars().all()
        return [_to_entry(r) for r in rows]

    async def clear(self, identity: str) -> int:
        """Remove every entry for ``identity``. Clearing an empty history is a no-op."""
        async with self._lock_for(identity):
            async with self._session_factory() as session:
                result = await session.execute(delete(HistoryEntryRow).where(HistoryEntryRow.identity == identity))
                await session.commit()
        removed = result.rowcount or 0
        logger.info("Cleared %d history entries for %s", removed, identity)
        return removed

    async def purge_older_than(self, retention: timedelta, now: datetime | None = None) -> int:
        """Delete entries older than ``retention`` across all identities."""
        cutoff = (now or utcnow()) - retention
        async with self._session_factory() as session:
            result = await session.execute(delete(HistoryEntryRow).where(HistoryEntryRow.timestamp < cutoff))
            await session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("Purged %d history entries older than %s", removed, retention)
        return removed
