"""Per-identity, per-route fixed-window rate limiter.

Windows are stored through the injected session factory so they survive
restarts and, with a shared DATABASE_URL, are consistent across instances.
Within a process each (identity, route) pair has its own asyncio lock, so
check-and-increment is atomic for that pair and never blocks other pairs.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import weakref
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import RateLimitRule
from .core.errors import RateLimitExceeded
from .core.models import RateLimitDecision, RateLimitWindow
from .sqlmodels import RateLimitWindowRow

logger = logging.getLogger(__name__)


def _to_window(row: RateLimitWindowRow) -> RateLimitWindow:
    return RateLimitWindow(
        identity=row.identity,
        route_key=row.route_key,
        window_start=row.window_start,
        count=row.count,
        limit=row.limit,
        window_seconds=row.window_seconds,
    )


class RateLimiter:
    """Guards expensive routes with a request budget per identity."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rules: dict[str, RateLimitRule],
        clock: Callable[[], float] = time.time,
    ):
        self._session_factory = session_factory
        self._rules = dict(rules)
        self._clock = clock
        # Entries vanish once no request holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    def rule_for(self, route_key: str) -> RateLimitRule:
        try:
            return self._rules[route_key]
        except KeyError:
            raise KeyError(f"No rate limit rule for route '{route_key}'") from None

    def _lock_for(self, identity: str, route_key: str) -> asyncio.Lock:
        key = (identity, route_key)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def check_and_increment(self, identity: str, route_key: str) -> RateLimitDecision:
        """Count one request, or raise RateLimitExceeded when the window is full.

        A window whose end has passed is reset (count 0, start now) before
        the check.
        """
        rule = self.rule_for(route_key)
        async with self._lock_for(identity, route_key):
            now = self._clock()
            async with self._session_factory() as session:
                row = (await session.execute(
                    select(RateLimitWindowRow).where(
                        RateLimitWindowRow.identity == identity,
                        RateLimitWindowRow.route_key == route_key,
                    )
                )).scalar_one_or_none()

                if row is None:
                    row = RateLimitWindowRow(
                        identity=identity,
                        route_key=route_key,
                        window_start=now,
                        window_seconds=rule.window_seconds,
                        count=0,
                        limit=rule.limit,
                    )
                    session.add(row)
                elif now > row.window_start + row.window_seconds:
                    row.window_start = now
                    row.count = 0
                # A changed rule takes effect at the next check
                row.limit = rule.limit
                row.window_seconds = rule.window_seconds

                window = _to_window(row)
                if window.count >= window.limit:
                    await session.rollback()
                    retry_after = max(1, math.ceil(window.reset_at - now))
                    logger.warning(
                        "Rate limit hit: identity=%s route=%s count=%d limit=%d retry_after=%ds",
                        identity, route_key, window.count, window.limit, retry_after,
                    )
                    raise RateLimitExceeded(route_key, retry_after, window.limit)

                row.count += 1
                await session.commit()

        return RateLimitDecision(
            limit=rule.limit,
            remaining=max(0, rule.limit - row.count),
            reset_at=window.reset_at,
        )

    async def peek(self, identity: str, route_key: str) -> RateLimitDecision:
        """Current budget for a pair without consuming any of it."""
        rule = self.rule_for(route_key)
        now = self._clock()
        async with self._session_factory() as session:
            row = (await session.execute(
                select(RateLimitWindowRow).where(
                    RateLimitWindowRow.identity == identity,
                    RateLimitWindowRow.route_key == route_key,
                )
            )).scalar_one_or_none()

        if row is None or now > row.window_start + row.window_seconds:
            return RateLimitDecision(limit=rule.limit, remaining=rule.limit, reset_at=now + rule.window_seconds)
        remaining = max(0, rule.limit - row.count)
        reset_at = row.window_start + row.window_seconds
        return RateLimitDecision(
            allowed=remaining > 0,
            limit=rule.limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after_seconds=0 if remaining else max(1, math.ceil(reset_at - now)),
        )

    async def purge_expired(self) -> int:
        """Delete windows that have ended. Returns the number removed."""
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                delete(RateLimitWindowRow).where(
                    RateLimitWindowRow.window_start + RateLimitWindowRow.window_seconds < now
                )
            )
            await session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("Purged %d expired rate-limit windows", removed)
        return removed
