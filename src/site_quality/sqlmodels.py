"""SQLAlchemy models for rate-limit windows and per-identity history.

These are the only long-lived mutable state in the engine. Raw page HTML is
never stored.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RateLimitWindowRow(Base):
    """Request counter for one (identity, route) pair."""

    __tablename__ = "rate_limit_windows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(255), nullable=False)
    route_key: Mapped[str] = mapped_column(String(100), nullable=False)
    window_start: Mapped[float] = mapped_column(Float, nullable=False)
    window_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    limit: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("identity", "route_key", name="uq_rate_limit_identity_route"),
        Index("ix_rate_limit_window_end", "window_start"),
    )


class HistoryEntryRow(Base):
    """One past search or analysis. Newest rows have the highest id."""

    __tablename__ = "history_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(255), nullable=False)
    term: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="")
    industry: Mapped[str] = mapped_column(String(255), default="")
    count: Mapped[int] = mapped_column(Integer, default=0)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_history_identity_id", "identity", "id"),
        Index("ix_history_timestamp", "timestamp"),
    )
