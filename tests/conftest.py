"""
Pytest fixtures for site quality tests. Each test gets a fresh temporary
SQLite database and a controllable clock.
"""

from __future__ import annotations

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from site_quality.api import build_service
from site_quality.config import EngineConfig, RateLimitRule
from site_quality.core.extractors import SecurityExtractor, SignalExtractor, TechFingerprintExtractor
from site_quality.core.fetcher import Fetcher
from site_quality.core.models import AuditCategory, FetchedPage, SignalCategory, SignalResult
from site_quality.db import create_engine_for
from site_quality.sqlmodels import Base


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a throwaway SQLite file with all tables created."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


def make_page(url: str = "https://example.com/", html: str = "<html></html>", headers: dict | None = None) -> FetchedPage:
    return FetchedPage(requested_url=url, final_url=url, html=html, headers=headers or {})


@pytest.fixture
def page_factory():
    return make_page


PAGE_HTML = '<html><head><title>Acme</title></head><body><script src="/wp-content/x.js"></script></body></html>'


class FixedAudit(SignalExtractor):
    """Audit stub reporting the same score for every category."""

    name = "audit"
    category = SignalCategory.AUDIT

    def __init__(self, score: float = 0.95):
        super().__init__()
        self.score = score
        self.calls = 0

    async def extract(self, page):
        self.calls += 1
        return SignalResult(
            source=self.name,
            category=self.category,
            category_scores={category: self.score for category in AuditCategory},
        )


def page_transport(final_scheme: str = "https", status: int = 200) -> httpx.MockTransport:
    """Serve PAGE_HTML, redirecting any other scheme to ``final_scheme``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.scheme != final_scheme:
            return httpx.Response(301, headers={"Location": str(request.url.copy_with(scheme=final_scheme))})
        return httpx.Response(status, text=PAGE_HTML)

    return httpx.MockTransport(handler)


def make_service(session_factory, transport=None, mcp_identity="local", **limits):
    """Service over the test database with stub audit and mocked page fetches.

    ``limits`` overrides rate limits by route, e.g. ``history_write=1``.
    """
    rules = dict(EngineConfig().rate_limits)
    for route, limit in limits.items():
        rules[route.replace("_", ":")] = RateLimitRule(limit=limit, window_seconds=300)
    return build_service(
        EngineConfig(rate_limits=rules, mcp_identity=mcp_identity),
        session_factory,
        fetcher=Fetcher(transport=transport or page_transport()),
        extractors=[SecurityExtractor(), TechFingerprintExtractor(), FixedAudit()],
    )
