"""Site Quality MCP Server.

FastMCP server exposing website analysis and per-identity history as MCP
tools, plus the same handlers as plain HTTP routes when run over an HTTP
transport (MCP_TRANSPORT=streamable-http or sse).
Run: site-quality-mcp
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.requests import Request
from starlette.responses import JSONResponse

from .api import ApiResponse, SiteQualityService, build_service
from .config import EngineConfig
from .db import close_db, init_db
from .scheduler import HousekeepingScheduler

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "x-user-id"

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=False)
ANALYZE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False, openWorldHint=True)
DESTRUCTIVE = ToolAnnotations(readOnlyHint=False, destructiveHint=True, idempotentHint=True, openWorldHint=False)

_service: Optional[SiteQualityService] = None
_scheduler: Optional[HousekeepingScheduler] = None
_init_lock = asyncio.Lock()


async def get_service() -> SiteQualityService:
    """Initialize the database and engine once per process."""
    global _service, _scheduler
    async with _init_lock:
        if _service is None:
            config = EngineConfig.from_env()
            session_factory = await init_db(config.database_url)
            _service = build_service(config, session_factory)
            _scheduler = HousekeepingScheduler(
                _service.rate_limiter,
                _service.history,
                retention=timedelta(days=config.history.retention_days),
                interval_minutes=config.sweep_interval_minutes,
            )
            await _scheduler.start()
    return _service


async def shutdown_service():
    """Stop housekeeping and close the database."""
    global _service, _scheduler
    async with _init_lock:
        if _scheduler is not None:
            await _scheduler.stop()
            _scheduler = None
        _service = None
        await close_db()


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Initialize the database and engine, start housekeeping, and tear both down on exit."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    await get_service()
    try:
        yield
    finally:
        await shutdown_service()


mcp = FastMCP(
    "Site Quality",
    instructions="Score any website 0-100 for performance, accessibility, best practices, SEO, security and design modernity, with a ranked list of what to fix.",
    lifespan=lifespan,
)


def _to_json(response: ApiResponse) -> JSONResponse:
    return JSONResponse(response.body, status_code=response.status_code, headers=response.headers)


async def _json_body(request: Request):
    try:
        return await request.json()
    except ValueError:
        return None


# ─── MCP Tools ───────────────────────────────────────────────────────────────


@mcp.tool(annotations=ANALYZE)
async def analyze_website(url: str) -> dict:
    """Analyze a website and return its 0-100 quality score with a ranked issue list.

    Combines an HTTPS check, technology fingerprinting, a Lighthouse audit
    (performance, accessibility, best practices, SEO), an AI design-age
    judgment and on-page heuristics. Sources that fail fall back to neutral
    values instead of failing the analysis.

    Args:
        url: Website to analyze. 'example.com' is treated as 'https://example.com'.
    """
    service = await get_service()
    response = await service.analyze(service.config.mcp_identity, {"url": url})
    return response.body


@mcp.tool(annotations=READ_ONLY)
async def get_search_history() -> dict:
    """Recent searches and analyses, newest first."""
    service = await get_service()
    response = await service.get_history(service.config.mcp_identity)
    return response.body


@mcp.tool(annotations=DESTRUCTIVE)
async def clear_search_history() -> dict:
    """Delete all recorded searches and analyses. Safe to call when already empty."""
    service = await get_service()
    response = await service.clear_history(service.config.mcp_identity)
    return response.body


@mcp.tool()
async def record_search(term: str, location: str = "", industry: str = "", count: int = 0) -> dict:
    """Record a business search in the history.

    Args:
        term: Search term, e.g. 'plumber'.
        location: City or region searched.
        industry: Industry filter used.
        count: Number of results requested.
    """
    service = await get_service()
    response = await service.record_search(
        service.config.mcp_identity,
        {"term": term, "location": location, "industry": industry, "count": count},
    )
    return response.body


# ─── HTTP Routes ─────────────────────────────────────────────────────────────


@mcp.custom_route("/analyze", methods=["POST"])
async def analyze_route(request: Request) -> JSONResponse:
    service = await get_service()
    return _to_json(await service.analyze(request.headers.get(IDENTITY_HEADER), await _json_body(request)))


@mcp.custom_route("/history", methods=["GET", "POST", "DELETE"])
async def history_route(request: Request) -> JSONResponse:
    service = await get_service()
    identity = request.headers.get(IDENTITY_HEADER)
    if request.method == "GET":
        return _to_json(await service.get_history(identity))
    if request.method == "DELETE":
        return _to_json(await service.clear_history(identity))
    return _to_json(await service.record_search(identity, await _json_body(request)))


def main():
    """Entry point for the CLI command."""
    mcp.run(transport=os.environ.get("MCP_TRANSPORT", "stdio"))


if __name__ == "__main__":
    main()
