"""Request handlers shared by the HTTP routes and the MCP tools.

Handlers never raise: every outcome becomes an ``ApiResponse`` whose body is
``{"success": True, ...}`` or ``{"success": False, "error": <generic message>}``.
Diagnostic detail goes to the log only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import ROUTE_HISTORY_READ, ROUTE_HISTORY_WRITE, EngineConfig
from .core.errors import EngineError, InputError, InvalidURL, RateLimitExceeded, Unauthorized
from .core.models import AnalysisRequest, HistoryEntry, RateLimitDecision
from .history import HistoryStore
from .orchestrator import Orchestrator
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


class SearchRecord(BaseModel):
    """Body of a history write from the directory-search collaborator."""

    term: str = Field(min_length=1, max_length=500)
    location: str = Field("", max_length=255)
    industry: str = Field("", max_length=255)
    count: int = Field(0, ge=0)


def _error_response(error: EngineError, decision: Optional[RateLimitDecision] = None) -> ApiResponse:
    headers = decision.headers() if decision else {}
    if isinstance(error, RateLimitExceeded):
        headers["Retry-After"] = str(error.retry_after_seconds)
    return ApiResponse(error.status_code, error.to_dict(), headers)


def _require_identity(identity: Optional[str]) -> str:
    if identity is None or not identity.strip():
        raise Unauthorized("missing identity")
    return identity.strip()


class SiteQualityService:
    """The engine's outward face: analysis plus history, all rate limited."""

    def __init__(
        self,
        config: EngineConfig,
        orchestrator: Orchestrator,
        rate_limiter: RateLimiter,
        history: HistoryStore,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.rate_limiter = rate_limiter
        self.history = history

    async def analyze(self, identity: Optional[str], payload: Any) -> ApiResponse:
        """POST /analyze {url}"""
        try:
            identity = _require_identity(identity)
            if not isinstance(payload, dict) or not isinstance(payload.get("url"), str):
                raise InvalidURL("URL is required")
        except EngineError as exc:
            return _error_response(exc)

        try:
            outcome = await self.orchestrator.run(AnalysisRequest(url=payload["url"], identity=identity))
        except Exception as exc:
            logger.error("Failed to analyze %s for %s: %s", payload["url"], identity, exc, exc_info=True)
            return ApiResponse(500, {"success": False, "error": "Failed to analyze website"})
        if outcome.error is not None:
            return _error_response(outcome.error, outcome.rate_limit)

        headers = outcome.rate_limit.headers() if outcome.rate_limit else {}
        return ApiResponse(200, {"success": True, "score": outcome.score.model_dump(mode="json")}, headers)

    async def get_history(self, identity: Optional[str]) -> ApiResponse:
        """GET /history"""
        try:
            identity = _require_identity(identity)
            decision = await self.rate_limiter.check_and_increment(identity, ROUTE_HISTORY_READ)
        except EngineError as exc:
            return _error_response(exc)
        except Exception as exc:
            logger.error("Rate limit check failed for %s: %s", identity, exc, exc_info=True)
            return ApiResponse(500, {"success": False, "error": "Failed to get search history"})

        try:
            entries = await self.history.list(identity)
        except Exception as exc:
            logger.error("Failed to get history for %s: %s", identity, exc, exc_info=True)
            return ApiResponse(500, {"success": False, "error": "Failed to get search history"}, decision.headers())
        return ApiResponse(
            200,
            {"success": True, "history": [e.model_dump(mode="json", exclude={"identity"}) for e in entries]},
            decision.headers(),
        )

    async def clear_history(self, identity: Optional[str]) -> ApiResponse:
        """DELETE /history"""
        try:
            identity = _require_identity(identity)
            decision = await self.rate_limiter.check_and_increment(identity, ROUTE_HISTORY_WRITE)
        except EngineError as exc:
            return _error_response(exc)
        except Exception as exc:
            logger.error("Rate limit check failed for %s: %s", identity, exc, exc_info=True)
            return ApiResponse(500, {"success": False, "error": "Failed to clear search history"})

        try:
            await self.history.clear(identity)
        except Exception as exc:
            logger.error("Failed to clear history for %s: %s", identity, exc, exc_info=True)
            return ApiResponse(500, {"success": False, "error": "Failed to clear search history"}, decision.headers())
        return ApiResponse(200, {"success": True}, decision.headers())

    async def record_search(self, identity: Optional[str], payload: Any) -> ApiResponse:
        """POST /history {term, location, industry, count}"""
        try:
            identity = _require_identity(identity)
            try:
                record = SearchRecord.model_validate(payload)
            except ValidationError as exc:
                raise InputError(str(exc)) from exc
            decision = await self.rate_limiter.check_and_increment(identity, ROUTE_HISTORY_WRITE)
        except EngineError as exc:
            return _error_response(exc)
        except Exception as exc:
            logger.error("Rate limit check failed for %s: %s", identity, exc, exc_info=True)
            return ApiResponse(500, {"success": False, "error": "Failed to save search history"})

        try:
            entry = await self.history.append(identity, HistoryEntry(identity=identity, **record.model_dump()))
        except Exception as exc:
            logger.error("Failed to save history for %s: %s", identity, exc, exc_info=True)
            return ApiResponse(500, {"success": False, "error": "Failed to save search history"}, decision.headers())
        return ApiResponse(200, {"success": True, "entry": entry.model_dump(mode="json", exclude={"identity"})}, decision.headers())


def build_service(config: EngineConfig, session_factory: async_sessionmaker[AsyncSession], **orchestrator_kwargs) -> SiteQualityService:
    """Wire the rate limiter, history store and orchestrator around one session factory."""
    rate_limiter = RateLimiter(session_factory, config.rate_limits)
    history = HistoryStore(session_factory, max_items=config.history.max_items)
    orchestrator = Orchestrator(config, rate_limiter, history, **orchestrator_kwargs)
    return SiteQualityService(config, orchestrator, rate_limiter, history)
