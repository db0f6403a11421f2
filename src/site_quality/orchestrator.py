"""Request lifecycle for one website analysis.

PENDING -> RATE_CHECKED -> FETCHING -> EXTRACTING -> AGGREGATING -> COMPLETED
with FAILED reachable from every non-terminal state. Nothing is retried here;
a caller retries by sending a new request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .config import ROUTE_ANALYZE, EngineConfig
from .core import scoring
from .core.errors import AggregationFailure, EngineError, FetchError, InputError, RateLimitExceeded
from .core.extractors import SignalExtractor, build_default_extractors, run_extractor
from .core.fetcher import Fetcher, normalize_url
from .core.models import AnalysisRequest, CompositeScore, HistoryEntry, RateLimitDecision, SignalResult
from .history import HistoryStore
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)

ANALYSIS_INDUSTRY = "website-analysis"


class RequestState(str, Enum):
    PENDING = "pending"
    RATE_CHECKED = "rate_checked"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RequestState.COMPLETED, RequestState.FAILED})


@dataclass
class AnalysisOutcome:
    """Where a request ended up, and why."""

    request: AnalysisRequest
    state: RequestState = RequestState.PENDING
    score: Optional[CompositeScore] = None
    error: Optional[EngineError] = None
    rate_limit: Optional[RateLimitDecision] = None
    signals: list[SignalResult] = field(default_factory=list)
    transitions: list[RequestState] = field(default_factory=lambda: [RequestState.PENDING])

    @property
    def failure_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None

    def advance(self, state: RequestState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Request already {self.state.value}, cannot move to {state.value}")
        logger.debug("Analysis of %s: %s -> %s", self.request.url, self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    def fail(self, error: EngineError) -> AnalysisOutcome:
        self.error = error
        self.advance(RequestState.FAILED)
        return self


class Orchestrator:
    """Sequences rate limiting, fetching, extraction, scoring and history.

    One orchestrator per process: its semaphore bounds in-flight extractor
    calls across every concurrent request.
    """

    def __init__(
        self,
        config: EngineConfig,
        rate_limiter: RateLimiter,
        history: HistoryStore,
        fetcher: Optional[Fetcher] = None,
        extractors: Optional[list[SignalExtractor]] = None,
    ):
        self.config = config
        self.rate_limiter = rate_limiter
        self.history = history
        self.fetcher = fetcher or Fetcher(
            timeout=config.fetch.timeout_seconds,
            connect_timeout=config.fetch.connect_timeout_seconds,
            max_redirects=config.fetch.max_redirects,
            user_agent=config.fetch.user_agent,
        )
        self.extractors = extractors if extractors is not None else build_default_extractors(config.extractors)
        self._semaphore = asyncio.Semaphore(config.max_concurrent_extractors)

    async def extract_all(self, page) -> list[SignalResult]:
        """Run every extractor concurrently; each returns a signal or its neutral default."""
        return list(await asyncio.gather(*(run_extractor(e, page, self._semaphore) for e in self.extractors)))

    async def run(self, request: AnalysisRequest) -> AnalysisOutcome:
        """Drive one request to COMPLETED or FAILED."""
        outcome = AnalysisOutcome(request=request)

        try:
            url = normalize_url(request.url)
        except InputError as exc:
            logger.info("Rejected analysis request from %s: %s", request.identity, exc)
            return outcome.fail(exc)

        try:
            outcome.rate_limit = await self.rate_limiter.check_and_increment(request.identity, ROUTE_ANALYZE)
        except RateLimitExceeded as exc:
            return outcome.fail(exc)
        outcome.advance(RequestState.RATE_CHECKED)

        outcome.advance(RequestState.FETCHING)
        try:
            page = await self.fetcher.fetch(url)
        except FetchError as exc:
            logger.warning("Fetch failed for %s: %s (%s)", url, exc.kind, exc)
            return outcome.fail(exc)

        outcome.advance(RequestState.EXTRACTING)
        outcome.signals = await self.extract_all(page)

        outcome.advance(RequestState.AGGREGATING)
        try:
            outcome.score = scoring.combine(page.final_url, outcome.signals, self.config.scoring)
        except AggregationFailure as exc:
            logger.error("Aggregation failed for %s: %s", url, exc, exc_info=True)
            return outcome.fail(exc)
        except Exception as exc:
            logger.error("Unexpected aggregation error for %s: %s", url, exc, exc_info=True)
            failure = AggregationFailure(str(exc))
            failure.__cause__ = exc
            return outcome.fail(failure)

        try:
            await self.history.append(
                request.identity,
                HistoryEntry(
                    identity=request.identity,
                    term=page.final_url,
                    industry=ANALYSIS_INDUSTRY,
                    count=outcome.score.overall_score,
                ),
            )
        except Exception as exc:
            # The score is already computed; a history write must not discard it
            logger.error("Failed to record history for %s: %s", request.identity, exc, exc_info=True)

        outcome.advance(RequestState.COMPLETED)
        logger.info(
            "Analyzed %s for %s: overall=%d issues=%d degraded=%s",
            page.final_url, request.identity, outcome.score.overall_score,
            len(outcome.score.issues), ",".join(outcome.score.degraded_sources) or "none",
        )
        return outcome
