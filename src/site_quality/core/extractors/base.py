"""Signal extractor interface.

Every extractor exposes one coroutine, ``extract(page)``, and a neutral
``default_result`` used whenever extraction fails or runs out of time.
``run_extractor`` is the boundary that enforces both: nothing an extractor
raises ever reaches the scorer.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import EngineError
from ..models import FetchedPage, Issue, Severity, SignalCategory, SignalResult, Status

logger = logging.getLogger(__name__)


def status_for(score: float, good_threshold: float = 0.9, warning_threshold: float = 0.4) -> Status:
    """Map a [0,1] score to good (> good), warning (> warning) or bad."""
    if score > good_threshold:
        return Status.GOOD
    if score > warning_threshold:
        return Status.WARNING
    return Status.BAD


def severity_for(score: float) -> Severity:
    if score <= 0.4:
        return Severity.HIGH
    if score < 0.9:
        return Severity.MEDIUM
    return Severity.LOW


class SignalExtractor(ABC):
    """Produces exactly one SignalResult for a fetched page."""

    name: str = "extractor"
    category: SignalCategory
    timeout: float = 5.0

    def __init__(self, timeout: Optional[float] = None):
        if timeout is not None:
            self.timeout = timeout

    @abstractmethod
    async def extract(self, page: FetchedPage) -> SignalResult:
        """Analyze ``page``. May raise; the caller converts failures to defaults."""

    def default_result(self, page: FetchedPage, error: str) -> SignalResult:
        """Neutral signal returned when ``extract`` fails or times out."""
        return SignalResult(
            source=self.name,
            category=self.category,
            score=0.5,
            status=Status.WARNING,
            error=error,
            is_default=True,
        )

    def issue(self, issue_id: str, title: str, score: float, description: str = "", severity: Optional[Severity] = None) -> Issue:
        return Issue(
            id=issue_id,
            title=title,
            severity=severity or severity_for(score),
            score=score,
            description=description,
            source=self.name,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} timeout={self.timeout}>"


async def run_extractor(
    extractor: SignalExtractor,
    page: FetchedPage,
    semaphore: Optional[asyncio.Semaphore] = None,
) -> SignalResult:
    """Run one extractor within its time budget, never raising.

    The budget covers waiting for a ``semaphore`` slot as well as the call
    itself. Cancellation of the caller is not swallowed.
    """

    async def _guarded() -> SignalResult:
        if semaphore is None:
            return await extractor.extract(page)
        async with semaphore:
            return await extractor.extract(page)

    try:
        return await asyncio.wait_for(_guarded(), timeout=extractor.timeout)
    except asyncio.TimeoutError:
        logger.warning("Extractor %s timed out after %.1fs for %s", extractor.name, extractor.timeout, page.final_url)
        return extractor.default_result(page, "timeout")
    except EngineError as exc:
        logger.warning("Extractor %s failed for %s: %s (%s)", extractor.name, page.final_url, exc.kind, exc)
        return extractor.default_result(page, exc.kind)
    except Exception as exc:
        logger.error("Extractor %s crashed for %s: %s", extractor.name, page.final_url, exc, exc_info=True)
        return extractor.default_result(page, "extractor_failure")
