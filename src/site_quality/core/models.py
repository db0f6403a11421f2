"""Models passed between the fetcher, extractors, scorer and API handlers.

Pages and signals are frozen once built: an extractor's result cannot
change after it returns.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalCategory(str, Enum):
    """Quality dimensions a signal can speak to."""

    SECURITY = "security"
    TECHNOLOGY = "technology"
    AUDIT = "audit"
    DESIGN = "design"
    ON_PAGE = "on_page"


class AuditCategory(str, Enum):
    """Categories reported by the page-audit service."""

    PERFORMANCE = "performance"
    ACCESSIBILITY = "accessibility"
    BEST_PRACTICES = "best_practices"
    SEO = "seo"


class Status(str, Enum):
    """Categorical verdict for a signal."""

    GOOD = "good"
    WARNING = "warning"
    BAD = "bad"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DesignAgeCategory(str, Enum):
    """How old a design feels, from the design year estimate."""

    MODERN = "modern"
    AGING = "aging"
    DATED = "dated"
    OUTDATED = "outdated"
    UNKNOWN = "unknown"


class AnalysisRequest(BaseModel):
    """One call to analyze a URL on behalf of an identity."""

    model_config = ConfigDict(frozen=True)

    url: str
    identity: str
    requested_at: datetime = Field(default_factory=utcnow)


class FetchedPage(BaseModel):
    """Raw page content returned by the fetcher. Never persisted."""

    model_config = ConfigDict(frozen=True)

    requested_url: str
    final_url: str
    html: str
    headers: dict[str, str] = Field(default_factory=dict, description="Lower-cased response headers")
    status_code: int = 200
    elapsed_ms: Optional[float] = None

    @property
    def is_https(self) -> bool:
        return self.final_url.lower().startswith("https://")


class Issue(BaseModel):
    """A single problem found on the page."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    severity: Severity
    score: float = Field(ge=0.0, le=1.0, description="Originating score, 0 = worst")
    description: str = ""
    source: str = ""


class SignalResult(BaseModel):
    """A typed partial assessment produced once per extractor per request."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Name of the extractor that produced this signal")
    category: SignalCategory
    score: Optional[float] = Field(None, ge=0.0, le=1.0)
    status: Optional[Status] = None
    category_scores: dict[AuditCategory, float] = Field(default_factory=dict)
    metrics: dict[str, Any] = Field(default_factory=dict)
    issues: list[Issue] = Field(default_factory=list)
    technologies: list[str] = Field(default_factory=list)
    error: Optional[str] = Field(None, description="Error kind when this is a neutral default")
    is_default: bool = False


class CompositeScore(BaseModel):
    """The aggregate for one URL, derived only from its signal set."""

    url: str
    overall_score: int = Field(ge=0, le=100)
    category_scores: dict[str, float] = Field(default_factory=dict)
    category_status: dict[str, Status] = Field(default_factory=dict)
    technologies: list[str] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)
    degraded_sources: list[str] = Field(default_factory=list, description="Extractors that fell back to defaults")


class RateLimitWindow(BaseModel):
    """Request counter for one (identity, route) pair."""

    identity: str
    route_key: str
    window_start: float
    count: int = Field(ge=0)
    limit: int = Field(gt=0)
    window_seconds: float = Field(gt=0)

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_seconds

    def is_expired(self, now: float) -> bool:
        return now > self.reset_at


class RateLimitDecision(BaseModel):
    """Outcome of a successful rate-limit check."""

    allowed: bool = True
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int = 0

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


class HistoryEntry(BaseModel):
    """A past search or analysis for one identity."""

    identity: str
    term: str
    location: str = ""
    industry: str = ""
    count: int = 0
    timestamp: datetime = Field(default_factory=utcnow)

    def same_query(self, other: HistoryEntry) -> bool:
        return (
            self.term == other.term
            and self.location == other.location
            and self.industry == other.industry
            and self.count == other.count
        )


class DesignAssessment(BaseModel):
    """Shape the completion service must return for a design judgment."""

    score: float = Field(ge=0, le=100)
    designYear: int = Field(ge=1980, le=2100)
    analysis: str
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class AuditCheck(BaseModel):
    """One individual check from the page-audit service."""

    id: str
    title: str
    description: str = ""
    score: Optional[float] = None
    display_value: Optional[str] = None


class AuditReport(BaseModel):
    """Category scores and checks returned by the page-audit service."""

    url: str
    category_scores: dict[AuditCategory, float]
    checks: list[AuditCheck] = Field(default_factory=list)
    metrics: dict[str, Optional[str]] = Field(default_factory=dict)

    def failing_checks(self, threshold: float = 0.9, limit: int = 10) -> list[AuditCheck]:
        """Checks scoring below ``threshold``, worst first, at most ``limit``."""
        failing = [c for c in self.checks if c.score is not None and c.score < threshold]
        failing.sort(key=lambda c: (c.score, c.id))
        return failing[:limit]
