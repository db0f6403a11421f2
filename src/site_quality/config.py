"""Engine configuration.

Every weight, threshold, limit and timeout lives here with its default.
Values are validated when the model is built, so a bad weight table fails at
startup rather than producing out-of-range scores later.
"""

from __future__ import annotations

import math
import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .core.fetcher import DEFAULT_USER_AGENT
from .core.models import AuditCategory

ROUTE_ANALYZE = "analyze"
ROUTE_HISTORY_READ = "history:read"
ROUTE_HISTORY_WRITE = "history:write"


class RateLimitRule(BaseModel):
    """At most ``limit`` requests per ``window_seconds`` per identity."""

    limit: int = Field(gt=0)
    window_seconds: float = Field(gt=0)


def _default_rules() -> dict[str, RateLimitRule]:
    return {
        ROUTE_ANALYZE: RateLimitRule(limit=100, window_seconds=15 * 60),
        ROUTE_HISTORY_READ: RateLimitRule(limit=100, window_seconds=5 * 60),
        ROUTE_HISTORY_WRITE: RateLimitRule(limit=20, window_seconds=5 * 60),
    }


class ScoringPolicy(BaseModel):
    """How signals are weighted into the 0-100 composite.

    The four audit weights must sum to 1. ``design_weight`` and
    ``on_page_weight`` blend the generative design judgment and the static
    HTML heuristics into the technical score; both default to 0 so the
    composite is driven by the audit service alone unless configured.
    """

    category_weights: dict[AuditCategory, float] = Field(
        default_factory=lambda: {
            AuditCategory.PERFORMANCE: 0.30,
            AuditCategory.ACCESSIBILITY: 0.20,
            AuditCategory.BEST_PRACTICES: 0.20,
            AuditCategory.SEO: 0.30,
        }
    )
    design_weight: float = Field(0.0, ge=0.0, le=1.0)
    on_page_weight: float = Field(0.0, ge=0.0, le=1.0)
    insecure_penalty: int = Field(15, ge=0, le=100, description="Points removed when the site is not served over HTTPS")
    neutral_score: float = Field(0.5, ge=0.0, le=1.0, description="Stand-in for any category with no usable signal")
    good_threshold: float = Field(0.9, ge=0.0, le=1.0)
    warning_threshold: float = Field(0.4, ge=0.0, le=1.0)
    max_issues: int = Field(10, gt=0)

    @field_validator("category_weights")
    @classmethod
    def _weights_complete(cls, value: dict[AuditCategory, float]) -> dict[AuditCategory, float]:
        missing = set(AuditCategory) - set(value)
        if missing:
            raise ValueError(f"missing weights for: {', '.join(sorted(c.value for c in missing))}")
        if any(w < 0 for w in value.values()):
            raise ValueError("category weights must be non-negative")
        if not math.isclose(sum(value.values()), 1.0, abs_tol=1e-6):
            raise ValueError(f"category weights must sum to 1, got {sum(value.values()):.4f}")
        return value

    @model_validator(mode="after")
    def _check_blend(self) -> ScoringPolicy:
        if self.design_weight + self.on_page_weight > 1.0:
            raise ValueError("design_weight + on_page_weight must not exceed 1")
        if self.warning_threshold > self.good_threshold:
            raise ValueError("warning_threshold must not exceed good_threshold")
        return self


class FetchSettings(BaseModel):
    timeout_seconds: float = Field(15.0, gt=0)
    connect_timeout_seconds: float = Field(10.0, gt=0)
    max_redirects: int = Field(5, ge=0)
    user_agent: str = DEFAULT_USER_AGENT


class ExtractorSettings(BaseModel):
    """Upstream service credentials and per-extractor time budgets."""

    pagespeed_api_key: str = ""
    pagespeed_strategy: str = "mobile"
    completions_api_key: str = ""
    completions_base_url: str = "https://api.openai.com/v1"
    design_model: str = "gpt-4o"
    audit_timeout_seconds: float = Field(60.0, gt=0)
    design_timeout_seconds: float = Field(45.0, gt=0)
    local_timeout_seconds: float = Field(5.0, gt=0)
    max_failed_checks: int = Field(10, gt=0)


class HistorySettings(BaseModel):
    max_items: int = Field(10, gt=0)
    retention_days: int = Field(30, gt=0)


class EngineConfig(BaseModel):
    """Top-level configuration handed to the orchestrator and the server."""

    scoring: ScoringPolicy = Field(default_factory=ScoringPolicy)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    extractors: ExtractorSettings = Field(default_factory=ExtractorSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    rate_limits: dict[str, RateLimitRule] = Field(default_factory=_default_rules)
    max_concurrent_extractors: int = Field(8, gt=0)
    sweep_interval_minutes: int = Field(15, gt=0)
    mcp_identity: str = "local"
    database_url: Optional[str] = None

    @field_validator("rate_limits")
    @classmethod
    def _rules_cover_routes(cls, value: dict[str, RateLimitRule]) -> dict[str, RateLimitRule]:
        for route in (ROUTE_ANALYZE, ROUTE_HISTORY_READ, ROUTE_HISTORY_WRITE):
            if route not in value:
                raise ValueError(f"no rate limit configured for route '{route}'")
        return value

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ
        return cls(
            extractors=ExtractorSettings(
                pagespeed_api_key=env.get("PAGESPEED_API_KEY", ""),
                completions_api_key=env.get("OPENAI_API_KEY", ""),
                completions_base_url=env.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
                design_model=env.get("DESIGN_MODEL", "gpt-4o"),
            ),
            history=HistorySettings(
                max_items=int(env.get("HISTORY_MAX_ITEMS", "10")),
                retention_days=int(env.get("HISTORY_RETENTION_DAYS", "30")),
            ),
            max_concurrent_extractors=int(env.get("MAX_CONCURRENT_EXTRACTORS", "8")),
            sweep_interval_minutes=int(env.get("SWEEP_INTERVAL_MINUTES", "15")),
            mcp_identity=env.get("MCP_IDENTITY", "local"),
            database_url=env.get("DATABASE_URL") or None,
        )
