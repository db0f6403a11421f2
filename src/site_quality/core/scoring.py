"""Composite website scoring.

Combines the signals of one request into a single 0-100 score and a ranked
issue list. ``combine`` is a pure function of the signal set: signals are
put into a canonical order first, so the order in which extractors finished
never changes the result.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

from ..config import ScoringPolicy
from .errors import AggregationFailure
from .extractors.base import status_for
from .extractors.security import HTTPS_MISSING_ID
from .models import AuditCategory, CompositeScore, Issue, SignalCategory, SignalResult, Status

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(round(value, 6) + 0.5))


def _canonical(signals: Iterable[SignalResult]) -> list[SignalResult]:
    return sorted(signals, key=lambda s: (s.category.value, s.source, s.is_default))


def _lowest(values: list[float]) -> Optional[float]:
    return min(values) if values else None


def _category_score(signals: list[SignalResult], category: SignalCategory) -> Optional[float]:
    return _lowest([s.score for s in signals if s.category == category and s.score is not None])


def merge_issues(signals: list[SignalResult], max_issues: int) -> list[Issue]:
    """Deduplicate issues by id and rank them.

    The HTTPS issue always comes first. Everything else is ordered worst
    score first, ties broken by id. When two signals report the same id the
    lower-scoring one is kept.
    """
    by_id: dict[str, Issue] = {}
    for signal in signals:
        for issue in signal.issues:
            current = by_id.get(issue.id)
            if current is None or (issue.score, issue.title, issue.source) < (current.score, current.title, current.source):
                by_id[issue.id] = issue

    https_issue = by_id.pop(HTTPS_MISSING_ID, None)
    ranked = sorted(by_id.values(), key=lambda i: (i.score, i.id))
    if https_issue is not None:
        ranked.insert(0, https_issue)
    return ranked[:max_issues]


def is_insecure(signals: list[SignalResult]) -> bool:
    for signal in signals:
        if signal.category == SignalCategory.SECURITY and signal.status == Status.BAD:
            return True
        if any(issue.id == HTTPS_MISSING_ID for issue in signal.issues):
            return True
    return False


def combine(url: str, signals: Iterable[SignalResult], policy: Optional[ScoringPolicy] = None) -> CompositeScore:
    """Aggregate a signal set into a CompositeScore.

    overall = round(100 * blended) - insecure_penalty (when not HTTPS), clamped to [0, 100], where
    blended = technical * (1 - design_weight - on_page_weight)
              + design * design_weight + on_page * on_page_weight
    and technical is the weighted sum of the four audit categories. Any
    category without a usable score counts as ``policy.neutral_score``.
    """
    policy = policy or ScoringPolicy()
    ordered = _canonical(signals)
    if not ordered:
        raise AggregationFailure(f"No signals to aggregate for {url}")

    category_scores: dict[str, float] = {}
    technical = 0.0
    for category, weight in policy.category_weights.items():
        reported = [s.category_scores[category] for s in ordered if category in s.category_scores]
        score = _lowest(reported)
        if score is None:
            score = policy.neutral_score
        category_scores[category.value] = round(score, 4)
        technical += weight * score

    design = _category_score(ordered, SignalCategory.DESIGN)
    on_page = _category_score(ordered, SignalCategory.ON_PAGE)
    security = _category_score(ordered, SignalCategory.SECURITY)

    base_share = 1.0 - policy.design_weight - policy.on_page_weight
    blended = (
        technical * base_share
        + (design if design is not None else policy.neutral_score) * policy.design_weight
        + (on_page if on_page is not None else policy.neutral_score) * policy.on_page_weight
    )

    insecure = is_insecure(ordered)
    overall = _round_half_up(100 * blended)
    if insecure:
        overall -= policy.insecure_penalty
    overall = max(0, min(100, overall))

    for name, value in (("design", design), ("on_page", on_page), ("security", security)):
        if value is not None:
            category_scores[name] = round(value, 4)
    if insecure:
        category_scores["security"] = 0.0

    category_status = {
        name: status_for(value, policy.good_threshold, policy.warning_threshold)
        for name, value in category_scores.items()
    }

    technologies = sorted({tech for s in ordered for tech in s.technologies})

    metrics: dict = {}
    for signal in ordered:
        metrics.update(signal.metrics)
    errors = {s.source: s.error for s in ordered if s.error}
    if errors:
        metrics["signal_errors"] = errors

    degraded = sorted({s.source for s in ordered if s.is_default})
    if degraded:
        logger.info("Composite for %s used neutral defaults for: %s", url, ", ".join(degraded))

    return CompositeScore(
        url=url,
        overall_score=overall,
        category_scores=category_scores,
        category_status=category_status,
        technologies=technologies,
        issues=merge_issues(ordered, policy.max_issues),
        metrics=metrics,
        degraded_sources=degraded,
    )
