"""Design modernity judged by a generative completion service."""

from __future__ import annotations

import re
from datetime import date
from typing import Callable, Optional

import httpx

from ..clients import completions
from ..models import DesignAgeCategory, FetchedPage, SignalCategory, SignalResult, Status
from .base import SignalExtractor, status_for
from .technology import detect_technologies


def design_age_category(design_year: int, current_year: int) -> DesignAgeCategory:
    """Bucket the age of a design: <=2 modern, <=5 aging, <=10 dated, older outdated."""
    age = current_year - design_year
    if age <= 2:
        return DesignAgeCategory.MODERN
    if age <= 5:
        return DesignAgeCategory.AGING
    if age <= 10:
        return DesignAgeCategory.DATED
    return DesignAgeCategory.OUTDATED


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:60] or "issue"


def _issue_ids(texts: list[str]) -> list[str]:
    """One id per text; a slug already taken gets a numeric suffix."""
    ids: list[str] = []
    taken: set[str] = set()
    for text in texts:
        base = f"design-{_slug(text)}"
        issue_id, n = base, 1
        while issue_id in taken:
            n += 1
            issue_id = f"{base}-{n}"
        taken.add(issue_id)
        ids.append(issue_id)
    return ids


class DesignJudgmentExtractor(SignalExtractor):
    """Asks the completion service for a design score and design year.

    Neutral default: score 0.5, age category unknown, status warning. An
    unparseable completion raises MalformedUpstreamResponse, which the run
    wrapper turns into that default.
    """

    name = "design"
    category = SignalCategory.DESIGN

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = completions.DEFAULT_BASE_URL,
        timeout: float = 45.0,
        today: Callable[[], date] = date.today,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._today = today
        self._transport = transport

    async def extract(self, page: FetchedPage) -> SignalResult:
        technologies = detect_technologies(page.html)
        assessment = await completions.assess_design(
            page.final_url,
            technologies,
            self.api_key,
            model=self.model,
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

        current_year = self._today().year
        score = round(assessment.score / 100, 4)
        age_category = design_age_category(assessment.designYear, current_year)
        texts = list(dict.fromkeys(assessment.issues))
        issues = [self.issue(issue_id, text, score=score) for issue_id, text in zip(_issue_ids(texts), texts)]
        return SignalResult(
            source=self.name,
            category=self.category,
            score=score,
            status=status_for(score),
            metrics={
                "design_year": assessment.designYear,
                "design_age": current_year - assessment.designYear,
                "design_age_category": age_category.value,
                "design_analysis": assessment.analysis,
                "design_recommendations": assessment.recommendations,
            },
            issues=issues,
        )

    def default_result(self, page: FetchedPage, error: str) -> SignalResult:
        return SignalResult(
            source=self.name,
            category=self.category,
            score=0.5,
            status=Status.WARNING,
            metrics={"design_age_category": DesignAgeCategory.UNKNOWN.value},
            error=error,
            is_default=True,
        )
