"""External page-audit signal (PageSpeed Insights / Lighthouse)."""

from __future__ import annotations

from typing import Optional

import httpx

from ..clients import pagespeed
from ..models import AuditCategory, FetchedPage, SignalCategory, SignalResult, Status
from .base import SignalExtractor, status_for


class ExternalAuditExtractor(SignalExtractor):
    """Four category scores from the audit service plus its worst failing checks.

    Neutral default: every category 0.5 (warning).
    """

    name = "audit"
    category = SignalCategory.AUDIT

    def __init__(
        self,
        api_key: str,
        strategy: str = "mobile",
        timeout: float = 60.0,
        max_failed_checks: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.strategy = strategy
        self.timeout = timeout
        self.max_failed_checks = max_failed_checks
        self._transport = transport

    async def extract(self, page: FetchedPage) -> SignalResult:
        report = await pagespeed.run_audit(
            page.final_url,
            self.api_key,
            strategy=self.strategy,
            timeout=self.timeout,
            transport=self._transport,
        )

        statuses = {category.value: status_for(score).value for category, score in report.category_scores.items()}
        unscored = [category.value for category in AuditCategory if category not in report.category_scores]
        issues = [
            self.issue(check.id, check.title, score=check.score, description=check.description)
            for check in report.failing_checks(limit=self.max_failed_checks)
        ]
        return SignalResult(
            source=self.name,
            category=self.category,
            category_scores=report.category_scores,
            metrics={"audit_status": statuses, "unscored_categories": unscored, "lab_metrics": report.metrics},
            issues=issues,
        )

    def default_result(self, page: FetchedPage, error: str) -> SignalResult:
        return SignalResult(
            source=self.name,
            category=self.category,
            category_scores={category: 0.5 for category in AuditCategory},
            status=Status.WARNING,
            metrics={"audit_status": {category.value: Status.WARNING.value for category in AuditCategory}},
            error=error,
            is_default=True,
        )
