"""Signal extractors and the default ordered registry.

Adding an extractor means appending it to ``build_default_extractors``;
the scorer works from signal categories and never names an extractor.
"""

from __future__ import annotations

from typing import Optional

import httpx

from .audit import ExternalAuditExtractor
from .base import SignalExtractor, run_extractor, severity_for, status_for
from .design import DesignJudgmentExtractor, design_age_category
from .on_page import OnPageExtractor
from .security import HTTPS_MISSING_ID, SecurityExtractor
from .technology import TechFingerprintExtractor, detect_technologies

__all__ = [
    "HTTPS_MISSING_ID",
    "DesignJudgmentExtractor",
    "ExternalAuditExtractor",
    "OnPageExtractor",
    "SecurityExtractor",
    "SignalExtractor",
    "TechFingerprintExtractor",
    "build_default_extractors",
    "design_age_category",
    "detect_technologies",
    "run_extractor",
    "severity_for",
    "status_for",
]


def build_default_extractors(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> list[SignalExtractor]:
    """The standard extractor set, in registry order.

    Args:
        settings: ExtractorSettings with credentials and time budgets.
        transport: Optional httpx transport shared by the upstream clients.
    """
    local = settings.local_timeout_seconds
    return [
        SecurityExtractor(timeout=local),
        TechFingerprintExtractor(timeout=local),
        ExternalAuditExtractor(
            settings.pagespeed_api_key,
            strategy=settings.pagespeed_strategy,
            timeout=settings.audit_timeout_seconds,
            max_failed_checks=settings.max_failed_checks,
            transport=transport,
        ),
        DesignJudgmentExtractor(
            settings.completions_api_key,
            model=settings.design_model,
            base_url=settings.completions_base_url,
            timeout=settings.design_timeout_seconds,
            transport=transport,
        ),
        OnPageExtractor(timeout=local),
    ]
