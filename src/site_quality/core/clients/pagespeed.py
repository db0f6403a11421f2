"""Google PageSpeed Insights (Lighthouse) API client.

API docs: https://developers.google.com/speed/docs/insights/v5/get-started
Requires an API key for anything beyond occasional use.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..errors import MalformedUpstreamResponse, UpstreamUnavailable
from ..models import AuditCategory, AuditCheck, AuditReport

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/pagespeedonline/v5"

# Lighthouse category ids mapped to ours
CATEGORY_IDS: dict[str, AuditCategory] = {
    "performance": AuditCategory.PERFORMANCE,
    "accessibility": AuditCategory.ACCESSIBILITY,
    "best-practices": AuditCategory.BEST_PRACTICES,
    "seo": AuditCategory.SEO,
}

# Lab metrics surfaced alongside the scores
METRIC_AUDITS: dict[str, str] = {
    "first-contentful-paint": "first_contentful_paint",
    "speed-index": "speed_index",
    "largest-contentful-paint": "largest_contentful_paint",
    "interactive": "time_to_interactive",
    "total-blocking-time": "total_blocking_time",
    "cumulative-layout-shift": "cumulative_layout_shift",
}


def _parse_report(url: str, data: dict) -> AuditReport:
    """Turn a runPagespeed response body into an AuditReport."""
    if "error" in data:
        message = data["error"].get("message", "Unknown error") if isinstance(data["error"], dict) else str(data["error"])
        raise UpstreamUnavailable(f"PageSpeed API error: {message}")

    lighthouse = data.get("lighthouseResult")
    if not isinstance(lighthouse, dict):
        raise MalformedUpstreamResponse("No Lighthouse results found")

    # Categories Lighthouse could not score are left out; the scorer treats them as neutral
    categories = lighthouse.get("categories") or {}
    scores: dict[AuditCategory, float] = {}
    for lighthouse_id, category in CATEGORY_IDS.items():
        raw = (categories.get(lighthouse_id) or {}).get("score")
        if raw is None:
            logger.info("Lighthouse returned no %s score for %s", lighthouse_id, url)
            continue
        try:
            scores[category] = min(1.0, max(0.0, float(raw)))
        except (TypeError, ValueError) as exc:
            raise MalformedUpstreamResponse(f"Non-numeric score for category {lighthouse_id}: {raw!r}") from exc

    audits = lighthouse.get("audits") or {}
    checks = []
    for audit_id, audit in audits.items():
        if not isinstance(audit, dict):
            continue
        score = audit.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            score = None
        checks.append(AuditCheck(
            id=audit.get("id", audit_id),
            title=audit.get("title", audit_id),
            description=audit.get("description", ""),
            score=score,
            display_value=audit.get("displayValue"),
        ))

    metrics = {name: (audits.get(audit_id) or {}).get("displayValue") for audit_id, name in METRIC_AUDITS.items()}

    return AuditReport(
        url=lighthouse.get("finalUrl") or url,
        category_scores=scores,
        checks=checks,
        metrics=metrics,
    )


async def run_audit(
    url: str,
    api_key: str,
    strategy: str = "mobile",
    timeout: float = 60.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuditReport:
    """Run a Lighthouse audit for ``url`` across all four categories.

    Args:
        url: Page to audit.
        api_key: PageSpeed Insights API key.
        strategy: 'mobile' or 'desktop'.
        timeout: Overall request timeout; audits commonly take 10-30 seconds.

    Returns:
        AuditReport with category scores, every individual check and key metrics.
    """
    if not api_key:
        raise UpstreamUnavailable("PAGESPEED_API_KEY is not configured")

    params: list[tuple[str, str]] = [("url", url), ("key", api_key), ("strategy", strategy)]
    params.extend(("category", lighthouse_id.upper().replace("-", "_")) for lighthouse_id in CATEGORY_IDS)

    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0), transport=transport) as client:
        try:
            response = await client.get(f"{API_BASE}/runPagespeed", params=params)
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(f"PageSpeed API unreachable: {exc}") from exc

    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedUpstreamResponse("PageSpeed API returned non-JSON body", body=response.text[:500]) from exc

    if not isinstance(data, dict):
        raise MalformedUpstreamResponse("PageSpeed API returned an unexpected body", body=response.text[:500])
    if response.status_code >= 400 and "error" not in data:
        raise UpstreamUnavailable(f"PageSpeed API returned HTTP {response.status_code}")

    report = _parse_report(url, data)
    logger.debug("PageSpeed scores for %s: %s", url, {c.value: s for c, s in report.category_scores.items()})
    return report
