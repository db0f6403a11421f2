"""Static on-page heuristics: SEO basics, mobile readiness, content and contact details.

Everything here is a substring or regex test against the raw HTML, so the
signal is available even when every upstream service is down.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Callable, Optional

from ..models import FetchedPage, Severity, SignalCategory, SignalResult
from .base import SignalExtractor, status_for

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
PHONE_RE = re.compile(r"\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
TAG_RE = re.compile(r"<[^>]*>")
COPYRIGHT_RE = re.compile(r"(?:copyright\s*(?:&copy;|©)?|©|&copy;)\s*(?:\d{4}\s*[-–]\s*)?((?:19|20)\d{2})", re.IGNORECASE)
IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "gif", "svg", "webp")

# (check id, issue title, issue score) per heuristic; failing checks become issues
SEO_CHECKS = (
    ("title", "Missing title tag", 0.2),
    ("meta_description", "Missing meta description", 0.5),
    ("h1", "Missing H1 heading", 0.5),
    ("canonical", "Missing canonical link", 0.7),
    ("structured_data", "No structured data", 0.7),
    ("open_graph", "No Open Graph tags", 0.8),
)
MOBILE_CHECKS = (
    ("viewport", "Missing viewport meta tag", 0.2),
    ("media_queries", "No media queries detected", 0.6),
    ("touch_icon", "No mobile icon", 0.8),
)
CONTENT_CHECKS = (
    ("enough_words", "Limited content detected", 0.5),
    ("lists", "No list elements for scannable content", 0.8),
    ("images", "Few or no images", 0.7),
)
CONTACT_CHECKS = (
    ("email", "No way to contact via email", 0.5),
    ("phone", "No phone number detected", 0.6),
)


def find_emails(html: str) -> list[str]:
    """Unique e-mail-looking strings in ``html``, excluding image file names."""
    found = dict.fromkeys(EMAIL_RE.findall(html))
    return [email for email in found if not email.lower().endswith(tuple("." + ext for ext in IMAGE_EXTENSIONS))]


def copyright_year(html: str) -> int | None:
    years = [int(m) for m in COPYRIGHT_RE.findall(html)]
    return max(years) if years else None


def run_checks(html: str) -> dict[str, dict[str, bool]]:
    lower = html.lower()
    text = TAG_RE.sub(" ", html)
    word_count = len(text.split())
    emails = find_emails(html)
    return {
        "seo": {
            "title": "<title" in lower and "</title>" in lower,
            "meta_description": 'name="description"' in lower or "name='description'" in lower,
            "h1": "<h1" in lower and "</h1>" in lower,
            "canonical": 'rel="canonical"' in lower,
            "structured_data": "application/ld+json" in lower or "schema.org/" in lower,
            "open_graph": 'property="og:' in lower or 'name="og:' in lower,
        },
        "mobile": {
            "viewport": 'name="viewport"' in lower,
            "media_queries": "@media" in lower,
            "touch_icon": "apple-touch-icon" in lower or "apple-mobile-web-app-capable" in lower,
        },
        "content": {
            "enough_words": word_count >= 300,
            "lists": "<ul" in lower or "<ol" in lower,
            "images": lower.count("<img") > 2,
        },
        "contact": {
            "email": bool(emails) or "mailto:" in lower,
            "phone": PHONE_RE.search(text) is not None,
        },
    }


class OnPageExtractor(SignalExtractor):
    """Share of passed heuristics across SEO, mobile, content and contact groups.

    Neutral default: score 0.5, no issues.
    """

    name = "on_page"
    category = SignalCategory.ON_PAGE
    timeout = 5.0

    def __init__(self, today: Callable[[], date] = date.today, timeout: Optional[float] = None):
        super().__init__(timeout)
        self._today = today

    async def extract(self, page: FetchedPage) -> SignalResult:
        results = run_checks(page.html)
        groups = {"seo": SEO_CHECKS, "mobile": MOBILE_CHECKS, "content": CONTENT_CHECKS, "contact": CONTACT_CHECKS}

        issues = []
        group_scores = {}
        for group, checks in groups.items():
            passed = results[group]
            group_scores[group] = round(sum(passed.values()) / len(passed), 4)
            for check_id, title, issue_score in checks:
                if not passed[check_id]:
                    issues.append(self.issue(f"{group}-{check_id.replace('_', '-')}", title, score=issue_score))

        current_year = self._today().year
        year = copyright_year(page.html)
        if year is not None and year < current_year - 3:
            issues.append(self.issue(
                "content-copyright-outdated",
                f"Copyright year is outdated ({year})",
                score=0.6,
                severity=Severity.MEDIUM,
            ))

        score = round(sum(group_scores.values()) / len(group_scores), 4)
        return SignalResult(
            source=self.name,
            category=self.category,
            score=score,
            status=status_for(score),
            metrics={
                "on_page_scores": group_scores,
                "on_page_checks": results,
                "html_bytes": len(page.html.encode("utf-8")),
                "last_updated": str(year) if year is not None else None,
                "emails_found": find_emails(page.html),
            },
            issues=issues,
        )
