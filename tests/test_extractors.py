"""
Tests for the signal extractors and their upstream clients.

Upstream services are replaced with httpx.MockTransport handlers.
"""

import asyncio
import json
from datetime import date

import httpx
import pytest

from site_quality.config import ExtractorSettings
from site_quality.core.clients import completions, pagespeed
from site_quality.core.errors import MalformedUpstreamResponse, UpstreamUnavailable
from site_quality.core.extractors import (
    DesignJudgmentExtractor,
    ExternalAuditExtractor,
    OnPageExtractor,
    SecurityExtractor,
    SignalExtractor,
    TechFingerprintExtractor,
    build_default_extractors,
    design_age_category,
    run_extractor,
)
from site_quality.core.models import AuditCategory, DesignAgeCategory, SignalCategory, SignalResult, Status
from site_quality.core.scoring import merge_issues

from .conftest import make_page


def lighthouse_body(scores=None, audits=None) -> dict:
    scores = scores or {"performance": 0.95, "accessibility": 0.88, "best-practices": 0.3, "seo": 1.0}
    return {
        "lighthouseResult": {
            "finalUrl": "https://example.com/",
            "categories": {key: {"score": value} for key, value in scores.items()},
            "audits": audits or {},
        }
    }


def completion_body(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


DESIGN_JSON = json.dumps({
    "score": 35,
    "designYear": 2012,
    "analysis": "Fixed-width layout with heavy gradients.",
    "issues": ["Fixed width layout", "Dated gradients", "Fixed width layout"],
    "recommendations": ["Adopt a fluid grid"],
})


# =============================================================
# TEST: Security
# =============================================================

class TestSecurityExtractor:

    @pytest.mark.asyncio
    async def test_https_page_is_good(self):
        page = make_page(headers={"strict-transport-security": "max-age=63072000", "x-frame-options": "DENY"})
        result = await SecurityExtractor().extract(page)
        assert result.score == 1.0
        assert result.status == Status.GOOD
        assert result.metrics["security_headers_present"] == 2
        assert {i.id for i in result.issues} == {"missing-content-security-policy", "missing-x-content-type-options"}

    @pytest.mark.asyncio
    async def test_http_page_is_bad_with_https_issue(self):
        result = await SecurityExtractor().extract(make_page(url="http://example.com/"))
        assert result.score == 0.0
        assert result.status == Status.BAD
        assert result.issues[0].id == "https-missing"

    def test_default_keeps_scheme_verdict(self):
        result = SecurityExtractor().default_result(make_page(url="http://example.com/"), "timeout")
        assert result.is_default
        assert result.status == Status.BAD
        assert result.issues[0].id == "https-missing"


# =============================================================
# TEST: Technology fingerprint
# =============================================================

class TestTechFingerprintExtractor:

    @pytest.mark.asyncio
    async def test_detects_markers(self):
        html = """
        <link href="/wp-content/themes/x/style.css">
        <script src="https://code.jquery.com/jquery-1.12.4.min.js"></script>
        <marquee>Welcome!</marquee>
        """
        result = await TechFingerprintExtractor().extract(make_page(html=html))
        assert result.technologies == ["jquery", "wordpress"]
        assert result.score is None
        assert "Outdated jQuery" in result.metrics["outdated_technologies"]
        assert "Marquee tags (deprecated)" in result.metrics["outdated_technologies"]

    @pytest.mark.asyncio
    async def test_plain_page_has_no_technologies(self):
        result = await TechFingerprintExtractor().extract(make_page(html="<html><body>hi</body></html>"))
        assert result.technologies == []
        assert result.metrics["outdated_technologies"] == []


# =============================================================
# TEST: External audit
# =============================================================

class TestExternalAuditExtractor:

    @pytest.mark.asyncio
    async def test_maps_categories_and_failing_checks(self):
        audits = {
            f"audit-{i}": {"id": f"audit-{i}", "title": f"Audit {i}", "score": i / 20}
            for i in range(15)
        }
        audits["passing"] = {"id": "passing", "title": "Passing", "score": 1}
        audits["informative"] = {"id": "informative", "title": "Info", "score": None}
        audits["largest-contentful-paint"] = {"id": "largest-contentful-paint", "title": "LCP", "score": 0.95, "displayValue": "2.1 s"}

        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["categories"] = request.url.params.get_list("category")
            seen["key"] = request.url.params["key"]
            return httpx.Response(200, json=lighthouse_body(audits=audits))

        extractor = ExternalAuditExtractor("test-key", transport=httpx.MockTransport(handler))
        result = await extractor.extract(make_page())

        assert seen["categories"] == ["PERFORMANCE", "ACCESSIBILITY", "BEST_PRACTICES", "SEO"]
        assert seen["key"] == "test-key"
        assert result.category_scores[AuditCategory.PERFORMANCE] == 0.95
        assert result.category_scores[AuditCategory.BEST_PRACTICES] == 0.3
        assert result.metrics["audit_status"] == {
            "performance": "good",
            "accessibility": "warning",
            "best_practices": "bad",
            "seo": "good",
        }
        assert result.metrics["lab_metrics"]["largest_contentful_paint"] == "2.1 s"
        assert len(result.issues) == 10
        assert [i.id for i in result.issues[:2]] == ["audit-0", "audit-1"]
        assert all(i.score < 0.9 for i in result.issues)

    @pytest.mark.asyncio
    async def test_unscored_category_is_left_out(self):
        body = lighthouse_body(scores={"performance": None, "accessibility": 1.0, "best-practices": 1.0})
        extractor = ExternalAuditExtractor("k", transport=httpx.MockTransport(lambda r: httpx.Response(200, json=body)))
        result = await extractor.extract(make_page())

        assert AuditCategory.PERFORMANCE not in result.category_scores
        assert AuditCategory.SEO not in result.category_scores
        assert result.category_scores[AuditCategory.ACCESSIBILITY] == 1.0
        assert result.metrics["unscored_categories"] == ["performance", "seo"]
        assert "performance" not in result.metrics["audit_status"]

    @pytest.mark.asyncio
    async def test_non_numeric_category_score_is_malformed(self):
        body = lighthouse_body(scores={"performance": "fast"})
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=body))
        with pytest.raises(MalformedUpstreamResponse):
            await pagespeed.run_audit("https://example.com", "k", transport=transport)

    @pytest.mark.asyncio
    async def test_missing_key_is_unavailable(self):
        with pytest.raises(UpstreamUnavailable):
            await pagespeed.run_audit("https://example.com", "")

    @pytest.mark.asyncio
    async def test_upstream_error_body(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(429, json={"error": {"message": "Quota exceeded"}}))
        with pytest.raises(UpstreamUnavailable, match="Quota exceeded"):
            await pagespeed.run_audit("https://example.com", "k", transport=transport)

    @pytest.mark.asyncio
    async def test_missing_lighthouse_result_is_malformed(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"kind": "pagespeedonline#result"}))
        with pytest.raises(MalformedUpstreamResponse):
            await pagespeed.run_audit("https://example.com", "k", transport=transport)

    @pytest.mark.asyncio
    async def test_non_json_is_malformed(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(MalformedUpstreamResponse):
            await pagespeed.run_audit("https://example.com", "k", transport=transport)

    @pytest.mark.asyncio
    async def test_failure_becomes_neutral_default(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(500, text="boom"))
        extractor = ExternalAuditExtractor("k", transport=transport)
        result = await run_extractor(extractor, make_page())
        assert result.is_default
        assert result.error == "malformed_upstream_response"
        assert all(score == 0.5 for score in result.category_scores.values())
        assert set(result.category_scores) == set(AuditCategory)


# =============================================================
# TEST: Design judgment
# =============================================================

class TestDesignJudgment:

    @pytest.mark.parametrize("year,expected", [
        (2026, DesignAgeCategory.MODERN),
        (2024, DesignAgeCategory.MODERN),
        (2023, DesignAgeCategory.AGING),
        (2021, DesignAgeCategory.AGING),
        (2020, DesignAgeCategory.DATED),
        (2016, DesignAgeCategory.DATED),
        (2015, DesignAgeCategory.OUTDATED),
        (1998, DesignAgeCategory.OUTDATED),
    ])
    def test_age_category_boundaries(self, year, expected):
        assert design_age_category(year, 2026) == expected

    @pytest.mark.asyncio
    async def test_valid_completion(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion_body(DESIGN_JSON))

        extractor = DesignJudgmentExtractor(
            "sk-test",
            today=lambda: date(2026, 3, 1),
            transport=httpx.MockTransport(handler),
        )
        page = make_page(html='<script src="/wp-includes/js/jquery.js"></script>')
        result = await extractor.extract(page)

        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["response_format"]["json_schema"]["name"] == "design_assessment"
        assert "- wordpress: true" in seen["body"]["messages"][0]["content"]
        assert result.score == 0.35
        assert result.status == Status.BAD
        assert result.metrics["design_year"] == 2012
        assert result.metrics["design_age"] == 14
        assert result.metrics["design_age_category"] == "outdated"
        assert [i.id for i in result.issues] == ["design-fixed-width-layout", "design-dated-gradients"]

    @pytest.mark.asyncio
    async def test_issues_with_long_shared_prefix_keep_distinct_ids(self):
        prefix = "The navigation menu collapses awkwardly on narrow screens and hides the "
        content = json.dumps({
            "score": 60,
            "designYear": 2018,
            "analysis": "Mostly current.",
            "issues": [prefix + "search box", prefix + "contact link", prefix + "search box"],
            "recommendations": [],
        })
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=completion_body(content)))
        extractor = DesignJudgmentExtractor("sk-test", today=lambda: date(2026, 3, 1), transport=transport)
        result = await extractor.extract(make_page())

        ids = [i.id for i in result.issues]
        assert len(ids) == 2
        assert ids[1] == ids[0] + "-2"
        merged = merge_issues([result], max_issues=10)
        assert {i.title for i in merged} == {prefix + "search box", prefix + "contact link"}

    def test_parse_strips_code_fences(self):
        assessment = completions.parse_design_assessment(f"```json\n{DESIGN_JSON}\n```")
        assert assessment.designYear == 2012

    @pytest.mark.parametrize("text", [
        "",
        "not json at all",
        json.dumps({"score": 150, "designYear": 2012, "analysis": "x"}),
        json.dumps({"score": 50, "analysis": "missing year"}),
    ])
    def test_parse_rejects_malformed(self, text):
        with pytest.raises(MalformedUpstreamResponse):
            completions.parse_design_assessment(text)

    @pytest.mark.asyncio
    async def test_malformed_completion_becomes_neutral_default(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=completion_body("I think it looks fine")))
        result = await run_extractor(DesignJudgmentExtractor("sk-test", transport=transport), make_page())
        assert result.is_default
        assert result.score == 0.5
        assert result.metrics["design_age_category"] == "unknown"
        assert result.error == "malformed_upstream_response"

    @pytest.mark.asyncio
    async def test_missing_key_becomes_neutral_default(self):
        result = await run_extractor(DesignJudgmentExtractor(""), make_page())
        assert result.is_default
        assert result.error == "upstream_unavailable"


# =============================================================
# TEST: On-page heuristics
# =============================================================

GOOD_PAGE = """<html><head>
<title>Acme Plumbing</title>
<meta name="description" content="Plumbers in Austin">
<meta name="viewport" content="width=device-width">
<link rel="canonical" href="https://acme.example/">
<link rel="apple-touch-icon" href="/icon.png">
<meta property="og:title" content="Acme">
<script type="application/ld+json">{}</script>
<style>@media (max-width: 600px) { body { font-size: 14px; } }</style>
</head><body>
<h1>Acme Plumbing</h1>
<ul><li>Repairs</li></ul>
<img src="a.png"><img src="b.png"><img src="c.png">
<p>""" + "word " * 320 + """</p>
<p>Call (512) 555-0100 or mail hello@acme.example</p>
<footer>&copy; 2025 Acme</footer>
</body></html>"""


class TestOnPageExtractor:

    @pytest.mark.asyncio
    async def test_complete_page_scores_full(self):
        result = await OnPageExtractor(today=lambda: date(2026, 1, 1)).extract(make_page(html=GOOD_PAGE))
        assert result.score == 1.0
        assert result.issues == []
        assert result.metrics["emails_found"] == ["hello@acme.example"]
        assert result.metrics["last_updated"] == "2025"

    @pytest.mark.asyncio
    async def test_empty_page_reports_missing_basics(self):
        html = "<html><body><p>Copyright 2015 Old Co</p></body></html>"
        result = await OnPageExtractor(today=lambda: date(2026, 1, 1)).extract(make_page(html=html))
        ids = {i.id for i in result.issues}
        assert {"seo-title", "seo-meta-description", "mobile-viewport", "contact-email"} <= ids
        assert "content-copyright-outdated" in ids
        assert result.score == 0.0
        assert result.status == Status.BAD

    def test_image_names_are_not_emails(self):
        from site_quality.core.extractors.on_page import find_emails

        assert find_emails('<img src="logo@2x.png"> write to a@b.io') == ["a@b.io"]


# =============================================================
# TEST: Run wrapper and registry
# =============================================================

class SlowExtractor(SignalExtractor):
    name = "slow"
    category = SignalCategory.DESIGN

    async def extract(self, page):
        await asyncio.sleep(5)
        return SignalResult(source=self.name, category=self.category, score=1.0)


class BrokenExtractor(SignalExtractor):
    name = "broken"
    category = SignalCategory.ON_PAGE

    async def extract(self, page):
        raise RuntimeError("kaboom")


class TestRunExtractor:

    @pytest.mark.asyncio
    async def test_timeout_returns_default(self):
        result = await run_extractor(SlowExtractor(timeout=0.05), make_page())
        assert result.is_default
        assert result.error == "timeout"
        assert result.score == 0.5

    @pytest.mark.asyncio
    async def test_unexpected_exception_returns_default(self):
        result = await run_extractor(BrokenExtractor(), make_page())
        assert result.is_default
        assert result.error == "extractor_failure"

    @pytest.mark.asyncio
    async def test_semaphore_wait_counts_towards_budget(self):
        semaphore = asyncio.Semaphore(1)
        await semaphore.acquire()
        try:
            result = await run_extractor(SecurityExtractor(timeout=0.05), make_page(), semaphore)
        finally:
            semaphore.release()
        assert result.is_default
        assert result.error == "timeout"

    def test_default_registry_order(self):
        settings = ExtractorSettings(local_timeout_seconds=2.0, audit_timeout_seconds=30.0)
        extractors = build_default_extractors(settings)
        assert [e.name for e in extractors] == ["security", "technology", "audit", "design", "on_page"]
        assert extractors[0].timeout == 2.0
        assert extractors[2].timeout == 30.0
