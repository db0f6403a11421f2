"""Transport security signal: HTTPS plus the common security headers."""

from __future__ import annotations

from ..models import FetchedPage, Issue, Severity, SignalCategory, SignalResult, Status
from .base import SignalExtractor

HTTPS_MISSING_ID = "https-missing"

SECURITY_HEADERS: dict[str, str] = {
    "content-security-policy": "Content-Security-Policy",
    "x-content-type-options": "X-Content-Type-Options",
    "x-frame-options": "X-Frame-Options",
    "strict-transport-security": "Strict-Transport-Security",
}


def https_missing_issue(source: str = "security") -> Issue:
    return Issue(
        id=HTTPS_MISSING_ID,
        title="Website does not use HTTPS for secure connections",
        severity=Severity.HIGH,
        score=0.0,
        description='Browsers mark plain HTTP pages as "Not Secure", which deters visitors and hurts search ranking.',
        source=source,
    )


class SecurityExtractor(SignalExtractor):
    """Good when the final URL is HTTPS, bad otherwise.

    Insecure pages always carry the high-severity ``https-missing`` issue.
    Missing security headers are reported as low-severity issues and do not
    change the verdict.
    """

    name = "security"
    category = SignalCategory.SECURITY
    timeout = 5.0

    async def extract(self, page: FetchedPage) -> SignalResult:
        secure = page.is_https
        present = {header: header in page.headers for header in SECURITY_HEADERS}

        issues = []
        if not secure:
            issues.append(https_missing_issue(self.name))
        for header, label in SECURITY_HEADERS.items():
            if not present[header]:
                issues.append(self.issue(
                    f"missing-{header}",
                    f"Missing {label} header",
                    score=0.9,
                    severity=Severity.LOW,
                ))

        return SignalResult(
            source=self.name,
            category=self.category,
            score=1.0 if secure else 0.0,
            status=Status.GOOD if secure else Status.BAD,
            metrics={
                "https": secure,
                "security_headers": present,
                "security_headers_present": sum(present.values()),
            },
            issues=issues,
        )

    def default_result(self, page: FetchedPage, error: str) -> SignalResult:
        # The scheme is always known, so even the fallback keeps the verdict
        secure = page.is_https
        return SignalResult(
            source=self.name,
            category=self.category,
            score=1.0 if secure else 0.0,
            status=Status.GOOD if secure else Status.BAD,
            metrics={"https": secure},
            issues=[] if secure else [https_missing_issue(self.name)],
            error=error,
            is_default=True,
        )
