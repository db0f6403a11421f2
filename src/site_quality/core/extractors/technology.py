"""Technology fingerprinting from textual markers in the page source.

Produces metadata only: the set of detected technologies feeds the composite
score's technology list and the design-judgment prompt.
"""

from __future__ import annotations

from ..models import FetchedPage, SignalCategory, SignalResult
from .base import SignalExtractor

# Case-insensitive substrings that identify each technology
TECHNOLOGY_SIGNATURES: dict[str, tuple[str, ...]] = {
    # CMS / site builders
    "wordpress": ("wp-content", "wp-includes"),
    "wix": ("wix.com", "_wix_", "x-wix-"),
    "squarespace": ("static.squarespace", "squarespace-cdn", "squarespace.com"),
    "shopify": ("cdn.shopify", "myshopify", "shopify.com"),
    "joomla": ("joomla",),
    "drupal": ("drupal.settings", "drupal.js", "/sites/default/files"),
    "magento": ("magento", "mage/cookies"),
    "webflow": ("webflow.com", "webflow.io", "w-webflow"),
    # JS frameworks
    "jquery": ("jquery",),
    "react": ("react-dom", "react.production.min.js", "data-reactroot", "__next"),
    "angular": ("ng-version", "angular.min.js", "angular.js"),
    "vue": ("vue.min.js", "vue.js", "data-v-", "__nuxt"),
    # CSS frameworks
    "bootstrap": ("bootstrap.min.css", "bootstrap.css", "bootstrap.min.js", "bootstrap.js"),
    "tailwind": ("tailwind",),
    # Font services
    "modern_fonts": ("fonts.googleapis.com", "google-font", "typekit", "use.typekit.net"),
    "font_awesome": ("font-awesome", "fontawesome"),
    # Design hints
    "responsive": ("@media", 'name="viewport"', "max-width"),
    "dark_mode": ("dark-mode", "dark-theme", "theme-dark", "prefers-color-scheme: dark"),
    "animations": ("@keyframes", "animation:", "transition:"),
}

# Markers of deprecated or aging front-end practices
OUTDATED_SIGNATURES: dict[str, tuple[str, ...]] = {
    "Frames (deprecated since HTML5)": ("<frameset", "<frame "),
    "Marquee tags (deprecated)": ("<marquee",),
    "Blink tags (deprecated)": ("<blink",),
    "document.write (poor performance)": ("document.write(",),
    "Outdated jQuery": ("jquery-1.", "jquery-2.", "jquery/1.", "jquery/2."),
    "Flash content": (".swf", "application/x-shockwave-flash"),
}


def detect_technologies(html: str) -> dict[str, bool]:
    """Return every known technology mapped to whether it was found in ``html``."""
    lower = html.lower()
    return {tech: any(marker in lower for marker in markers) for tech, markers in TECHNOLOGY_SIGNATURES.items()}


def detect_outdated(html: str) -> list[str]:
    lower = html.lower()
    return [label for label, markers in OUTDATED_SIGNATURES.items() if any(m in lower for m in markers)]


class TechFingerprintExtractor(SignalExtractor):
    """Detected technologies as metadata; never contributes a score."""

    name = "technology"
    category = SignalCategory.TECHNOLOGY
    timeout = 5.0

    async def extract(self, page: FetchedPage) -> SignalResult:
        flags = detect_technologies(page.html)
        found = sorted(tech for tech, present in flags.items() if present)
        return SignalResult(
            source=self.name,
            category=self.category,
            technologies=found,
            metrics={
                "technology_flags": flags,
                "outdated_technologies": detect_outdated(page.html),
            },
        )

    def default_result(self, page: FetchedPage, error: str) -> SignalResult:
        return SignalResult(source=self.name, category=self.category, error=error, is_default=True)
