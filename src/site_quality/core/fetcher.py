"""Single-page fetcher.

Retrieves the raw HTML of one URL. No crawling, and nothing is stored: the
returned page lives only for the duration of a request.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from typing import Optional
from urllib.parse import urlsplit

import httpx

from .errors import FetchHTTPError, FetchTimeout, FetchUnreachable, InvalidURL
from .models import FetchedPage

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def _valid_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    labels = host.split(".")
    if len(labels) < 2 or not all(labels):
        return False
    return all(label.replace("-", "").isalnum() and not label.startswith("-") for label in labels)


def normalize_url(raw: Optional[str]) -> str:
    """Return ``raw`` with a scheme, or raise InvalidURL.

    A missing scheme becomes ``https://``. Only http and https are accepted.
    """
    if raw is None or not str(raw).strip():
        raise InvalidURL("URL is required")
    url = str(raw).strip()
    if "://" not in url:
        url = "https://" + url
    try:
        parts = urlsplit(url)
        host = parts.hostname
        parts.port  # raises ValueError on a malformed port
    except ValueError as exc:
        raise InvalidURL(f"Malformed URL: {raw!r}") from exc
    if parts.scheme.lower() not in ("http", "https"):
        raise InvalidURL(f"Unsupported scheme in {raw!r}")
    if not host or not _valid_host(host.lower()):
        raise InvalidURL(f"Invalid host in {raw!r}")
    return url


class Fetcher:
    """Fetches a page with a browser-like identity, bounded redirects and a hard timeout."""

    def __init__(
        self,
        timeout: float = 15.0,
        connect_timeout: float = 10.0,
        max_redirects: int = 5,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = httpx.Timeout(timeout, connect=min(connect_timeout, timeout))
        self._max_redirects = max_redirects
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        self._transport = transport

    async def fetch(self, url: str) -> FetchedPage:
        """GET ``url`` and return its final URL, HTML and response headers."""
        url = normalize_url(url)
        started = time.monotonic()
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            max_redirects=self._max_redirects,
            headers=self._headers,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(url)
            except httpx.TimeoutException as exc:
                raise FetchTimeout(f"Timed out fetching {url}") from exc
            except httpx.TooManyRedirects as exc:
                raise FetchUnreachable(f"Too many redirects for {url}") from exc
            except httpx.TransportError as exc:
                raise FetchUnreachable(f"Could not connect to {url}: {exc}") from exc

        if response.status_code >= 400:
            raise FetchHTTPError(response.status_code, url)

        elapsed_ms = round((time.monotonic() - started) * 1000, 1)
        final_url = str(response.url)
        logger.info("Fetched %s (%d, %d bytes, %.0f ms)", final_url, response.status_code, len(response.content), elapsed_ms)
        return FetchedPage(
            requested_url=url,
            final_url=final_url,
            html=response.text,
            headers={k.lower(): v for k, v in response.headers.items()},
            status_code=response.status_code,
            elapsed_ms=elapsed_ms,
        )
