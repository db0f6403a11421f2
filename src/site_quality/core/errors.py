"""Error taxonomy for the scoring engine.

Every error that can reach a caller carries a ``kind``, an HTTP-style
``status_code`` and a generic ``public_message``. The exception text itself
may hold diagnostic detail and is only ever logged.
"""

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for errors the engine surfaces or recovers from."""

    kind = "engine_error"
    status_code = 500
    public_message = "Internal error"

    def to_dict(self) -> dict:
        return {"success": False, "error": self.public_message}


class InputError(EngineError):
    kind = "input_error"
    status_code = 400
    public_message = "Invalid request"


class InvalidURL(InputError):
    kind = "invalid_url"
    public_message = "A valid website URL is required"


class Unauthorized(EngineError):
    kind = "unauthorized"
    status_code = 401
    public_message = "Authentication required"


class RateLimitExceeded(EngineError):
    kind = "rate_limit_exceeded"
    status_code = 429
    public_message = "Too many requests"

    def __init__(self, route_key: str, retry_after_seconds: int, limit: int):
        super().__init__(f"rate limit exceeded for {route_key}: retry in {retry_after_seconds}s")
        self.route_key = route_key
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit

    def to_dict(self) -> dict:
        return {"success": False, "error": self.public_message, "retry_after": self.retry_after_seconds}


class FetchError(EngineError):
    kind = "fetch_error"
    status_code = 502
    public_message = "Could not retrieve the website"


class FetchTimeout(FetchError):
    kind = "fetch_timeout"
    status_code = 504
    public_message = "The website took too long to respond"


class FetchUnreachable(FetchError):
    kind = "fetch_unreachable"


class FetchHTTPError(FetchError):
    kind = "fetch_http_error"

    def __init__(self, status: int, url: str = ""):
        super().__init__(f"HTTP {status} from {url}")
        self.status = status


class ExtractorFailure(EngineError):
    """Raised inside an extractor; always converted to a neutral signal."""

    kind = "extractor_failure"


class UpstreamUnavailable(ExtractorFailure):
    kind = "upstream_unavailable"


class MalformedUpstreamResponse(ExtractorFailure):
    kind = "malformed_upstream_response"

    def __init__(self, message: str, body: Optional[str] = None):
        super().__init__(message)
        self.body = body


class AggregationFailure(EngineError):
    kind = "aggregation_failure"
    public_message = "Failed to analyze website"
