"""Site Quality MCP Server.

Score any website 0-100 from an HTTPS check, technology fingerprinting, a
Lighthouse audit, an AI design-age judgment and on-page heuristics, with
per-identity rate limits and search history.
"""

__version__ = "0.1.0"
