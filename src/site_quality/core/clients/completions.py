"""Generative text-completion client (OpenAI-compatible chat completions).

API docs: https://platform.openai.com/docs/api-reference/chat
Any server exposing the same /chat/completions contract works via base_url.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from ..errors import MalformedUpstreamResponse, UpstreamUnavailable
from ..models import DesignAssessment

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"

DESIGN_SCHEMA: dict = {
    "name": "design_assessment",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "required": ["score", "designYear", "analysis", "issues", "recommendations"],
        "properties": {
            "score": {"type": "number", "description": "0 = extremely outdated, 100 = cutting-edge modern"},
            "designYear": {"type": "integer", "description": "Year the design feels like it is from"},
            "analysis": {"type": "string"},
            "issues": {"type": "array", "items": {"type": "string"}},
            "recommendations": {"type": "array", "items": {"type": "string"}},
        },
    },
}

DESIGN_PROMPT = """Analyze this website to determine how modern or outdated its design looks.

URL: {url}

Technologies detected:
{technologies}

Focus on visual design, layout, typography, color scheme, UI elements,
mobile-friendliness, use of white space and visual hierarchy.

Then provide:
1. A design age score from 0-100 (0 is extremely outdated, 100 is cutting-edge modern)
2. An estimated "design year" (what year does this design feel like it's from?)
3. A list of 3-5 specific design issues that make the site look outdated
4. A list of 3-5 recommendations to modernize the design

Respond only with JSON matching the design_assessment schema."""


def build_design_prompt(url: str, technologies: dict[str, bool]) -> str:
    lines = "\n".join(f"- {name}: {str(present).lower()}" for name, present in sorted(technologies.items()))
    return DESIGN_PROMPT.format(url=url, technologies=lines or "- none detected")


def parse_design_assessment(text: Optional[str]) -> DesignAssessment:
    """Parse completion text into a DesignAssessment, or raise MalformedUpstreamResponse."""
    if not text:
        raise MalformedUpstreamResponse("Empty completion")
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        return DesignAssessment.model_validate(json.loads(cleaned))
    except (ValueError, ValidationError) as exc:
        raise MalformedUpstreamResponse(f"Completion did not match the design schema: {exc}", body=text[:500]) from exc


async def complete_json(
    prompt: str,
    api_key: str,
    model: str = "gpt-4o",
    json_schema: Optional[dict] = None,
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = 45.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Send ``prompt`` and return the raw text of the first choice."""
    if not api_key:
        raise UpstreamUnavailable("OPENAI_API_KEY is not configured")

    payload: dict = {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": 0,
    }
    if json_schema:
        payload["response_format"] = {"type": "json_schema", "json_schema": json_schema}

    headers = {"Authorization": f"Bearer {api_key}"}
    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0), transport=transport) as client:
        try:
            response = await client.post(f"{base_url.rstrip('/')}/chat/completions", json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailable(f"Completion service returned HTTP {exc.response.status_code}") from exc
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(f"Completion service unreachable: {exc}") from exc

    try:
        return response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise MalformedUpstreamResponse("Unexpected completion response shape", body=response.text[:500]) from exc


async def assess_design(
    url: str,
    technologies: dict[str, bool],
    api_key: str,
    model: str = "gpt-4o",
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = 45.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DesignAssessment:
    """Ask the completion service how modern the site at ``url`` looks."""
    text = await complete_json(
        build_design_prompt(url, technologies),
        api_key,
        model=model,
        json_schema=DESIGN_SCHEMA,
        base_url=base_url,
        timeout=timeout,
        transport=transport,
    )
    return parse_design_assessment(text)
