"""Claude API client for ReplyDesk: one forced tool call per request.

The classifier never parses free text. Every call declares a single tool
whose input_schema is the shape we want back and forces Claude to call
it; the tool input is the result.

Model tiers:
  - fast: reply intent (did the prospect pick a slot?)
  - smart: demo-request triage and reply drafting

Any failure (no key, transport error, non-200, no tool call) is logged
and returned as None. Callers decide whether None is fatal.

Usage:
    from replydesk.utils.claude_client import claude_structured
    result = await claude_structured(prompt, CLASSIFY_SCHEMA, system=CLASSIFY_SYSTEM, model_tier="smart")
"""

from typing import Any

import httpx
from loguru import logger

from ..config import settings
from ..http_client import http

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
TOOL_NAME = "record_result"

MODELS = {
    "fast": "claude-haiku-4-5-20251001",
    "smart": "claude-sonnet-4-5-20250929",
}


def _headers() -> dict:
    return {
        "x-api-key": settings.anthropic_api_key,
        "anthropic-version": API_VERSION,
        "content-type": "application/json",
    }


def build_request(
    prompt: str,
    schema: dict,
    *,
    system: str = "",
    model_tier: str = "fast",
    max_tokens: int = 1024,
    cache_system: bool = True,
) -> dict[str, Any]:
    """Messages API body with the schema wired in as a forced tool."""
    body: dict[str, Any] = {
        "model": MODELS.get(model_tier, MODELS["fast"]),
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
        "tools": [
            {
                "name": TOOL_NAME,
                "description": "Record the result. Always call this exactly once.",
                "input_schema": schema,
            }
        ],
        "tool_choice": {"type": "tool", "name": TOOL_NAME},
    }
    if system:
        block: dict[str, Any] = {"type": "text", "text": system}
        # System prompts are static per call site, so they cache well
        if cache_system:
            block["cache_control"] = {"type": "ephemeral"}
        body["system"] = [block]
    return body


def tool_input(data: dict) -> dict | None:
    """Pull the forced tool call's input out of a Messages API response."""
    for block in data.get("content", []):
        if block.get("type") == "tool_use" and block.get("name") == TOOL_NAME:
            return block.get("input")
    return None


async def claude_structured(
    prompt: str,
    schema: dict,
    *,
    system: str = "",
    model_tier: str = "fast",
    max_tokens: int = 1024,
    cache_system: bool = True,
    timeout: int = 30,
    client: httpx.AsyncClient | None = None,
) -> dict | None:
    """Ask Claude for a dict matching schema. None on any failure."""
    if not settings.anthropic_api_key:
        logger.warning("Claude call skipped: ANTHROPIC_API_KEY not set")
        return None

    body = build_request(
        prompt,
        schema,
        system=system,
        model_tier=model_tier,
        max_tokens=max_tokens,
        cache_system=cache_system,
    )
    try:
        resp = await (client or http).post(API_URL, headers=_headers(), json=body, timeout=timeout)
    except httpx.HTTPError as e:
        logger.warning(f"Claude [{model_tier}] request failed: {e}")
        return None

    if resp.status_code != 200:
        logger.warning(f"Claude [{model_tier}] HTTP {resp.status_code}: {resp.text[:200]}")
        return None

    data = resp.json()
    usage = data.get("usage", {})
    logger.debug(
        f"Claude [{model_tier}] in={usage.get('input_tokens')} out={usage.get('output_tokens')} "
        f"cache_read={usage.get('cache_read_input_tokens', 0)}"
    )
    result = tool_input(data)
    if result is None:
        logger.warning(f"Claude [{model_tier}] returned no {TOOL_NAME} call (stop={data.get('stop_reason')})")
    return result
