"""Shared HTTP client: pooled connections for all outbound requests.

One module-level httpx.AsyncClient, used by the Google adapters, the
Claude client and the Slack notifier. Default timeout comes from
HTTP_TIMEOUT_SECONDS; override per request with timeout=.

Usage:
    from replydesk.http_client import http
    resp = await http.post(url, json=payload, timeout=15)
"""

import httpx
from loguru import logger

from .config import settings

# Google, Anthropic and Slack only; a handful of hosts
_LIMITS = httpx.Limits(
    max_connections=20,
    max_keepalive_connections=10,
    keepalive_expiry=30,
)

http = httpx.AsyncClient(
    timeout=settings.http_timeout_seconds,
    limits=_LIMITS,
    headers={"User-Agent": "ReplyDesk/0.1"},
    follow_redirects=False,
)


async def close_clients():
    """Shut down the shared client. Call from app lifespan shutdown."""
    if http.is_closed:
        return
    try:
        await http.aclose()
    except RuntimeError as e:
        # Event loop already gone at interpreter exit
        logger.debug(f"HTTP client close skipped: {e}")
