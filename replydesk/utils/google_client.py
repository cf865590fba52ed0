"""Google API client: retry wrapper plus Gmail and Calendar adapters.

Retries 429 (honoring Retry-After) and 5xx with exponential backoff.
Client errors raise GoogleAPIError so callers can record the failure.

Usage:
    from replydesk.utils.google_client import GmailMailClient, GoogleCalendarClient
    mail = GmailMailClient(user.access_token, account_email=user.email)
    messages = await mail.list_messages(since, limit=20)
"""

import asyncio
import base64
from datetime import datetime, timezone
from email.message import EmailMessage

import httpx
from loguru import logger

from ..http_client import http
from ..schemas.calendar import CreatedEvent, EventRequest
from ..schemas.mail import InboundMessage, OutboundReply
from ..schemas.slots import BusyInterval

GMAIL_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
CALENDAR_BASE = "https://www.googleapis.com/calendar/v3"

MAX_RETRIES = 3
BACKOFF_BASE = 2  # seconds, exponential: 2, 4, 8

# Provider-side filter; the intake pre-filter catches the rest
NO_REPLY_QUERY = "-from:noreply -from:no-reply -from:donotreply"


class GoogleAPIError(Exception):
    def __init__(self, status: int | str, detail: str = ""):
        self.status = status
        self.detail = detail
        super().__init__(f"Google API {status}: {detail}")


def _retry_after(resp: httpx.Response, default: int) -> int:
    """Retry-After in seconds. HTTP-date or junk values fall back to default."""
    try:
        return max(0, int(resp.headers.get("Retry-After", default)))
    except ValueError:
        return default


class GoogleClient:
    """Thin wrapper around the Google REST APIs with retry."""

    def __init__(self, access_token: str, client: httpx.AsyncClient | None = None):
        self.client = client or http
        self._base_headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def get_json(self, url: str, params: dict | None = None) -> dict:
        return await self._request_with_retry("GET", url, params=params)

    async def post_json(self, url: str, json_data: dict, params: dict | None = None) -> dict:
        return await self._request_with_retry("POST", url, params=params, json_data=json_data)

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> dict:
        """Execute HTTP request with exponential backoff on 429 / 5xx."""
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self.client.request(
                    method, url, params=params, json=json_data, headers=self._base_headers
                )
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                wait = BACKOFF_BASE ** (attempt + 1)
                logger.warning(f"Google connection error, retry in {wait}s: {e}")
                await asyncio.sleep(wait)
                continue

            if resp.status_code in (200, 201):
                return resp.json()
            if resp.status_code == 204:
                return {}

            if resp.status_code == 429:
                wait = _retry_after(resp, BACKOFF_BASE ** (attempt + 1))
                logger.warning(f"Google 429, retry in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
                continue

            if resp.status_code >= 500:
                wait = BACKOFF_BASE ** (attempt + 1)
                logger.warning(
                    f"Google {resp.status_code}, retry in {wait}s (attempt {attempt + 1})"
                )
                await asyncio.sleep(wait)
                continue

            # Client error (400, 401, 403, 404): don't retry
            logger.error(f"Google {resp.status_code}: {resp.text[:300]}")
            raise GoogleAPIError(resp.status_code, resp.text[:300])

        logger.error(f"Google request failed after {MAX_RETRIES} retries: {url}")
        if last_error:
            raise last_error
        raise GoogleAPIError("max_retries", "All retries exhausted")


# ── Gmail ────────────────────────────────────────────────────────────


def _header(headers: list[dict], name: str) -> str:
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value", "")
    return ""


def _decode(data: str) -> str:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode("utf-8", "replace")


def _plain_body(payload: dict) -> str:
    """First text/plain part, depth first. Falls back to the top-level body."""
    if payload.get("mimeType") == "text/plain" and payload.get("body", {}).get("data"):
        return _decode(payload["body"]["data"])
    for part in payload.get("parts", []) or []:
        text = _plain_body(part)
        if text:
            return text
    data = payload.get("body", {}).get("data")
    return _decode(data) if data and not payload.get("parts") else ""


def parse_gmail_message(data: dict) -> InboundMessage:
    payload = data.get("payload", {})
    headers = payload.get("headers", [])
    received = datetime.fromtimestamp(int(data.get("internalDate", "0")) / 1000, tz=timezone.utc)
    return InboundMessage(
        provider_message_id=data["id"],
        thread_id=data.get("threadId") or data["id"],
        message_id_header=_header(headers, "Message-ID") or None,
        sender=_header(headers, "From"),
        recipient=_header(headers, "To"),
        subject=_header(headers, "Subject"),
        body=_plain_body(payload) or data.get("snippet", ""),
        received_at=received,
    )


class GmailMailClient(GoogleClient):
    def __init__(self, access_token: str, account_email: str, client: httpx.AsyncClient | None = None):
        super().__init__(access_token, client)
        self.account_email = account_email

    async def list_messages(self, since: datetime, limit: int) -> list[InboundMessage]:
        """Messages received after since, oldest first, at most limit."""
        query = f"after:{int(since.timestamp())} {NO_REPLY_QUERY}"
        listing = await self.get_json(
            f"{GMAIL_BASE}/messages", params={"q": query, "maxResults": limit}
        )
        messages = []
        for stub in listing.get("messages", [])[:limit]:
            data = await self.get_json(
                f"{GMAIL_BASE}/messages/{stub['id']}", params={"format": "full"}
            )
            messages.append(parse_gmail_message(data))
        messages.sort(key=lambda m: m.received_at)
        return messages

    async def send_reply(self, reply: OutboundReply) -> str:
        msg = EmailMessage()
        msg["To"] = reply.to
        msg["From"] = self.account_email
        msg["Subject"] = reply.subject
        if reply.in_reply_to:
            msg["In-Reply-To"] = reply.in_reply_to
            msg["References"] = reply.in_reply_to
        msg.set_content(reply.body)

        body: dict = {"raw": base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")}
        if reply.thread_id:
            body["threadId"] = reply.thread_id
        result = await self.post_json(f"{GMAIL_BASE}/messages/send", body)
        return result["id"]


# ── Calendar ─────────────────────────────────────────────────────────


class GoogleCalendarClient(GoogleClient):
    def __init__(self, access_token: str, calendar_id: str = "primary", client: httpx.AsyncClient | None = None):
        super().__init__(access_token, client)
        self.calendar_id = calendar_id

    async def free_busy(self, start: datetime, end: datetime) -> list[BusyInterval]:
        result = await self.post_json(
            f"{CALENDAR_BASE}/freeBusy",
            {
                "timeMin": start.isoformat(),
                "timeMax": end.isoformat(),
                "items": [{"id": self.calendar_id}],
            },
        )
        busy = result.get("calendars", {}).get(self.calendar_id, {}).get("busy", [])
        return [BusyInterval(start=b["start"], end=b["end"]) for b in busy]

    async def create_event(self, request: EventRequest) -> CreatedEvent:
        attendee = {"email": request.attendee_email}
        if request.attendee_name:
            attendee["displayName"] = request.attendee_name
        result = await self.post_json(
            f"{CALENDAR_BASE}/calendars/{self.calendar_id}/events",
            {
                "summary": request.summary,
                "description": request.description,
                "start": {"dateTime": request.start.isoformat(), "timeZone": request.timezone},
                "end": {"dateTime": request.end.isoformat(), "timeZone": request.timezone},
                "attendees": [attendee],
            },
            params={"sendUpdates": "all"},
        )
        logger.info(f"Created calendar event {result['id']} for {request.attendee_email}")
        return CreatedEvent(
            event_id=result["id"], calendar_id=self.calendar_id, timezone=request.timezone
        )
