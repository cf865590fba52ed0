"""
test_google_client.py — Tests for the Gmail / Calendar adapters

Uses httpx.MockTransport so no request leaves the process; backoff sleeps
are patched out.
"""

import base64
import json
from datetime import datetime, timezone
from email import message_from_bytes
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from replydesk.schemas.calendar import EventRequest
from replydesk.schemas.mail import OutboundReply
from replydesk.utils.google_client import (
    GmailMailClient,
    GoogleAPIError,
    GoogleCalendarClient,
    parse_gmail_message,
)

SLEEP = "replydesk.utils.google_client.asyncio.sleep"


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _gmail_message(msg_id: str, internal_ms: int, body: str = "Hello") -> dict:
    return {
        "id": msg_id,
        "threadId": f"t-{msg_id}",
        "internalDate": str(internal_ms),
        "snippet": body[:20],
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": "Jane Doe <jane@acme.test>"},
                {"name": "To", "value": "sam@replydesk.test"},
                {"name": "Subject", "value": "Demo"},
                {"name": "Message-ID", "value": f"<{msg_id}@acme.test>"},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64(body)}},
                {"mimeType": "text/html", "body": {"data": _b64(f"<p>{body}</p>")}},
            ],
        },
    }


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_parse_gmail_message():
    msg = parse_gmail_message(_gmail_message("m1", 1772438400000, body="Can we get a demo?"))
    assert msg.provider_message_id == "m1"
    assert msg.thread_id == "t-m1"
    assert msg.message_id_header == "<m1@acme.test>"
    assert msg.sender_address == "jane@acme.test"
    assert msg.body == "Can we get a demo?"
    assert msg.received_at == datetime.fromtimestamp(1772438400, tz=timezone.utc)


@pytest.mark.asyncio
async def test_list_messages_queries_since_and_sorts_oldest_first():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            seen["q"] = request.url.params["q"]
            seen["max"] = request.url.params["maxResults"]
            return httpx.Response(200, json={"messages": [{"id": "new"}, {"id": "old"}]})
        msg_id = request.url.path.rsplit("/", 1)[-1]
        ms = 2_000_000_000_000 if msg_id == "new" else 1_000_000_000_000
        return httpx.Response(200, json=_gmail_message(msg_id, ms))

    mail = GmailMailClient("tok", "sam@replydesk.test", client=_client(handler))
    since = datetime(2026, 3, 1, tzinfo=timezone.utc)
    messages = await mail.list_messages(since, limit=20)

    assert [m.provider_message_id for m in messages] == ["old", "new"]
    assert seen["q"].startswith(f"after:{int(since.timestamp())}")
    assert "-from:noreply" in seen["q"]
    assert seen["max"] == "20"


@pytest.mark.asyncio
async def test_send_reply_threads_message():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        captured["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "sent-9", "threadId": "t-1"})

    mail = GmailMailClient("tok", "sam@replydesk.test", client=_client(handler))
    sent_id = await mail.send_reply(
        OutboundReply(to="jane@acme.test", subject="Re: Demo", body="Times below", thread_id="t-1", in_reply_to="<m1@acme.test>")
    )

    assert sent_id == "sent-9"
    assert captured["auth"] == "Bearer tok"
    assert captured["body"]["threadId"] == "t-1"
    raw = base64.urlsafe_b64decode(captured["body"]["raw"])
    parsed = message_from_bytes(raw)
    assert parsed["In-Reply-To"] == "<m1@acme.test>"
    assert parsed["To"] == "jane@acme.test"


@pytest.mark.asyncio
async def test_retries_429_then_succeeds():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "1"})
        if calls["n"] == 2:
            return httpx.Response(503)
        return httpx.Response(200, json={"calendars": {"primary": {"busy": []}}})

    cal = GoogleCalendarClient("tok", client=_client(handler))
    with patch(SLEEP, new=AsyncMock()) as sleep:
        busy = await cal.free_busy(datetime(2026, 3, 2, tzinfo=timezone.utc), datetime(2026, 3, 9, tzinfo=timezone.utc))

    assert busy == []
    assert calls["n"] == 3
    assert [c.args[0] for c in sleep.call_args_list] == [1, 4]


@pytest.mark.asyncio
async def test_client_error_raises_without_retry():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401, text="invalid credentials")

    mail = GmailMailClient("tok", "sam@replydesk.test", client=_client(handler))
    with pytest.raises(GoogleAPIError) as exc:
        await mail.send_reply(OutboundReply(to="a@b.test", subject="s", body="b"))
    assert exc.value.status == 401
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_free_busy_and_create_event():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/freeBusy"):
            return httpx.Response(
                200,
                json={"calendars": {"primary": {"busy": [
                    {"start": "2026-03-02T17:00:00Z", "end": "2026-03-02T18:00:00Z"}
                ]}}},
            )
        assert request.url.params["sendUpdates"] == "all"
        body = json.loads(request.content)
        assert body["attendees"] == [{"email": "jane@acme.test", "displayName": "Jane"}]
        return httpx.Response(200, json={"id": "gcal-1"})

    cal = GoogleCalendarClient("tok", client=_client(handler))
    start = datetime(2026, 3, 2, tzinfo=timezone.utc)
    busy = await cal.free_busy(start, datetime(2026, 3, 3, tzinfo=timezone.utc))
    assert busy[0].start == datetime(2026, 3, 2, 17, tzinfo=timezone.utc)

    created = await cal.create_event(
        EventRequest(summary="Meeting with Jane", start=start, end=start.replace(hour=1),
                     attendee_email="jane@acme.test", attendee_name="Jane")
    )
    assert created.event_id == "gcal-1"
    assert created.calendar_id == "primary"


@pytest.mark.asyncio
async def test_http_date_retry_after_uses_backoff():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"})
        return httpx.Response(200, json={"calendars": {"primary": {"busy": []}}})

    cal = GoogleCalendarClient("tok", client=_client(handler))
    with patch(SLEEP, new=AsyncMock()) as sleep:
        await cal.free_busy(datetime(2026, 3, 2, tzinfo=timezone.utc), datetime(2026, 3, 3, tzinfo=timezone.utc))

    assert calls["n"] == 2
    sleep.assert_awaited_once_with(2)
