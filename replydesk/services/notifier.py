"""Slack notification service: tells the team a reply has been drafted.

Posts a Block Kit message to a Slack incoming webhook after intake creates
a scheduled response, so someone can review or edit it before it goes out.

Business Rules:
- Fire-and-forget: errors logged, never raised
- Graceful degradation: no webhook URL configured returns False
- Body preview is cut at 200 characters
- Links point at the dashboard's scheduled-responses view

Called by: services/intake.py (via the Notifier protocol), main.py (wiring)
Depends on: http_client.py, config.py
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
from loguru import logger

from ..config import Settings
from ..http_client import http
from ..schemas.classification import ContactInfo
from ..schemas.mail import InboundMessage
from ..schemas.slots import TimeSlot

PREVIEW_CHARS = 200


def _deep_link(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def _preview(body: str) -> str:
    return body if len(body) <= PREVIEW_CHARS else body[:PREVIEW_CHARS] + "..."


def _make_blocks(
    contact: ContactInfo,
    subject: str,
    body: str,
    scheduled_for: str,
    slots: list[TimeSlot],
    dashboard_url: str,
    edit_url: str,
) -> list[dict]:
    """Build the Block Kit layout for a drafted-response notification."""
    who = contact.name or contact.email
    if contact.company:
        who = f"{who} ({contact.company})"
    slot_lines = "\n".join(f"{i}. {s.label}" for i, s in enumerate(slots, 1)) or "_none_"

    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "New demo request response scheduled"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Contact:*\n{who} <{contact.email}>"},
                {"type": "mrkdwn", "text": f"*Scheduled for:*\n{scheduled_for}"},
                {"type": "mrkdwn", "text": f"*Subject:*\n{subject}"},
            ],
        },
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Proposed times:*\n{slot_lines}"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Preview:*\n>{_preview(body)}"}},
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Edit response"},
                    "url": edit_url,
                    "style": "primary",
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Open dashboard"},
                    "url": dashboard_url,
                },
            ],
        },
    ]


class SlackNotifier:
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.webhook_url = settings.slack_notification_url
        self.dashboard_url = settings.dashboard_url
        self.tz = ZoneInfo(settings.default_timezone)
        self.client = client or http

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def response_created(
        self,
        message: InboundMessage,
        contact: ContactInfo,
        response_id: int,
        subject: str,
        body: str,
        scheduled_at: datetime,
        slots: list[TimeSlot],
    ) -> bool:
        """Post the notification. Returns True on success, False on any failure."""
        if not self.enabled:
            logger.debug("Slack webhook not configured, skipping notification")
            return False

        local = scheduled_at.astimezone(self.tz)
        blocks = _make_blocks(
            contact=contact,
            subject=subject,
            body=body,
            scheduled_for=f"{local:%a %b %d, %I:%M %p} {local.tzname()}",
            slots=slots,
            dashboard_url=self.dashboard_url,
            edit_url=_deep_link(self.dashboard_url, f"/scheduled-responses?id={response_id}"),
        )
        payload = {
            "text": f"Response to {contact.email} scheduled ({message.subject or 'no subject'})",
            "blocks": blocks,
        }

        try:
            resp = await self.client.post(self.webhook_url, json=payload, timeout=10)
        except httpx.HTTPError as e:
            logger.warning(f"Slack notification error: {e}")
            return False
        if resp.status_code >= 400:
            logger.warning(f"Slack notification failed: {resp.status_code} {resp.text[:200]}")
            return False
        return True
