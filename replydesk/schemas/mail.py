"""
schemas/mail.py — Messages exchanged with the mail collaborator

InboundMessage is what the mail adapter hands to intake; OutboundReply is
what the send scheduler hands back to it.

Called by: services/intake.py, scheduler.py, utils/google_client.py
Depends on: pydantic
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from pydantic import BaseModel, field_validator

_ADDRESS_RE = re.compile(r"<([^<>]+)>")


def extract_address(header: str) -> str:
    """'Jane Doe <jane@acme.com>' -> 'jane@acme.com' (lowercased)."""
    m = _ADDRESS_RE.search(header or "")
    return (m.group(1) if m else header or "").strip().strip('"').lower()


def extract_display_name(header: str) -> str:
    """'Jane Doe <jane@acme.com>' -> 'Jane Doe'; falls back to the address."""
    if "<" in (header or ""):
        name = header.split("<", 1)[0].strip().strip('"')
        if name:
            return name
    return extract_address(header)


class InboundMessage(BaseModel):
    provider_message_id: str
    thread_id: str
    message_id_header: str | None = None
    sender: str
    recipient: str = ""
    subject: str = ""
    body: str = ""
    received_at: datetime

    @field_validator("received_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

    @property
    def sender_address(self) -> str:
        return extract_address(self.sender)

    @property
    def sender_name(self) -> str:
        return extract_display_name(self.sender)


class OutboundReply(BaseModel):
    to: str
    subject: str
    body: str
    thread_id: str | None = None
    in_reply_to: str | None = None
