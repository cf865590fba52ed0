"""
schemas/responses.py — Request/response models for the operator API

Business Rules:
- Edits replace subject/body/slots wholesale; omitted fields are kept
- Reschedule requires an explicit new send time
- Job triggers report ok + a short detail string, never raise

Called by: routers/scheduled_responses.py, routers/jobs.py, routers/stats.py
Depends on: pydantic, schemas/slots.py
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..models.responses import ResponseStatus
from .slots import TimeSlot


class OkResponse(BaseModel):
    ok: bool = True
    detail: str = ""


# ── Scheduled responses ──────────────────────────────────────────────


class ScheduledResponseOut(BaseModel, from_attributes=True):
    id: int
    user_id: int
    email_record_id: int
    recipient_email: str
    recipient_name: str | None = None
    subject: str
    body: str
    proposed_slots: list[TimeSlot] = Field(default_factory=list)
    scheduled_at: datetime | None = None
    status: ResponseStatus
    status_reason: str | None = None
    sent_at: datetime | None = None
    sent_message_id: str | None = None
    last_edited_at: datetime | None = None
    edited_by: str | None = None
    created_at: datetime | None = None


class ScheduledResponseEdit(BaseModel):
    subject: str | None = None
    body: str | None = None
    proposed_slots: list[TimeSlot] | None = None
    scheduled_at: datetime | None = None
    edited_by: str | None = None


class RescheduleRequest(BaseModel):
    scheduled_at: datetime


# ── Jobs ─────────────────────────────────────────────────────────────


class IngestStatus(BaseModel):
    is_running: bool = False


class SenderStatus(BaseModel):
    is_running: bool = False
    last_sent_at: datetime | None = None
    next_send_allowed_at: datetime | None = None


class JobStatusResponse(BaseModel):
    ingest: IngestStatus
    sender: SenderStatus
