"""
schemas/calendar.py — Calendar collaborator payloads and event API models

Called by: services/reply_resolver.py, routers/calendar_events.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from ..models.calendar import CalendarEventStatus


class EventRequest(BaseModel):
    summary: str
    description: str = ""
    start: datetime
    end: datetime
    attendee_email: str
    attendee_name: str = ""
    timezone: str = "UTC"


class CreatedEvent(BaseModel):
    event_id: str
    calendar_id: str = "primary"
    timezone: str = "UTC"


class CalendarEventOut(BaseModel, from_attributes=True):
    id: int
    provider_event_id: str
    calendar_id: str
    thread_id: str
    summary: str
    start_time: datetime
    end_time: datetime
    timezone: str
    attendee_email: str
    attendee_name: str | None = None
    status: CalendarEventStatus
