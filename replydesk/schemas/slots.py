"""
schemas/slots.py — Time slot and busy interval shapes

Business Rules:
- A slot is a half-open interval [start, end) with end > start
- Naive datetimes are treated as UTC so comparisons never mix kinds
- label is the human-readable text shown in the reply email

Called by: services/slot_finder.py, services/intake.py, models/responses.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, field_validator, model_validator


def _as_utc(v: datetime) -> datetime:
    return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v


class BusyInterval(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return _as_utc(v)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


class TimeSlot(BaseModel):
    start: datetime
    end: datetime
    label: str = ""

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeSlot":
        if self.end <= self.start:
            raise ValueError("slot end must be after start")
        return self

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.start < other.end and self.end > other.start

    def touches(self, other: "TimeSlot") -> bool:
        return self.end == other.start or other.end == self.start
