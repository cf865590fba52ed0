"""Calendar event model: local mirror of meetings booked from replies."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class CalendarEventStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class CalendarEventRecord(Base):
    __tablename__ = "calendar_events"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # The reply's own record, not the original inbound request
    email_record_id = Column(Integer, ForeignKey("email_records.id", ondelete="SET NULL"))
    provider_event_id = Column(String(255), nullable=False)
    calendar_id = Column(String(255), nullable=False, default="primary")
    thread_id = Column(String(255), nullable=False)
    summary = Column(String(500), nullable=False)
    description = Column(Text)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    attendee_email = Column(String(255), nullable=False)
    attendee_name = Column(String(255))
    status = Column(
        Enum(CalendarEventStatus, native_enum=False, length=20),
        nullable=False,
        default=CalendarEventStatus.SCHEDULED,
    )
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    email_record = relationship("EmailRecord")

    __table_args__ = (
        Index("ix_calendar_events_provider", "provider_event_id", "calendar_id", unique=True),
        Index("ix_calendar_events_thread_attendee", "user_id", "thread_id", "attendee_email", unique=True),
        Index("ix_calendar_events_start", "user_id", "start_time"),
    )
