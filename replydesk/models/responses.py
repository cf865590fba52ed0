"""Scheduled response model: a drafted reply waiting for its send window."""

import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class ResponseStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    EDITING = "EDITING"
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset(
    {ResponseStatus.SENT, ResponseStatus.CANCELLED, ResponseStatus.FAILED, ResponseStatus.EXPIRED}
)
PENDING_STATUSES = frozenset(
    {ResponseStatus.DRAFT, ResponseStatus.EDITING, ResponseStatus.SCHEDULED}
)


class ScheduledResponse(Base):
    __tablename__ = "scheduled_responses"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    email_record_id = Column(
        Integer, ForeignKey("email_records.id", ondelete="CASCADE"), nullable=False
    )
    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(255))
    subject = Column(String(1000), nullable=False)
    body = Column(Text, nullable=False)
    proposed_slots = Column(JSON, default=list)  # [{start, end, label}] ISO strings
    scheduled_at = Column(UTCDateTime)
    status = Column(
        Enum(ResponseStatus, native_enum=False, length=20),
        nullable=False,
        default=ResponseStatus.DRAFT,
    )
    status_reason = Column(String(500))
    sent_at = Column(UTCDateTime)
    sent_message_id = Column(String(255))
    last_edited_at = Column(UTCDateTime)
    edited_by = Column(String(255))
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    email_record = relationship("EmailRecord", back_populates="scheduled_responses")

    __table_args__ = (
        Index("ix_scheduled_responses_due", "status", "scheduled_at"),
        Index("ix_scheduled_responses_email", "email_record_id"),
    )

    @property
    def slots(self) -> list:
        """proposed_slots validated as TimeSlot objects."""
        from ..schemas.slots import TimeSlot

        return [TimeSlot.model_validate(s) for s in (self.proposed_slots or [])]
