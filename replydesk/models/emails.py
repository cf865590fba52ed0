"""Email pipeline models: one row per ingested message, inbound or outbound."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class EmailDirection(str, enum.Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class ProcessingStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SKIPPED = "SKIPPED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Forward-only ordering; SKIPPED/COMPLETED/FAILED are all final
STATUS_RANK = {
    ProcessingStatus.PENDING: 0,
    ProcessingStatus.PROCESSING: 1,
    ProcessingStatus.SKIPPED: 2,
    ProcessingStatus.COMPLETED: 2,
    ProcessingStatus.FAILED: 2,
}


class EmailRecord(Base):
    __tablename__ = "email_records"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider_message_id = Column(String(255), nullable=False, unique=True)
    thread_id = Column(String(255), nullable=False)
    message_id_header = Column(String(500))
    sender = Column(String(500), nullable=False)
    recipient = Column(Text, nullable=False)
    subject = Column(String(1000), default="")
    body = Column(Text, default="")
    received_at = Column(UTCDateTime, nullable=False)
    direction = Column(Enum(EmailDirection, native_enum=False, length=20), nullable=False)
    processing_status = Column(
        Enum(ProcessingStatus, native_enum=False, length=20),
        nullable=False,
        default=ProcessingStatus.PENDING,
    )
    is_demo_request = Column(Boolean, default=False)
    response_generated = Column(Boolean, default=False)
    response_sent = Column(Boolean, default=False)
    response_message_id = Column(String(255))
    error_message = Column(String(500))
    processed_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user = relationship("User", back_populates="emails")
    scheduled_responses = relationship("ScheduledResponse", back_populates="email_record")

    __table_args__ = (
        Index("ix_email_records_thread", "thread_id"),
        Index("ix_email_records_user_received", "user_id", "received_at"),
        Index("ix_email_records_status", "processing_status"),
    )
