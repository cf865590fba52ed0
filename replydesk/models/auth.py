"""Auth & user models."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class User(Base):
    """The mail account that owns ingested mail, drafts and meetings.

    access_token is an opaque provider token handed to the mail and
    calendar adapters; acquiring and refreshing it happens elsewhere.
    """

    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255))
    is_active = Column(Boolean, default=True)
    access_token = Column(Text)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    emails = relationship("EmailRecord", back_populates="user")
