"""Database models — re-exports all models.

Import from here:  from replydesk.models import EmailRecord, ScheduledResponse, ...
Or from submodules: from replydesk.models.emails import EmailRecord
"""

from .base import Base  # noqa: F401

# Accounts
from .auth import User  # noqa: F401

# Email pipeline
from .emails import EmailDirection, EmailRecord, ProcessingStatus  # noqa: F401

# Drafted replies
from .responses import (  # noqa: F401
    PENDING_STATUSES,
    TERMINAL_STATUSES,
    ResponseStatus,
    ScheduledResponse,
)

# Booked meetings
from .calendar import CalendarEventRecord, CalendarEventStatus  # noqa: F401
