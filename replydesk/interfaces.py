"""Narrow collaborator interfaces.

Each component depends only on the operations it calls, so the Google,
Anthropic and Slack adapters can be swapped for fakes in tests.

Called by: services/intake.py, services/reply_resolver.py, scheduler.py
"""

from datetime import datetime
from typing import Protocol

from .schemas.calendar import CreatedEvent, EventRequest
from .schemas.classification import ClassificationResult, ContactInfo, ReplyDecision
from .schemas.mail import InboundMessage, OutboundReply
from .schemas.slots import BusyInterval, TimeSlot


class MailClient(Protocol):
    async def list_messages(self, since: datetime, limit: int) -> list[InboundMessage]: ...

    async def send_reply(self, reply: OutboundReply) -> str:
        """Send and return the provider's id for the sent message."""
        ...


class CalendarClient(Protocol):
    async def free_busy(self, start: datetime, end: datetime) -> list[BusyInterval]: ...

    async def create_event(self, request: EventRequest) -> CreatedEvent: ...


class Classifier(Protocol):
    async def classify(self, message: InboundMessage) -> ClassificationResult: ...

    async def decide_reply(
        self, message: InboundMessage, proposed_slots: list[TimeSlot]
    ) -> ReplyDecision: ...


class Notifier(Protocol):
    async def response_created(
        self,
        message: InboundMessage,
        contact: ContactInfo,
        response_id: int,
        subject: str,
        body: str,
        scheduled_at: datetime,
        slots: list[TimeSlot],
    ) -> bool: ...
