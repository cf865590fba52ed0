"""
services/reply_resolver.py — Book the meeting when a prospect answers a proposal

Business Rules:
- Idempotent per (user, thread, attendee): a second reply on the same
  thread from the same person never books a second meeting
- Only SENT responses that carried proposed slots can be accepted
- Anything short of a clear pick of one offered slot is DECLINED, a
  normal outcome and not an error
- A unique-index collision on insert (racing resolver) is ALREADY_BOOKED
- The event row links to the reply's own EmailRecord, not the request

Called by: services/intake.py
Depends on: services/calendar_events.py, services/email_records.py, interfaces.py
"""

import enum

from loguru import logger
from sqlalchemy.orm import Session

from ..interfaces import CalendarClient, Classifier
from ..models import CalendarEventStatus, ScheduledResponse, User
from ..schemas.calendar import EventRequest
from ..schemas.mail import InboundMessage
from . import calendar_events, email_records


class ReplyOutcome(str, enum.Enum):
    ALREADY_BOOKED = "ALREADY_BOOKED"
    NO_PROPOSAL = "NO_PROPOSAL"
    BOOKED = "BOOKED"
    DECLINED = "DECLINED"


class ReplyResolver:
    def __init__(
        self,
        classifier: Classifier,
        calendar: CalendarClient,
        calendar_id: str = "primary",
        timezone: str = "UTC",
    ):
        self.classifier = classifier
        self.calendar = calendar
        self.calendar_id = calendar_id
        self.timezone = timezone

    async def resolve(
        self,
        db: Session,
        user: User,
        message: InboundMessage,
        sent_responses: list[ScheduledResponse],
    ) -> ReplyOutcome:
        attendee = message.sender_address

        existing = calendar_events.find_by_thread_and_attendee(
            db, user.id, message.thread_id, attendee
        )
        if existing:
            logger.info(f"Thread {message.thread_id}: {attendee} already booked (event {existing.id})")
            return ReplyOutcome.ALREADY_BOOKED

        proposal = next((r for r in sent_responses if r.proposed_slots), None)
        if proposal is None:
            logger.info(f"Thread {message.thread_id}: no sent proposal with slots")
            return ReplyOutcome.NO_PROPOSAL

        decision = await self.classifier.decide_reply(message, proposal.slots)
        if not decision.should_create_event or decision.selected_slot is None:
            logger.info(f"Thread {message.thread_id}: no booking ({decision.reason})")
            return ReplyOutcome.DECLINED

        slot = decision.selected_slot
        name = proposal.recipient_name or message.sender_name
        request = EventRequest(
            summary=f"Meeting with {name}",
            description=f"Booked from email thread: {message.subject}",
            start=slot.start,
            end=slot.end,
            attendee_email=attendee,
            attendee_name=name,
            timezone=self.timezone,
        )
        created = await self.calendar.create_event(request)

        reply_record = email_records.find_by_provider_id(db, message.provider_message_id)
        event = calendar_events.create_event_record(
            db,
            user_id=user.id,
            email_record_id=reply_record.id if reply_record else None,
            provider_event_id=created.event_id,
            calendar_id=created.calendar_id or self.calendar_id,
            thread_id=message.thread_id,
            summary=request.summary,
            description=request.description,
            start_time=slot.start,
            end_time=slot.end,
            timezone=created.timezone,
            attendee_email=attendee,
            attendee_name=name,
            status=CalendarEventStatus.SCHEDULED,
        )
        if event is None:
            logger.warning(
                f"Thread {message.thread_id}: concurrent booking won, "
                f"provider event {created.event_id} left unrecorded"
            )
            return ReplyOutcome.ALREADY_BOOKED

        logger.info(f"Booked event {event.id} with {attendee} at {slot.label or slot.start.isoformat()}")
        return ReplyOutcome.BOOKED
