"""
services/intake.py — Email intake: dedupe, direction check, filter, classify, draft

Business Rules:
- provider_message_id dedupes; a duplicate is never re-stored, but if its
  thread already has a SENT response it still goes to the reply resolver
- Mail that neither comes from nor goes to the account is rejected and
  not stored
- Outbound mail is stored for audit only and marked COMPLETED
- Newsletter / bounce / auto-reply mail is SKIPPED before any AI call
- A new inbound message on a thread we already answered is a reply: the
  resolver decides whether to book, no new draft is made
- Demo requests at or above the confidence threshold with slots get a
  ScheduledResponse sent response_delay later
- Collaborator errors mark the record FAILED; it is not retried
- Database errors propagate so the caller aborts the pass

Called by: scheduler.py (IngestJob)
Depends on: services/email_records.py, services/scheduled_responses.py,
            services/reply_resolver.py, interfaces.py
"""

import enum
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings
from ..interfaces import Classifier, Notifier
from ..models import EmailDirection, EmailRecord, User
from ..schemas.classification import ContactInfo
from ..schemas.mail import InboundMessage
from . import email_records, scheduled_responses
from .reply_resolver import ReplyOutcome, ReplyResolver

SKIP_KEYWORDS = (
    # newsletters and marketing
    "unsubscribe", "newsletter", "marketing", "promotion",
    "sale", "discount", "offer", "deals", "no-reply",
    # bounces
    "delivery failure", "bounce", "postmaster", "mailer-daemon",
    "delivery status notification", "returned mail",
    # automated
    "do-not-reply", "noreply", "auto-reply", "out of office",
    "automatic reply", "vacation response",
)  # fmt: skip

_SKIP_RE = re.compile(
    r"(?<![\w-])(" + "|".join(re.escape(k) for k in SKIP_KEYWORDS) + r")(?![\w-])"
)


class IngestOutcome(str, enum.Enum):
    DUPLICATE = "DUPLICATE"
    REJECTED = "REJECTED"
    OUTBOUND_LOGGED = "OUTBOUND_LOGGED"
    SKIPPED = "SKIPPED"
    REPLY = "REPLY"
    NOT_DEMO = "NOT_DEMO"
    NO_AVAILABILITY = "NO_AVAILABILITY"
    SCHEDULED = "SCHEDULED"
    FAILED = "FAILED"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    email_record_id: int | None = None
    response_id: int | None = None
    reply_outcome: ReplyOutcome | None = None
    detail: str = ""


def should_skip(message: InboundMessage) -> bool:
    """Whole-word keyword match over subject, body and sender."""
    for text in (message.subject, message.body, message.sender):
        if _SKIP_RE.search((text or "").lower()):
            return True
    return False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmailIntake:
    def __init__(
        self,
        classifier: Classifier,
        resolver: ReplyResolver,
        settings: Settings,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.classifier = classifier
        self.resolver = resolver
        self.settings = settings
        self.notifier = notifier
        self.clock = clock

    async def ingest(self, db: Session, user: User, message: InboundMessage) -> IngestResult:
        account = user.email.lower()

        existing = email_records.find_by_provider_id(db, message.provider_message_id)
        if existing:
            return await self._handle_duplicate(db, user, message, existing)

        if message.sender_address == account:
            direction = EmailDirection.OUTBOUND
        elif account in message.sender.lower() or account in message.recipient.lower():
            direction = EmailDirection.INBOUND
        else:
            logger.warning(
                f"Rejected {message.provider_message_id}: neither from nor to {account}"
            )
            return IngestResult(IngestOutcome.REJECTED, detail="not addressed to account")

        record = email_records.create_from_message(db, user.id, message, direction)
        if record is None:
            return IngestResult(IngestOutcome.DUPLICATE)
        email_records.mark_processing(db, record)

        if direction == EmailDirection.OUTBOUND:
            email_records.mark_completed(db, record)
            return IngestResult(IngestOutcome.OUTBOUND_LOGGED, email_record_id=record.id)

        if should_skip(message):
            email_records.mark_skipped(db, record)
            logger.debug(f"Skipped automated/marketing email {message.provider_message_id}")
            return IngestResult(IngestOutcome.SKIPPED, email_record_id=record.id)

        try:
            return await self._process(db, user, message, record)
        except SQLAlchemyError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Email {message.provider_message_id} failed: {e}")
            email_records.mark_failed(db, record, f"{type(e).__name__}: {e}")
            return IngestResult(IngestOutcome.FAILED, email_record_id=record.id, detail=str(e))

    async def _handle_duplicate(
        self, db: Session, user: User, message: InboundMessage, existing: EmailRecord
    ) -> IngestResult:
        result = IngestResult(IngestOutcome.DUPLICATE, email_record_id=existing.id)
        if existing.direction != EmailDirection.INBOUND:
            return result

        sent = scheduled_responses.find_sent_by_thread(db, user.id, message.thread_id)
        if not sent:
            return result
        # Already weighed against the newest sent proposal; re-listing alone is no news
        newest_sent = sent[0].sent_at
        if existing.processed_at and newest_sent and existing.processed_at >= newest_sent:
            return result
        try:
            result.reply_outcome = await self.resolver.resolve(db, user, message, sent)
            email_records.stamp_processed(db, existing, self.clock())
        except SQLAlchemyError:
            db.rollback()
            raise
        except Exception as e:
            # Status is already final; only log
            logger.error(f"Reply check for duplicate {message.provider_message_id} failed: {e}")
            result.detail = str(e)
        return result

    async def _process(
        self, db: Session, user: User, message: InboundMessage, record: EmailRecord
    ) -> IngestResult:
        sent = scheduled_responses.find_sent_by_thread(db, user.id, message.thread_id)
        if sent:
            reply_outcome = await self.resolver.resolve(db, user, message, sent)
            email_records.mark_completed(db, record, is_demo_request=False)
            return IngestResult(
                IngestOutcome.REPLY, email_record_id=record.id, reply_outcome=reply_outcome
            )

        classification = await self.classifier.classify(message)
        threshold = self.settings.demo_confidence_threshold
        if not classification.is_actionable(threshold):
            email_records.mark_completed(db, record, is_demo_request=False)
            logger.info(
                f"Email {message.provider_message_id} not a demo request "
                f"(confidence {classification.confidence:.2f})"
            )
            return IngestResult(IngestOutcome.NOT_DEMO, email_record_id=record.id)

        if not classification.proposed_slots or not classification.response_body:
            email_records.mark_completed(db, record, is_demo_request=True)
            logger.info(f"Demo request {message.provider_message_id}: no availability")
            return IngestResult(IngestOutcome.NO_AVAILABILITY, email_record_id=record.id)

        contact = classification.contact or ContactInfo(
            name=message.sender_name, email=message.sender_address
        )
        response = scheduled_responses.create_scheduled_response(
            db,
            user_id=user.id,
            email_record_id=record.id,
            recipient_email=contact.email,
            recipient_name=contact.name or None,
            subject=classification.response_subject or f"Re: {message.subject}",
            body=classification.response_body,
            slots=classification.proposed_slots,
            now=self.clock(),
            delay=self.settings.response_delay,
        )
        email_records.mark_completed(db, record, is_demo_request=True, response_generated=True)
        await self._notify(message, contact, response)
        return IngestResult(
            IngestOutcome.SCHEDULED, email_record_id=record.id, response_id=response.id
        )

    async def _notify(self, message: InboundMessage, contact: ContactInfo, response) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.response_created(
                message,
                contact,
                response.id,
                response.subject,
                response.body,
                response.scheduled_at,
                response.slots,
            )
        except Exception as e:
            logger.warning(f"Notification for response {response.id} failed: {e}")
