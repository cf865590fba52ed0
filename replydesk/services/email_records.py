"""
services/email_records.py — Record store access for ingested email

Business Rules:
- provider_message_id is the dedup gate: create returns None instead of
  raising when the id already exists
- processing_status only moves forward (PENDING -> PROCESSING -> final);
  a backwards or final-to-final move is refused and logged
- Retention only removes finished rows (COMPLETED/SKIPPED) that no
  live scheduled response still points at; only a CANCELLED response
  lets its email go

Called by: services/intake.py, services/reply_resolver.py, scheduler.py, routers/stats.py
Depends on: models
"""

from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import (
    EmailDirection,
    EmailRecord,
    ProcessingStatus,
    ResponseStatus,
    ScheduledResponse,
)
from ..models.emails import STATUS_RANK
from ..schemas.mail import InboundMessage

# Responses that still need their source email: pending ones, SENT (reply
# resolution reads the thread) and FAILED/EXPIRED (operator can reschedule)
RETAINED_RESPONSE_STATUSES = frozenset(ResponseStatus) - {ResponseStatus.CANCELLED}


def find_by_id(db: Session, record_id: int) -> EmailRecord | None:
    return db.get(EmailRecord, record_id)


def find_by_provider_id(db: Session, provider_message_id: str) -> EmailRecord | None:
    return (
        db.query(EmailRecord)
        .filter(EmailRecord.provider_message_id == provider_message_id)
        .first()
    )


def create_from_message(
    db: Session, user_id: int, message: InboundMessage, direction: EmailDirection
) -> EmailRecord | None:
    """Insert a PENDING record. Returns None if the provider id already exists."""
    record = EmailRecord(
        user_id=user_id,
        provider_message_id=message.provider_message_id,
        thread_id=message.thread_id,
        message_id_header=message.message_id_header,
        sender=message.sender,
        recipient=message.recipient,
        subject=message.subject,
        body=message.body,
        received_at=message.received_at,
        direction=direction,
        processing_status=ProcessingStatus.PENDING,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Email {message.provider_message_id} inserted concurrently, skipping")
        return None
    db.refresh(record)
    return record


def latest_received_at(db: Session, user_id: int) -> datetime | None:
    """Ingest cursor: newest received_at stored for this user."""
    record = (
        db.query(EmailRecord)
        .filter(EmailRecord.user_id == user_id)
        .order_by(EmailRecord.received_at.desc())
        .first()
    )
    return record.received_at if record else None


def _advance(
    db: Session, record: EmailRecord, status: ProcessingStatus, **fields
) -> EmailRecord:
    current = record.processing_status
    if STATUS_RANK[status] <= STATUS_RANK[current]:
        logger.warning(
            f"Email {record.id}: refusing status move {current.value} -> {status.value}"
        )
        return record
    record.processing_status = status
    for key, value in fields.items():
        setattr(record, key, value)
    db.commit()
    return record


def mark_processing(db: Session, record: EmailRecord) -> EmailRecord:
    return _advance(db, record, ProcessingStatus.PROCESSING)


def mark_skipped(db: Session, record: EmailRecord) -> EmailRecord:
    return _advance(
        db, record, ProcessingStatus.SKIPPED, processed_at=datetime.now(timezone.utc)
    )


def mark_completed(
    db: Session,
    record: EmailRecord,
    is_demo_request: bool | None = None,
    response_generated: bool | None = None,
) -> EmailRecord:
    fields: dict = {"processed_at": datetime.now(timezone.utc)}
    if is_demo_request is not None:
        fields["is_demo_request"] = is_demo_request
    if response_generated is not None:
        fields["response_generated"] = response_generated
    return _advance(db, record, ProcessingStatus.COMPLETED, **fields)


def mark_failed(db: Session, record: EmailRecord, error: str = "") -> EmailRecord:
    return _advance(
        db,
        record,
        ProcessingStatus.FAILED,
        error_message=error[:500] or None,
        processed_at=datetime.now(timezone.utc),
    )


def stamp_processed(db: Session, record: EmailRecord, when: datetime) -> EmailRecord:
    """Move processed_at forward without touching status (reply re-checks)."""
    record.processed_at = when
    db.commit()
    return record


def mark_response_sent(db: Session, record_id: int, response_message_id: str) -> None:
    """Flag the triggering email once its drafted reply went out."""
    db.query(EmailRecord).filter(EmailRecord.id == record_id).update(
        {
            EmailRecord.response_generated: True,
            EmailRecord.response_sent: True,
            EmailRecord.response_message_id: response_message_id,
        },
        synchronize_session=False,
    )
    db.commit()


def delete(db: Session, record_id: int) -> bool:
    record = db.get(EmailRecord, record_id)
    if not record:
        return False
    db.delete(record)
    db.commit()
    return True


# ── Aggregates ───────────────────────────────────────────────────────


def email_stats(db: Session, user_id: int, days: int = 30) -> dict:
    """Counts by processing status for mail ingested in the last N days."""
    since = datetime.now(timezone.utc) - timedelta(days=days)
    base = db.query(EmailRecord).filter(
        EmailRecord.user_id == user_id, EmailRecord.created_at >= since
    )
    by_status = dict(
        base.with_entities(EmailRecord.processing_status, func.count(EmailRecord.id))
        .group_by(EmailRecord.processing_status)
        .all()
    )
    return {
        "total": sum(by_status.values()),
        "pending": by_status.get(ProcessingStatus.PENDING, 0),
        "processing": by_status.get(ProcessingStatus.PROCESSING, 0),
        "skipped": by_status.get(ProcessingStatus.SKIPPED, 0),
        "processed": by_status.get(ProcessingStatus.COMPLETED, 0),
        "failed": by_status.get(ProcessingStatus.FAILED, 0),
        "demo_requests": base.filter(EmailRecord.is_demo_request.is_(True)).count(),
        "responses_sent": base.filter(EmailRecord.response_sent.is_(True)).count(),
    }


def cleanup_old_emails(db: Session, days: int = 90) -> int:
    """Retention sweep. Returns number of rows deleted."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    still_needed = select(ScheduledResponse.email_record_id).where(
        ScheduledResponse.status.in_(RETAINED_RESPONSE_STATUSES)
    )
    deleted = (
        db.query(EmailRecord)
        .filter(
            EmailRecord.processing_status.in_(
                [ProcessingStatus.COMPLETED, ProcessingStatus.SKIPPED]
            ),
            EmailRecord.processed_at < cutoff,
            EmailRecord.id.not_in(still_needed),
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info(f"Retention: deleted {deleted} email record(s) older than {days} days")
    return deleted
