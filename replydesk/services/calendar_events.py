"""
services/calendar_events.py — Local records of meetings booked from replies

Business Rules:
- (provider_event_id, calendar_id) is unique
- At most one event per (user, thread, attendee); the reply resolver looks
  this up first and the unique index catches a racing second insert
- A collision on create returns None, it is never raised
- Retention removes events that ended more than N days ago

Called by: services/reply_resolver.py, scheduler.py, routers/calendar_events.py, routers/stats.py
Depends on: models
"""

from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import CalendarEventRecord, CalendarEventStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_event_record(db: Session, **fields) -> CalendarEventRecord | None:
    """Insert an event row. Returns None when a unique key already exists."""
    event = CalendarEventRecord(**fields)
    db.add(event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            f"Event for thread {fields.get('thread_id')} / {fields.get('attendee_email')} "
            "already recorded"
        )
        return None
    db.refresh(event)
    return event


def find_by_id(db: Session, event_id: int) -> CalendarEventRecord | None:
    return db.get(CalendarEventRecord, event_id)


def find_by_provider_event_id(
    db: Session, provider_event_id: str, calendar_id: str = "primary"
) -> CalendarEventRecord | None:
    return (
        db.query(CalendarEventRecord)
        .filter(
            CalendarEventRecord.provider_event_id == provider_event_id,
            CalendarEventRecord.calendar_id == calendar_id,
        )
        .first()
    )


def find_by_thread_and_attendee(
    db: Session, user_id: int, thread_id: str, attendee_email: str
) -> CalendarEventRecord | None:
    return (
        db.query(CalendarEventRecord)
        .filter(
            CalendarEventRecord.user_id == user_id,
            CalendarEventRecord.thread_id == thread_id,
            CalendarEventRecord.attendee_email == attendee_email.lower(),
        )
        .first()
    )


def find_upcoming(db: Session, user_id: int, days: int = 7) -> list[CalendarEventRecord]:
    now = _now()
    return (
        db.query(CalendarEventRecord)
        .filter(
            CalendarEventRecord.user_id == user_id,
            CalendarEventRecord.start_time >= now,
            CalendarEventRecord.start_time <= now + timedelta(days=days),
            CalendarEventRecord.status.in_(
                [CalendarEventStatus.SCHEDULED, CalendarEventStatus.CONFIRMED]
            ),
        )
        .order_by(CalendarEventRecord.start_time.asc())
        .all()
    )


def find_in_range(
    db: Session, user_id: int, start: datetime, end: datetime
) -> list[CalendarEventRecord]:
    """Events overlapping [start, end)."""
    return (
        db.query(CalendarEventRecord)
        .filter(
            CalendarEventRecord.user_id == user_id,
            CalendarEventRecord.start_time < end,
            CalendarEventRecord.end_time > start,
        )
        .order_by(CalendarEventRecord.start_time.asc())
        .all()
    )


def _set_status(
    db: Session, event_id: int, status: CalendarEventStatus
) -> CalendarEventRecord | None:
    event = db.get(CalendarEventRecord, event_id)
    if not event:
        return None
    event.status = status
    db.commit()
    db.refresh(event)
    logger.info(f"Calendar event {event_id} -> {status.value}")
    return event


def mark_confirmed(db: Session, event_id: int) -> CalendarEventRecord | None:
    return _set_status(db, event_id, CalendarEventStatus.CONFIRMED)


def mark_cancelled(db: Session, event_id: int) -> CalendarEventRecord | None:
    return _set_status(db, event_id, CalendarEventStatus.CANCELLED)


def delete(db: Session, event_id: int) -> bool:
    event = db.get(CalendarEventRecord, event_id)
    if not event:
        return False
    db.delete(event)
    db.commit()
    return True


def event_stats(db: Session, user_id: int, days: int = 30) -> dict:
    since = _now() - timedelta(days=days)
    rows = (
        db.query(CalendarEventRecord.status, func.count(CalendarEventRecord.id))
        .filter(CalendarEventRecord.user_id == user_id, CalendarEventRecord.created_at >= since)
        .group_by(CalendarEventRecord.status)
        .all()
    )
    counts = {status.value.lower(): 0 for status in CalendarEventStatus}
    for status, count in rows:
        counts[status.value.lower()] = count
    counts["total"] = sum(count for _, count in rows)
    return counts


def cleanup_old_events(db: Session, days: int = 365) -> int:
    cutoff = _now() - timedelta(days=days)
    deleted = (
        db.query(CalendarEventRecord)
        .filter(CalendarEventRecord.end_time < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info(f"Retention: deleted {deleted} calendar event(s) older than {days} days")
    return deleted
