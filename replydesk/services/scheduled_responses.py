"""
services/scheduled_responses.py — Lifecycle of a drafted reply

States: DRAFT, EDITING, SCHEDULED, SENT, CANCELLED, FAILED, EXPIRED.

Business Rules:
- Every transition is a conditional single-row UPDATE guarded by the
  allowed source statuses; zero rows updated raises InvalidTransition
- SENT and CANCELLED accept no further writes
- FAILED and EXPIRED can only be revived by an explicit reschedule
- The send scheduler always takes the least-recently-scheduled due row

Called by: services/intake.py, scheduler.py, routers/scheduled_responses.py
Depends on: models
"""

from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import (
    PENDING_STATUSES,
    TERMINAL_STATUSES,
    EmailRecord,
    ResponseStatus,
    ScheduledResponse,
)
from ..schemas.slots import TimeSlot

RESCHEDULABLE_STATUSES = frozenset(
    {
        ResponseStatus.DRAFT,
        ResponseStatus.EDITING,
        ResponseStatus.SCHEDULED,
        ResponseStatus.FAILED,
        ResponseStatus.EXPIRED,
    }
)


class InvalidTransition(Exception):
    """Raised when a response is not in a state that allows the change."""

    def __init__(self, response_id: int, target: ResponseStatus, allowed):
        self.response_id = response_id
        self.target = target
        self.allowed = sorted(s.value for s in allowed)
        super().__init__(
            f"Response {response_id} cannot move to {target.value} "
            f"(must be one of {', '.join(self.allowed)})"
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dump_slots(slots: list[TimeSlot]) -> list[dict]:
    return [s.model_dump(mode="json") for s in slots]


def _transition(
    db: Session,
    response_id: int,
    allowed: frozenset[ResponseStatus] | set[ResponseStatus],
    target: ResponseStatus,
    **fields,
) -> ScheduledResponse:
    """Compare-and-set: move response_id to target only if its status is in allowed."""
    values = {ScheduledResponse.status: target, ScheduledResponse.updated_at: _now()}
    for key, value in fields.items():
        values[getattr(ScheduledResponse, key)] = value

    updated = (
        db.query(ScheduledResponse)
        .filter(ScheduledResponse.id == response_id, ScheduledResponse.status.in_(allowed))
        .update(values, synchronize_session=False)
    )
    db.commit()
    if updated == 0:
        raise InvalidTransition(response_id, target, allowed)

    response = db.get(ScheduledResponse, response_id)
    db.refresh(response)
    return response


# ── Create ───────────────────────────────────────────────────────────


def create_scheduled_response(
    db: Session,
    *,
    user_id: int,
    email_record_id: int,
    recipient_email: str,
    recipient_name: str | None,
    subject: str,
    body: str,
    slots: list[TimeSlot],
    now: datetime | None = None,
    delay: timedelta = timedelta(hours=1),
) -> ScheduledResponse:
    """Insert a DRAFT and immediately schedule it at now + delay."""
    now = now or _now()
    draft = ScheduledResponse(
        user_id=user_id,
        email_record_id=email_record_id,
        recipient_email=recipient_email,
        recipient_name=recipient_name,
        subject=subject,
        body=body,
        proposed_slots=_dump_slots(slots),
        status=ResponseStatus.DRAFT,
        created_at=now,
    )
    db.add(draft)
    db.commit()
    db.refresh(draft)

    response = _transition(
        db,
        draft.id,
        {ResponseStatus.DRAFT},
        ResponseStatus.SCHEDULED,
        scheduled_at=now + delay,
    )
    logger.info(
        f"Response {response.id} scheduled for {response.scheduled_at.isoformat()} "
        f"to {recipient_email}"
    )
    return response


# ── Operator actions ─────────────────────────────────────────────────


def begin_edit(db: Session, response_id: int) -> ScheduledResponse:
    return _transition(db, response_id, {ResponseStatus.SCHEDULED}, ResponseStatus.EDITING)


def save_edit(
    db: Session,
    response_id: int,
    *,
    subject: str | None = None,
    body: str | None = None,
    slots: list[TimeSlot] | None = None,
    scheduled_at: datetime | None = None,
    editor: str | None = None,
    now: datetime | None = None,
) -> ScheduledResponse:
    """Apply an edit and put the response back on the schedule.

    A SCHEDULED response passes through EDITING first so a concurrent send
    either wins before the edit or never sees the half-edited row.
    """
    current = db.get(ScheduledResponse, response_id)
    if current is not None and current.status == ResponseStatus.SCHEDULED:
        begin_edit(db, response_id)

    fields: dict = {"last_edited_at": now or _now(), "edited_by": editor}
    if subject is not None:
        fields["subject"] = subject
    if body is not None:
        fields["body"] = body
    if slots is not None:
        fields["proposed_slots"] = _dump_slots(slots)
    if scheduled_at is not None:
        fields["scheduled_at"] = scheduled_at

    response = _transition(
        db, response_id, {ResponseStatus.EDITING}, ResponseStatus.SCHEDULED, **fields
    )
    logger.info(f"Response {response_id} edited by {editor or 'unknown'}")
    return response


def cancel(db: Session, response_id: int, reason: str | None = None) -> ScheduledResponse:
    response = _transition(
        db, response_id, PENDING_STATUSES, ResponseStatus.CANCELLED, status_reason=reason
    )
    logger.info(f"Response {response_id} cancelled")
    return response


def send_now(db: Session, response_id: int, now: datetime | None = None) -> ScheduledResponse:
    """Make a pending response due immediately. The rate limit still applies."""
    return _transition(
        db,
        response_id,
        PENDING_STATUSES,
        ResponseStatus.SCHEDULED,
        scheduled_at=now or _now(),
    )


def reschedule(db: Session, response_id: int, scheduled_at: datetime) -> ScheduledResponse:
    """Move to a new send time. Also the recovery path for FAILED/EXPIRED."""
    response = _transition(
        db,
        response_id,
        RESCHEDULABLE_STATUSES,
        ResponseStatus.SCHEDULED,
        scheduled_at=scheduled_at,
        status_reason=None,
    )
    logger.info(f"Response {response_id} rescheduled for {scheduled_at.isoformat()}")
    return response


# ── Scheduler outcomes ───────────────────────────────────────────────


def mark_sent(
    db: Session, response_id: int, sent_message_id: str, now: datetime | None = None
) -> ScheduledResponse:
    return _transition(
        db,
        response_id,
        {ResponseStatus.SCHEDULED},
        ResponseStatus.SENT,
        sent_at=now or _now(),
        sent_message_id=sent_message_id,
        status_reason=None,
    )


def mark_failed(db: Session, response_id: int, reason: str) -> ScheduledResponse:
    return _transition(
        db,
        response_id,
        {ResponseStatus.SCHEDULED},
        ResponseStatus.FAILED,
        status_reason=reason[:500],
    )


def mark_expired(db: Session, response_id: int, reason: str) -> ScheduledResponse:
    return _transition(
        db,
        response_id,
        {ResponseStatus.SCHEDULED},
        ResponseStatus.EXPIRED,
        status_reason=reason[:500],
    )


# ── Queries ──────────────────────────────────────────────────────────


def find_by_id(db: Session, response_id: int) -> ScheduledResponse | None:
    return db.get(ScheduledResponse, response_id)


def delete(db: Session, response_id: int) -> bool:
    """Hard delete. Only terminal responses; a pending one must be cancelled first."""
    deleted = (
        db.query(ScheduledResponse)
        .filter(
            ScheduledResponse.id == response_id,
            ScheduledResponse.status.in_(TERMINAL_STATUSES),
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return bool(deleted)


def find_next_due(db: Session, now: datetime) -> ScheduledResponse | None:
    """The single most overdue SCHEDULED response, oldest schedule first."""
    return (
        db.query(ScheduledResponse)
        .filter(
            ScheduledResponse.status == ResponseStatus.SCHEDULED,
            ScheduledResponse.scheduled_at <= now,
        )
        .order_by(
            ScheduledResponse.scheduled_at.asc(),
            ScheduledResponse.created_at.asc(),
            ScheduledResponse.id.asc(),
        )
        .first()
    )


def find_sent_by_thread(db: Session, user_id: int, thread_id: str) -> list[ScheduledResponse]:
    """SENT responses whose triggering email is on thread_id, newest first."""
    return (
        db.query(ScheduledResponse)
        .join(EmailRecord, ScheduledResponse.email_record_id == EmailRecord.id)
        .filter(
            ScheduledResponse.user_id == user_id,
            ScheduledResponse.status == ResponseStatus.SENT,
            EmailRecord.thread_id == thread_id,
        )
        .order_by(ScheduledResponse.sent_at.desc())
        .all()
    )


def list_pending(db: Session, user_id: int | None = None) -> list[ScheduledResponse]:
    query = db.query(ScheduledResponse).filter(ScheduledResponse.status.in_(PENDING_STATUSES))
    if user_id is not None:
        query = query.filter(ScheduledResponse.user_id == user_id)
    return query.order_by(ScheduledResponse.scheduled_at.asc()).all()


def response_stats(db: Session, user_id: int, days: int = 30) -> dict:
    """Counts by status for responses created in the last N days."""
    since = _now() - timedelta(days=days)
    rows = (
        db.query(ScheduledResponse.status, func.count(ScheduledResponse.id))
        .filter(ScheduledResponse.user_id == user_id, ScheduledResponse.created_at >= since)
        .group_by(ScheduledResponse.status)
        .all()
    )
    counts = {status.value.lower(): 0 for status in ResponseStatus}
    for status, count in rows:
        counts[status.value.lower()] = count
    counts["total"] = sum(count for _, count in rows)
    return counts
