"""
test_email_records.py — Tests for the email record store

Covers: dedup gate, monotonic status moves, ingest cursor, stats,
retention sweep (keeps rows still referenced by a pending response).
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from replydesk.models import EmailDirection, EmailRecord, ProcessingStatus, ResponseStatus, ScheduledResponse
from replydesk.services import email_records


def test_create_then_duplicate_returns_none(db_session: Session, test_user, make_message):
    msg = make_message()
    first = email_records.create_from_message(db_session, test_user.id, msg, EmailDirection.INBOUND)
    assert first is not None
    assert first.processing_status == ProcessingStatus.PENDING

    again = email_records.create_from_message(db_session, test_user.id, msg, EmailDirection.INBOUND)
    assert again is None
    assert email_records.find_by_provider_id(db_session, msg.provider_message_id).id == first.id


def test_status_advances_forward(db_session: Session, make_email_record):
    record = make_email_record(processing_status=ProcessingStatus.PENDING)
    email_records.mark_processing(db_session, record)
    email_records.mark_completed(db_session, record, is_demo_request=True, response_generated=True)

    db_session.refresh(record)
    assert record.processing_status == ProcessingStatus.COMPLETED
    assert record.is_demo_request is True
    assert record.response_generated is True
    assert record.processed_at is not None


def test_backwards_move_is_refused(db_session: Session, make_email_record):
    record = make_email_record(processing_status=ProcessingStatus.COMPLETED)
    email_records.mark_processing(db_session, record)
    email_records.mark_failed(db_session, record, "late error")

    db_session.refresh(record)
    assert record.processing_status == ProcessingStatus.COMPLETED
    assert record.error_message is None


def test_mark_failed_records_error(db_session: Session, make_email_record):
    record = make_email_record(processing_status=ProcessingStatus.PROCESSING)
    email_records.mark_failed(db_session, record, "classifier timeout")
    db_session.refresh(record)
    assert record.processing_status == ProcessingStatus.FAILED
    assert record.error_message == "classifier timeout"


def test_latest_received_at_is_cursor(db_session: Session, test_user, make_email_record):
    assert email_records.latest_received_at(db_session, test_user.id) is None
    newest = datetime(2026, 3, 2, 7, 0, tzinfo=timezone.utc)
    make_email_record(received_at=newest - timedelta(hours=3))
    make_email_record(received_at=newest)
    assert email_records.latest_received_at(db_session, test_user.id) == newest


def test_mark_response_sent(db_session: Session, make_email_record):
    record = make_email_record()
    email_records.mark_response_sent(db_session, record.id, "gmail-123")
    db_session.refresh(record)
    assert record.response_sent is True
    assert record.response_message_id == "gmail-123"


def test_email_stats(db_session: Session, test_user, make_email_record):
    make_email_record(processing_status=ProcessingStatus.COMPLETED, is_demo_request=True)
    make_email_record(processing_status=ProcessingStatus.COMPLETED, response_sent=True)
    make_email_record(processing_status=ProcessingStatus.SKIPPED)
    make_email_record(processing_status=ProcessingStatus.FAILED)

    stats = email_records.email_stats(db_session, test_user.id, days=30)
    assert stats["total"] == 4
    assert stats["processed"] == 2
    assert stats["skipped"] == 1
    assert stats["failed"] == 1
    assert stats["pending"] == 0
    assert stats["demo_requests"] == 1
    assert stats["responses_sent"] == 1


def test_cleanup_removes_only_old_finished_rows(db_session: Session, make_email_record, make_response):
    old = datetime.now(timezone.utc) - timedelta(days=120)
    old_done = make_email_record(processed_at=old)
    old_skipped = make_email_record(processing_status=ProcessingStatus.SKIPPED, processed_at=old)
    old_failed = make_email_record(processing_status=ProcessingStatus.FAILED, processed_at=old)
    recent = make_email_record(processed_at=datetime.now(timezone.utc))
    old_with_pending = make_email_record(processed_at=old)
    make_response(email_record=old_with_pending, status=ResponseStatus.SCHEDULED)

    deleted = email_records.cleanup_old_emails(db_session, days=90)

    assert deleted == 2
    remaining = {r for (r,) in db_session.query(EmailRecord.id).all()}
    assert old_done.id not in remaining
    assert old_skipped.id not in remaining
    assert {old_failed.id, recent.id, old_with_pending.id} <= remaining


def test_cleanup_keeps_emails_behind_sent_and_recoverable_responses(
    db_session: Session, make_email_record, make_response
):
    old = datetime.now(timezone.utc) - timedelta(days=120)
    kept = {}
    for status in (ResponseStatus.SENT, ResponseStatus.FAILED, ResponseStatus.EXPIRED):
        record = make_email_record(processed_at=old)
        kept[status] = (record.id, make_response(email_record=record, status=status).id)
    cancelled_record = make_email_record(processed_at=old)
    make_response(email_record=cancelled_record, status=ResponseStatus.CANCELLED)

    deleted = email_records.cleanup_old_emails(db_session, days=90)

    assert deleted == 1
    db_session.expire_all()
    for record_id, response_id in kept.values():
        assert db_session.get(EmailRecord, record_id) is not None
        assert db_session.get(ScheduledResponse, response_id) is not None
    assert db_session.get(EmailRecord, cancelled_record.id) is None
