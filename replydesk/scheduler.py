"""Background jobs: email ingest and rate-limited reply sending.

Two independent tickers share nothing but the database:
  - Ingest: every INGEST_INTERVAL_MIN (5) minutes, pulls new mail for each
    active user, runs it through intake, and once a day sweeps old records
  - Send: every SEND_TICK_SECONDS (60), sends at most one due reply, and
    never more often than SEND_RATE_LIMIT_MS (10 min) across all users

Each job is single-flight: a tick that finds the previous run still going
is a silent no-op. A failing pass is logged and the ticker keeps going.
"""

import asyncio
import enum
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings
from .interfaces import MailClient
from .models import User
from .schemas.mail import OutboundReply
from .schemas.responses import IngestStatus, JobStatusResponse, SenderStatus
from .services import calendar_events, email_records, scheduled_responses
from .services.intake import EmailIntake, IngestOutcome
from .services.scheduled_responses import InvalidTransition

RETENTION_INTERVAL = timedelta(hours=24)


def _utc(dt):
    """Make a naive datetime UTC-aware (no-op if already aware)."""
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Primitives ──────────────────────────────────────────────────────────


class RateLimiter:
    """Minimum spacing between sends. In memory only; resets on restart."""

    def __init__(self, interval: timedelta):
        self.interval = interval
        self.last_sent_at: datetime | None = None

    def ready(self, now: datetime) -> bool:
        return self.last_sent_at is None or now - self.last_sent_at >= self.interval

    def record(self, now: datetime) -> None:
        self.last_sent_at = now

    @property
    def next_allowed_at(self) -> datetime | None:
        if self.last_sent_at is None:
            return None
        return self.last_sent_at + self.interval


class SingleFlight:
    """Non-blocking lock: run() returns False instead of waiting when busy."""

    def __init__(self, name: str):
        self.name = name
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self, fn: Callable[[], Awaitable]):
        """Returns (True, result) if fn ran, (False, None) if already running."""
        if self._lock.locked():
            logger.debug(f"{self.name}: previous run still in progress, skipping")
            return False, None
        async with self._lock:
            return True, await fn()


class Ticker:
    """Call an async callback every interval seconds until stopped."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable],
        name: str = "ticker",
        initial_delay: float = 0,
    ):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.initial_delay = initial_delay
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"{self.name} started, every {self.interval:g}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"{self.name} stopped")

    async def _loop(self) -> None:
        if self.initial_delay:
            await asyncio.sleep(self.initial_delay)
        while True:
            try:
                await self.callback()
            except Exception as e:
                logger.error(f"{self.name} tick error: {e}")
            await asyncio.sleep(self.interval)


# ── Send Scheduler ──────────────────────────────────────────────────────


class SendOutcome(str, enum.Enum):
    RATE_LIMITED = "RATE_LIMITED"
    IDLE = "IDLE"
    EXPIRED = "EXPIRED"
    SENT = "SENT"
    FAILED = "FAILED"


class SendScheduler:
    """Sends the single most overdue SCHEDULED response per tick."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        mail_factory: Callable[[User], MailClient],
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.mail_factory = mail_factory
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(settings.send_rate_limit)
        self.clock = clock
        self.flight = SingleFlight("send scheduler")
        self.last_outcome: SendOutcome | None = None

    async def tick(self) -> SendOutcome | None:
        """One pass. None means a previous pass was still running."""
        ran, outcome = await self.flight.run(self._send_pass)
        if ran:
            self.last_outcome = outcome
        return outcome

    async def _send_pass(self) -> SendOutcome:
        now = self.clock()
        if not self.rate_limiter.ready(now):
            return SendOutcome.RATE_LIMITED

        db = self.session_factory()
        try:
            due = scheduled_responses.find_next_due(db, now)
            if due is None:
                return SendOutcome.IDLE

            age = now - _utc(due.created_at)
            staleness = self.settings.response_staleness
            if age > staleness:
                reason = (
                    f"Not sent within {staleness.total_seconds() / 3600:g}h of creation "
                    f"(age {age.total_seconds() / 3600:.1f}h)"
                )
                try:
                    scheduled_responses.mark_expired(db, due.id, reason)
                except InvalidTransition as e:
                    logger.info(f"Expire skipped: {e}")
                    return SendOutcome.IDLE
                logger.warning(f"Response {due.id} expired: {reason}")
                return SendOutcome.EXPIRED

            return await self._dispatch(db, due)
        finally:
            db.close()

    async def _dispatch(self, db: Session, due) -> SendOutcome:
        record = due.email_record
        user = db.get(User, due.user_id)
        reply = OutboundReply(
            to=due.recipient_email,
            subject=due.subject,
            body=due.body,
            thread_id=record.thread_id if record else None,
            in_reply_to=record.message_id_header if record else None,
        )

        try:
            sent_id = await self.mail_factory(user).send_reply(reply)
        except Exception as e:
            self.rate_limiter.record(self.clock())
            logger.error(f"Response {due.id} send failed: {e}")
            try:
                scheduled_responses.mark_failed(db, due.id, f"{type(e).__name__}: {e}")
            except InvalidTransition as it:
                logger.warning(f"Could not mark response {due.id} failed: {it}")
            return SendOutcome.FAILED

        self.rate_limiter.record(self.clock())
        try:
            scheduled_responses.mark_sent(db, due.id, sent_id, now=self.clock())
        except InvalidTransition as e:
            logger.error(f"Response {due.id} was sent as {sent_id} but changed state mid-send: {e}")
            return SendOutcome.SENT
        if record:
            email_records.mark_response_sent(db, record.id, sent_id)
        logger.info(f"Response {due.id} sent to {due.recipient_email} ({sent_id})")
        return SendOutcome.SENT

    def status(self) -> SenderStatus:
        return SenderStatus(
            is_running=self.flight.is_running,
            last_sent_at=self.rate_limiter.last_sent_at,
            next_send_allowed_at=self.rate_limiter.next_allowed_at,
        )


# ── Ingest Job ──────────────────────────────────────────────────────────


class IngestJob:
    """Pull new mail for every active user and run it through intake."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        mail_factory: Callable[[User], MailClient],
        intake_factory: Callable[[User], EmailIntake],
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.mail_factory = mail_factory
        self.intake_factory = intake_factory
        self.settings = settings
        self.clock = clock
        self.flight = SingleFlight("ingest job")
        self.last_retention_at: datetime | None = None

    async def tick(self) -> dict | None:
        """One pass. Returns outcome counts, or None if already running."""
        _, counts = await self.flight.run(self._ingest_pass)
        return counts

    async def _ingest_pass(self) -> dict:
        counts: dict[str, int] = {}
        db = self.session_factory()
        try:
            users = (
                db.query(User)
                .filter(User.is_active.is_(True), User.access_token.isnot(None))
                .all()
            )
            for user in users:
                try:
                    user_counts = await self._ingest_user(db, user)
                except SQLAlchemyError:
                    raise
                except Exception as e:
                    logger.error(f"Ingest failed for {user.email}: {e}")
                    continue
                for key, n in user_counts.items():
                    counts[key] = counts.get(key, 0) + n

            self._maybe_run_retention(db)
        finally:
            db.close()
        return counts

    async def _ingest_user(self, db: Session, user: User) -> dict:
        now = self.clock()
        since = email_records.latest_received_at(db, user.id) or (
            now - timedelta(hours=self.settings.ingest_lookback_hours)
        )
        messages = await self.mail_factory(user).list_messages(
            since, self.settings.max_emails_per_check
        )
        if not messages:
            return {}

        intake = self.intake_factory(user)
        counts: dict[str, int] = {}
        for message in messages:
            try:
                result = await intake.ingest(db, user, message)
            except SQLAlchemyError:
                raise
            except Exception as e:
                logger.error(f"Ingest error for {message.provider_message_id}: {e}")
                outcome = IngestOutcome.FAILED
            else:
                outcome = result.outcome
            counts[outcome.value] = counts.get(outcome.value, 0) + 1

        logger.info(f"Ingest [{user.email}]: {len(messages)} message(s) {counts}")
        return counts

    def _maybe_run_retention(self, db: Session) -> None:
        now = self.clock()
        if self.last_retention_at and now - self.last_retention_at < RETENTION_INTERVAL:
            return
        try:
            email_records.cleanup_old_emails(db, self.settings.email_retention_days)
            calendar_events.cleanup_old_events(db, self.settings.event_retention_days)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Retention sweep failed: {e}")
            return
        self.last_retention_at = now

    def status(self) -> IngestStatus:
        return IngestStatus(is_running=self.flight.is_running)


# ── Job Manager ─────────────────────────────────────────────────────────


class JobManager:
    """Owns both tickers; the HTTP layer talks to jobs only through this."""

    def __init__(self, ingest_job: IngestJob, send_scheduler: SendScheduler, settings: Settings):
        self.ingest_job = ingest_job
        self.send_scheduler = send_scheduler
        self.settings = settings
        self._tickers: list[Ticker] = []

    def start_all(self) -> None:
        if self._tickers:
            return
        self._tickers = [
            Ticker(
                self.settings.ingest_interval_min * 60,
                self.ingest_job.tick,
                name="ingest ticker",
                initial_delay=10,
            ),
            Ticker(self.settings.send_tick_seconds, self.send_scheduler.tick, name="send ticker"),
        ]
        for ticker in self._tickers:
            ticker.start()

    async def stop_all(self) -> None:
        for ticker in self._tickers:
            await ticker.stop()
        self._tickers = []

    def status(self) -> JobStatusResponse:
        return JobStatusResponse(
            ingest=self.ingest_job.status(), sender=self.send_scheduler.status()
        )

    async def trigger_ingest(self) -> tuple[bool, str]:
        try:
            counts = await self.ingest_job.tick()
        except SQLAlchemyError as e:
            logger.error(f"Manual ingest aborted: {e}")
            return False, f"ingest failed: {e}"
        if counts is None:
            return False, "ingest already running"
        return True, f"processed {sum(counts.values())} message(s)"

    async def trigger_send(self) -> tuple[bool, str]:
        try:
            outcome = await self.send_scheduler.tick()
        except SQLAlchemyError as e:
            logger.error(f"Manual send aborted: {e}")
            return False, f"send failed: {e}"
        if outcome is None:
            return False, "sender already running"
        return True, outcome.value.lower()


def build_job_manager(settings: Settings) -> JobManager:
    """Wire the Google, Claude and Slack adapters into the jobs."""
    from .database import SessionLocal
    from .services.classifier import ClaudeClassifier
    from .services.notifier import SlackNotifier
    from .services.reply_resolver import ReplyResolver
    from .utils.google_client import GmailMailClient, GoogleCalendarClient

    notifier = SlackNotifier(settings)

    def mail_factory(user: User) -> MailClient:
        return GmailMailClient(user.access_token, account_email=user.email)

    def intake_factory(user: User) -> EmailIntake:
        calendar = GoogleCalendarClient(user.access_token)
        classifier = ClaudeClassifier(calendar, settings, signer=user.name or "")
        resolver = ReplyResolver(classifier, calendar, timezone=settings.default_timezone)
        return EmailIntake(classifier, resolver, settings, notifier=notifier)

    return JobManager(
        IngestJob(SessionLocal, mail_factory, intake_factory, settings),
        SendScheduler(SessionLocal, mail_factory, settings),
        settings,
    )
