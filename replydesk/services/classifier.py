"""
services/classifier.py — Claude-backed demo-request classifier

Purpose:
  Decide whether an inbound email asks for a demo/meeting, extract the
  contact, and draft the reply. Proposed times are never invented by the
  model: they come from the slot finder fed by calendar free/busy.

Design rules:
  - Structured output only; a missing/invalid response raises
    ClassifierError so intake records the email as FAILED
  - Slots are searched from the reply's send time, so the first offered
    time is at least min_lead after the reply actually goes out
  - Reply decisions pick a slot by its 1-based position in the offer;
    an out-of-range pick is treated as "no clear choice"

Called by: services/intake.py, services/reply_resolver.py (via Classifier protocol)
Depends on: utils/claude_client.py, services/slot_finder.py, interfaces.py
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from loguru import logger
from pydantic import ValidationError

from ..config import Settings
from ..interfaces import CalendarClient
from ..schemas.classification import ClassificationResult, ContactInfo, ReplyDecision
from ..schemas.mail import InboundMessage
from ..schemas.slots import TimeSlot
from ..utils.claude_client import claude_structured
from .slot_finder import SlotFinder, build_query, find_available_slots

MAX_BODY_CHARS = 6000


class ClassifierError(Exception):
    pass


CLASSIFY_SYSTEM = """\
You triage inbound email for a B2B sales team.

Decide whether the sender is asking for a product demo, a sales call, or a \
meeting to learn more. Support requests, invoices, recruiting, newsletters \
and vendor pitches are NOT demo requests.

If it is a demo request, write the opening of a short, friendly reply:
- 2-3 sentences, thank them and confirm you'd love to show them the product
- Do NOT propose times; available times are appended separately
- No greeting line and no signature"""

CLASSIFY_SCHEMA = {
    "type": "object",
    "properties": {
        "is_demo_request": {"type": "boolean"},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "reasoning": {"type": "string"},
        "contact_name": {"type": "string"},
        "contact_email": {"type": "string"},
        "company": {"type": "string"},
        "reply_opening": {"type": "string"},
    },
    "required": ["is_demo_request", "confidence", "reasoning"],
}

REPLY_SYSTEM = """\
You read replies to a meeting proposal. The proposal offered numbered time \
slots. Decide whether the sender clearly accepted exactly one of them.

Return should_create_event=true only for an unambiguous acceptance, with \
selected_slot set to that slot's number. Counter-proposals, questions, \
declines and vague answers are should_create_event=false, selected_slot=0."""

REPLY_SCHEMA = {
    "type": "object",
    "properties": {
        "should_create_event": {"type": "boolean"},
        "selected_slot": {"type": "integer", "minimum": 0},
        "reason": {"type": "string"},
    },
    "required": ["should_create_event", "selected_slot", "reason"],
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reply_subject(subject: str) -> str:
    subject = (subject or "").strip()
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}" if subject else "Re: your message"


def compose_reply_body(name: str, opening: str, slots: list[TimeSlot], signer: str = "") -> str:
    first = (name or "").split(" ")[0]
    greeting = f"Hi {first}," if first and "@" not in first else "Hi there,"
    times = "\n".join(f"  {i}. {s.label}" for i, s in enumerate(slots, 1))
    body = (
        f"{greeting}\n\n{opening.strip()}\n\n"
        f"Here are a few times that work on our side:\n{times}\n\n"
        "Just reply with the one that suits you best and I'll send over an invite."
    )
    if signer:
        body += f"\n\nBest regards,\n{signer}"
    return body


def _message_prompt(message: InboundMessage) -> str:
    return (
        f"From: {message.sender}\n"
        f"Subject: {message.subject}\n\n"
        f"{message.body[:MAX_BODY_CHARS]}"
    )


class ClaudeClassifier:
    def __init__(
        self,
        calendar: CalendarClient,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
        slot_finder: SlotFinder = find_available_slots,
        signer: str = "",
    ):
        self.calendar = calendar
        self.settings = settings
        self.clock = clock
        self.slot_finder = slot_finder
        self.signer = signer

    async def classify(self, message: InboundMessage) -> ClassificationResult:
        raw = await claude_structured(
            _message_prompt(message),
            CLASSIFY_SCHEMA,
            system=CLASSIFY_SYSTEM,
            model_tier="smart",
            max_tokens=800,
        )
        if not raw:
            raise ClassifierError("classification unavailable")

        try:
            contact = ContactInfo(
                name=raw.get("contact_name") or message.sender_name,
                email=(raw.get("contact_email") or message.sender_address).lower(),
                company=raw.get("company") or None,
            )
            result = ClassificationResult(
                is_demo_request=raw.get("is_demo_request", False),
                confidence=max(0.0, min(1.0, float(raw.get("confidence", 0)))),
                reasoning=raw.get("reasoning", ""),
                contact=contact,
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise ClassifierError(f"malformed classification: {e}") from e

        if not result.is_actionable(self.settings.demo_confidence_threshold):
            return result

        slots = await self._propose_slots()
        logger.info(
            f"Demo request from {contact.email} ({result.confidence:.2f}), "
            f"{len(slots)} slot(s) available"
        )
        if not slots:
            return result

        return result.model_copy(
            update={
                "proposed_slots": slots,
                "response_subject": reply_subject(message.subject),
                "response_body": compose_reply_body(
                    contact.name,
                    raw.get("reply_opening") or "Thanks for reaching out, happy to set up a demo.",
                    slots,
                    self.signer,
                ),
            }
        )

    async def _propose_slots(self) -> list[TimeSlot]:
        now = self.clock()
        send_at = now + self.settings.response_delay
        query = build_query(self.settings, now, send_at=send_at)
        busy = await self.calendar.free_busy(
            query.min_start, query.max_end + timedelta(hours=1)
        )
        return self.slot_finder(query, busy)

    async def decide_reply(
        self, message: InboundMessage, proposed_slots: list[TimeSlot]
    ) -> ReplyDecision:
        offered = "\n".join(f"{i}. {s.label}" for i, s in enumerate(proposed_slots, 1))
        raw = await claude_structured(
            f"Offered slots:\n{offered}\n\nReply:\n{_message_prompt(message)}",
            REPLY_SCHEMA,
            system=REPLY_SYSTEM,
            model_tier="fast",
            max_tokens=300,
        )
        if not raw:
            raise ClassifierError("reply decision unavailable")

        index = raw.get("selected_slot") or 0
        reason = raw.get("reason", "")
        if not raw.get("should_create_event") or not 1 <= index <= len(proposed_slots):
            return ReplyDecision(should_create_event=False, reason=reason or "no clear acceptance")
        return ReplyDecision(
            should_create_event=True, selected_slot=proposed_slots[index - 1], reason=reason
        )
