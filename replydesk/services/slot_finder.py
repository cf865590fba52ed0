"""
services/slot_finder.py — Propose non-conflicting, spaced-out meeting slots

Scans a search window in fixed 30-minute ticks and keeps the ticks whose
[tick, tick + duration) interval fits business hours on a working day and
misses every busy interval. The survivors are thinned so the reply does
not offer a cluster of back-to-back times.

Business Rules:
- Overlap test is half-open: start < busy_end and end > busy_start
- The earliest slot starts no sooner than send_at + min_lead (2.5h by
  default) so a freshly sent reply never offers an immediate slot
- With more candidates than max_results: one per day first, then
  non-touching extras, then at most one back-to-back pair per day
- Returned slots never overlap each other
- No candidates is "no availability", returned as an empty list

Called by: services/classifier.py
Depends on: schemas/slots.py, config.py
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from ..config import Settings, parse_hhmm
from ..schemas.slots import BusyInterval, TimeSlot

TICK = timedelta(minutes=30)
_RAW_CANDIDATE_CAP = 500


@dataclass(frozen=True)
class SlotQuery:
    min_start: datetime
    max_end: datetime
    tz: ZoneInfo = field(default_factory=lambda: ZoneInfo("UTC"))
    business_start: time = time(9, 0)
    business_end: time = time(17, 0)
    working_days: frozenset[int] = frozenset({0, 1, 2, 3, 4})
    duration: timedelta = timedelta(minutes=30)
    max_results: int = 3
    send_at: datetime | None = None
    min_lead: timedelta = timedelta(hours=2, minutes=30)

    @property
    def earliest_start(self) -> datetime:
        if self.send_at is None:
            return self.min_start
        return max(self.min_start, self.send_at + self.min_lead)


SlotFinder = Callable[[SlotQuery, list[BusyInterval]], list[TimeSlot]]


def build_query(settings: Settings, now: datetime, send_at: datetime | None = None) -> SlotQuery:
    """SlotQuery for the configured business rules, searching from now."""
    return SlotQuery(
        min_start=now,
        max_end=now + timedelta(days=settings.slot_search_days),
        tz=ZoneInfo(settings.default_timezone),
        business_start=parse_hhmm(settings.business_hours_start),
        business_end=parse_hhmm(settings.business_hours_end),
        working_days=frozenset(settings.working_days),
        duration=timedelta(minutes=settings.meeting_duration_min),
        max_results=settings.max_proposed_slots,
        send_at=send_at,
        min_lead=settings.min_lead,
    )


def find_available_slots(query: SlotQuery, busy: list[BusyInterval]) -> list[TimeSlot]:
    """Return up to query.max_results slots, ordered by start."""
    if query.max_results <= 0 or not query.working_days:
        return []
    candidates = _scan_candidates(query, busy)
    return _spread(candidates, query.max_results, query.tz)


def format_slot_label(start: datetime, tz: ZoneInfo) -> str:
    """'Tuesday, March 3 at 10:30 AM PST'"""
    local = start.astimezone(tz)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%A, %B} {local.day} at {hour}:{local:%M} {meridiem} {local.tzname()}"


# ── Scanning ─────────────────────────────────────────────────────────


def _at(day: date, t: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, t, tzinfo=tz)


def _align_to_tick(moment: datetime, tz: ZoneInfo) -> datetime:
    """Round up to the next :00 or :30 in local time."""
    local = moment.astimezone(tz)
    floored = local.replace(minute=(local.minute // 30) * 30, second=0, microsecond=0)
    if floored < local:
        floored += TICK
    return floored


def _scan_candidates(query: SlotQuery, busy: list[BusyInterval]) -> list[TimeSlot]:
    tz = query.tz
    tick = _align_to_tick(query.earliest_start, tz)
    found: list[TimeSlot] = []

    while tick + query.duration <= query.max_end and len(found) < _RAW_CANDIDATE_CAP:
        local = tick.astimezone(tz)
        next_day = local.date() + timedelta(days=1)

        if local.weekday() not in query.working_days:
            tick = _at(next_day, query.business_start, tz)
            continue

        day_open = _at(local.date(), query.business_start, tz)
        day_close = _at(local.date(), query.business_end, tz)
        if tick < day_open:
            tick = day_open
            continue

        end = tick + query.duration
        if end > day_close:
            tick = _at(next_day, query.business_start, tz)
            continue

        if not any(b.overlaps(tick, end) for b in busy):
            found.append(TimeSlot(start=tick, end=end, label=format_slot_label(tick, tz)))
        tick += TICK

    return found


# ── Spacing ──────────────────────────────────────────────────────────


def _spread(candidates: list[TimeSlot], limit: int, tz: ZoneInfo) -> list[TimeSlot]:
    picked: list[TimeSlot] = []

    def day_of(slot: TimeSlot) -> date:
        return slot.start.astimezone(tz).date()

    def free(slot: TimeSlot) -> bool:
        return not any(slot.overlaps(p) for p in picked)

    # Pass 1: earliest open slot per day
    seen_days: set[date] = set()
    for slot in candidates:
        if len(picked) >= limit:
            break
        if day_of(slot) in seen_days or not free(slot):
            continue
        seen_days.add(day_of(slot))
        picked.append(slot)

    # Pass 2: extras that neither overlap nor touch a picked slot
    for slot in candidates:
        if len(picked) >= limit:
            break
        if slot in picked or not free(slot):
            continue
        if any(slot.touches(p) for p in picked):
            continue
        picked.append(slot)

    def neighbours(slot: TimeSlot) -> list[TimeSlot]:
        return [p for p in picked if p is not slot and slot.touches(p)]

    # Pass 3: allow one back-to-back pair per day, never a run of three
    paired_days: set[date] = {day_of(p) for p in picked if neighbours(p)}
    for slot in candidates:
        if len(picked) >= limit:
            break
        if slot in picked or not free(slot):
            continue
        touching = neighbours(slot)
        if touching:
            if len(touching) > 1 or day_of(slot) in paired_days or neighbours(touching[0]):
                continue
            paired_days.add(day_of(slot))
        picked.append(slot)

    return sorted(picked, key=lambda s: s.start)
