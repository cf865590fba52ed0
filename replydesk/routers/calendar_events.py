"""
routers/calendar_events.py — Meetings booked from replies

Called by: main.py (router mount)
Depends on: services/calendar_events.py, dependencies.py
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_api_key
from ..schemas.calendar import CalendarEventOut
from ..services import calendar_events as svc

router = APIRouter(tags=["calendar-events"], dependencies=[Depends(require_api_key)])


@router.get("/api/calendar-events/upcoming", response_model=list[CalendarEventOut])
async def upcoming_events(
    user_id: int, days: int = Query(7, ge=1, le=90), db: Session = Depends(get_db)
):
    return svc.find_upcoming(db, user_id, days)


@router.post("/api/calendar-events/{event_id}/confirm", response_model=CalendarEventOut)
async def confirm_event(event_id: int, db: Session = Depends(get_db)):
    event = svc.mark_confirmed(db, event_id)
    if not event:
        raise HTTPException(404, "Calendar event not found")
    return event


@router.post("/api/calendar-events/{event_id}/cancel", response_model=CalendarEventOut)
async def cancel_event(event_id: int, db: Session = Depends(get_db)):
    event = svc.mark_cancelled(db, event_id)
    if not event:
        raise HTTPException(404, "Calendar event not found")
    return event
