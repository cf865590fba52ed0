"""
routers/stats.py — Pipeline counts for one account

Called by: main.py (router mount)
Depends on: services/email_records.py, services/scheduled_responses.py,
            services/calendar_events.py
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_api_key
from ..services import calendar_events, email_records, scheduled_responses

router = APIRouter(tags=["stats"], dependencies=[Depends(require_api_key)])


@router.get("/api/stats")
async def pipeline_stats(
    user_id: int, days: int = Query(30, ge=1, le=365), db: Session = Depends(get_db)
):
    return {
        "days": days,
        "emails": email_records.email_stats(db, user_id, days),
        "responses": scheduled_responses.response_stats(db, user_id, days),
        "events": calendar_events.event_stats(db, user_id, days),
    }
