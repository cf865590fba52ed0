"""
routers/scheduled_responses.py — Review, edit and control drafted replies

Business Rules:
- Only DRAFT/EDITING/SCHEDULED responses are listed
- Illegal state changes return 409 with the allowed source states
- Unknown ids return 404
- "send" makes the reply due now; the send rate limit still applies

Called by: main.py (router mount)
Depends on: services/scheduled_responses.py, dependencies.py
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_api_key
from ..models import ScheduledResponse
from ..schemas.responses import RescheduleRequest, ScheduledResponseEdit, ScheduledResponseOut
from ..services import scheduled_responses as svc
from ..services.scheduled_responses import InvalidTransition

router = APIRouter(tags=["scheduled-responses"], dependencies=[Depends(require_api_key)])


def _get_or_404(db: Session, response_id: int) -> ScheduledResponse:
    response = svc.find_by_id(db, response_id)
    if not response:
        raise HTTPException(404, "Scheduled response not found")
    return response


def _conflict(e: InvalidTransition) -> HTTPException:
    return HTTPException(409, str(e))


@router.get("/api/scheduled-responses", response_model=list[ScheduledResponseOut])
async def list_pending(user_id: int | None = None, db: Session = Depends(get_db)):
    return svc.list_pending(db, user_id)


@router.get("/api/scheduled-responses/{response_id}", response_model=ScheduledResponseOut)
async def get_response(response_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, response_id)


@router.post("/api/scheduled-responses/{response_id}/edit", response_model=ScheduledResponseOut)
async def begin_edit(response_id: int, db: Session = Depends(get_db)):
    _get_or_404(db, response_id)
    try:
        return svc.begin_edit(db, response_id)
    except InvalidTransition as e:
        raise _conflict(e)


@router.put("/api/scheduled-responses/{response_id}", response_model=ScheduledResponseOut)
async def save_edit(
    response_id: int, payload: ScheduledResponseEdit, db: Session = Depends(get_db)
):
    _get_or_404(db, response_id)
    try:
        return svc.save_edit(
            db,
            response_id,
            subject=payload.subject,
            body=payload.body,
            slots=payload.proposed_slots,
            scheduled_at=payload.scheduled_at,
            editor=payload.edited_by,
        )
    except InvalidTransition as e:
        raise _conflict(e)


@router.post("/api/scheduled-responses/{response_id}/cancel", response_model=ScheduledResponseOut)
async def cancel_response(response_id: int, db: Session = Depends(get_db)):
    _get_or_404(db, response_id)
    try:
        return svc.cancel(db, response_id, reason="Cancelled by operator")
    except InvalidTransition as e:
        raise _conflict(e)


@router.post("/api/scheduled-responses/{response_id}/send", response_model=ScheduledResponseOut)
async def send_now(response_id: int, db: Session = Depends(get_db)):
    _get_or_404(db, response_id)
    try:
        return svc.send_now(db, response_id)
    except InvalidTransition as e:
        raise _conflict(e)


@router.post(
    "/api/scheduled-responses/{response_id}/reschedule", response_model=ScheduledResponseOut
)
async def reschedule_response(
    response_id: int, payload: RescheduleRequest, db: Session = Depends(get_db)
):
    _get_or_404(db, response_id)
    try:
        return svc.reschedule(db, response_id, payload.scheduled_at)
    except InvalidTransition as e:
        raise _conflict(e)
