"""
routers/jobs.py — Background job status and manual triggers

Business Rules:
- A trigger runs one pass inline and reports what happened
- A trigger that finds the job already running is ok=False, not an error
- Manual send still honors the send rate limit

Called by: main.py (router mount)
Depends on: scheduler.py (JobManager), dependencies.py
"""

from fastapi import APIRouter, Depends

from ..dependencies import get_job_manager, require_api_key
from ..scheduler import JobManager
from ..schemas.responses import JobStatusResponse, OkResponse

router = APIRouter(tags=["jobs"], dependencies=[Depends(require_api_key)])


@router.get("/api/jobs/status", response_model=JobStatusResponse)
async def job_status(manager: JobManager = Depends(get_job_manager)):
    return manager.status()


@router.post("/api/jobs/ingest/trigger", response_model=OkResponse)
async def trigger_ingest(manager: JobManager = Depends(get_job_manager)):
    ok, detail = await manager.trigger_ingest()
    return OkResponse(ok=ok, detail=detail)


@router.post("/api/jobs/sender/trigger", response_model=OkResponse)
async def trigger_sender(manager: JobManager = Depends(get_job_manager)):
    ok, detail = await manager.trigger_send()
    return OkResponse(ok=ok, detail=detail)
