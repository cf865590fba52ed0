"""ReplyDesk: inbound demo requests to booked meetings.

App entry point: lifespan wiring and router mounts. All routes live in
routers/, all logic in services/ and scheduler.py.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from .config import settings
from .database import create_tables
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import calendar_events, jobs, scheduled_responses, stats
from .scheduler import build_job_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    create_tables()
    logger.info("Tables ready")

    manager = build_job_manager(settings)
    app.state.job_manager = manager
    if settings.scheduler_enabled:
        manager.start_all()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false); manual triggers only")
    yield
    await manager.stop_all()
    await close_clients()


app = FastAPI(title="ReplyDesk", version="0.1.0", lifespan=lifespan)

app.include_router(jobs.router)
app.include_router(scheduled_responses.router)
app.include_router(calendar_events.router)
app.include_router(stats.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
