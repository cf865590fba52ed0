"""
dependencies.py — Shared FastAPI Dependencies

Business Rules:
- require_api_key checks the x-api-key header against ADMIN_API_KEY;
  with no key configured the API is open (local development)
- get_job_manager returns the JobManager created in the app lifespan,
  503 if the jobs were never started

Called by: all routers
Depends on: config, scheduler
"""

import secrets

from fastapi import Depends, HTTPException, Request
from loguru import logger

from .config import Settings, get_settings
from .scheduler import JobManager


def require_api_key(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Dependency: raises 401 if ADMIN_API_KEY is set and the header doesn't match."""
    if not settings.admin_api_key:
        return
    supplied = request.headers.get("x-api-key", "")
    if not secrets.compare_digest(supplied, settings.admin_api_key):
        logger.warning(f"Rejected API call to {request.url.path}: bad or missing x-api-key")
        raise HTTPException(401, "Invalid API key")


def get_job_manager(request: Request) -> JobManager:
    manager = getattr(request.app.state, "job_manager", None)
    if manager is None:
        raise HTTPException(503, "Background jobs are not running")
    return manager
