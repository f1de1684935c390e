from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from fitbet.auth_deps import get_notifier, get_now, get_session_factory
from fitbet.config import settings
from fitbet.errors import ConflictError
from fitbet.jobs.tick import run_tick
from fitbet.services.notifier import SafeNotifier

router = APIRouter()

@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
    }

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "scheduler": settings.scheduler_enabled,
    }

@router.post("/system/tick")
async def tick(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    # for an external cron when the in-process scheduler is off
    if settings.scheduler_enabled:
        raise ConflictError("The in-process scheduler is running; external ticks are disabled")
    results = await run_tick(session_factory, notifier, now)
    return {"tick_at": now.isoformat(), "sweeps": results}
