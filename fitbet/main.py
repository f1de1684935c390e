from __future__ import annotations
import asyncio
import uuid
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fitbet.config import settings
from fitbet.db import SessionLocal, init_models
from fitbet.errors import FitbetError
from fitbet.jobs.tick import run_scheduler
from fitbet.logging_setup import configure_logging
from fitbet.routes.system import router as system_router
from fitbet.routes.challenges import router as challenges_router
from fitbet.routes.participants import router as participants_router
from fitbet.routes.elections import router as elections_router
from fitbet.routes.windows import router as windows_router
from fitbet.routes.habits import router as habits_router
from fitbet.services.habits import seed_templates
from fitbet.services.notifier import build_notifier
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    await init_models()
    async with SessionLocal() as session:
        await seed_templates(session)
    app.state.notifier = build_notifier(settings.bot_token, settings.telegram_api_base)
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = asyncio.create_task(run_scheduler(SessionLocal, app.state.notifier))
    yield
    # Shutdown
    if scheduler:
        scheduler.cancel()
        with suppress(asyncio.CancelledError):
            await scheduler
    aclose = getattr(app.state.notifier, "aclose", None)
    if aclose:
        await aclose()
    log.info("shutdown")

app = FastAPI(
    title="FitBet API",
    version=settings.app_version,
    lifespan=lifespan,
    description="Challenge lifecycle and settlement engine for group fitness bets",
)

# Include routers
app.include_router(system_router)
app.include_router(challenges_router)
app.include_router(participants_router)
app.include_router(elections_router)
app.include_router(windows_router)
app.include_router(habits_router)

@app.exception_handler(FitbetError)
async def fitbet_error_handler(request: Request, exc: FitbetError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
