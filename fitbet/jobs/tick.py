from __future__ import annotations
import asyncio
from datetime import datetime, timezone as dt_tz
from typing import Awaitable, Callable
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from fitbet.config import Settings, settings
from fitbet.db import SessionLocal
from fitbet.services.checkin_windows import close_due_windows, open_due_windows, send_due_reminders
from fitbet.services.election import finalize_overdue_elections
from fitbet.services.habits import send_habit_reminders
from fitbet.services.notifier import Notifier, SafeNotifier, build_notifier, safe
from fitbet.services.participants import handle_onboarding_timeouts
from fitbet.services.settlement import finalize_ended_challenges

log = structlog.get_logger()

# Ticks never interleave within one process. Across processes (API + cron script) the
# sweeps claim rows with conditional updates instead.
_tick_lock = asyncio.Lock()

Sweep = Callable[[AsyncSession, SafeNotifier, datetime, Settings], Awaitable[int]]


def sweeps() -> list[tuple[str, Sweep]]:
    """The tick's sweeps, in the order they run."""
    return [
        ("onboarding_timeouts", lambda s, n, now, cfg: handle_onboarding_timeouts(s, n, now, cfg=cfg)),
        ("election_timeouts", lambda s, n, now, cfg: finalize_overdue_elections(s, n, now, cfg=cfg)),
        ("open_windows", lambda s, n, now, cfg: open_due_windows(s, n, now)),
        ("reminders", lambda s, n, now, cfg: send_due_reminders(s, n, now, cfg.reminder_threshold)),
        ("close_windows", lambda s, n, now, cfg: close_due_windows(s, n, now)),
        ("finalize_challenges", lambda s, n, now, cfg: finalize_ended_challenges(s, n, now)),
        ("habit_reminders", lambda s, n, now, cfg: send_habit_reminders(s, n, now, cfg=cfg)),
    ]


async def run_tick(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier | SafeNotifier,
    now: datetime,
    cfg: Settings | None = None,
) -> dict[str, int | None]:
    """
    Run every sweep once at `now`, each in its own session.
    A failing sweep is logged and reported as None; the remaining sweeps still run.
    A tick started while another is running waits for it to finish.
    """
    cfg = cfg or settings
    notifier = safe(notifier)
    results: dict[str, int | None] = {}
    async with _tick_lock:
        structlog.contextvars.bind_contextvars(tick_at=now.isoformat())
        try:
            for name, sweep in sweeps():
                try:
                    async with session_factory() as session:
                        results[name] = await sweep(session, notifier, now, cfg)
                except Exception:
                    log.exception("sweep_failed", sweep=name)
                    results[name] = None
            log.info("tick_done", **results)
        finally:
            structlog.contextvars.unbind_contextvars("tick_at")
    return results


async def run_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier | SafeNotifier,
    cfg: Settings | None = None,
    clock: Callable[[], datetime] = lambda: datetime.now(dt_tz.utc),
) -> None:
    """Tick forever. Ticks never overlap: the next sleep starts only after the tick returns."""
    cfg = cfg or settings
    log.info("scheduler_started", interval_seconds=cfg.tick_interval)
    while True:
        try:
            await run_tick(session_factory, notifier, clock(), cfg)
        except Exception:
            log.exception("tick_failed")
        await asyncio.sleep(cfg.tick_interval)


async def _run_once() -> dict[str, int | None]:
    notifier = build_notifier(settings.bot_token, settings.telegram_api_base)
    try:
        return await run_tick(SessionLocal, notifier, datetime.now(dt_tz.utc))
    finally:
        aclose = getattr(notifier, "aclose", None)
        if aclose:
            await aclose()


def tick():
    # cron entry point (sync); run the async coroutine
    from fitbet.logging_setup import configure_logging
    configure_logging()
    return asyncio.run(_run_once())


if __name__ == "__main__":
    tick()
