from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from fitbet.db import SessionLocal
from fitbet.services.notifier import SafeNotifier, safe


async def get_actor_id(
    x_telegram_user_id: str | None = Header(default=None, alias="X-Telegram-User-Id"),
) -> int:
    """The bot front end is trusted to forward the chat-platform user id of whoever acted."""
    if not x_telegram_user_id:
        raise HTTPException(status_code=401, detail="Missing X-Telegram-User-Id")
    try:
        return int(x_telegram_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-Telegram-User-Id")


def get_now() -> datetime:
    return datetime.now(dt_tz.utc)


def get_notifier(request: Request) -> SafeNotifier:
    return safe(request.app.state.notifier)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return SessionLocal
