from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from fitbet.db import get_session
from fitbet.auth_deps import get_actor_id, get_notifier, get_now
from fitbet.schemas.challenge import ParticipantPublic
from fitbet.schemas.checkin import CheckinCreate, CheckinPublic
from fitbet.services.checkin_windows import request_checkin, submit_checkin
from fitbet.services.notifier import SafeNotifier

router = APIRouter(prefix="/windows", tags=["checkins"])


@router.post("/{window_id}/request", response_model=ParticipantPublic)
async def request_window_checkin(
    window_id: int,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    p = await request_checkin(session, notifier, window_id=window_id, user_id=actor_id, now=now)
    return ParticipantPublic.model_validate(p)


@router.post("/{window_id}/checkins", response_model=CheckinPublic, status_code=201)
async def submit_window_checkin(
    window_id: int,
    payload: CheckinCreate,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    c = await submit_checkin(session, notifier, window_id=window_id, user_id=actor_id, data=payload, now=now)
    return CheckinPublic.model_validate(c)
