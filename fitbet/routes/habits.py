from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from fitbet.db import get_session
from fitbet.auth_deps import get_actor_id, get_now
from fitbet.schemas.habit import (
    ActionPublic,
    CommitmentChoice,
    CommitmentTemplatePublic,
    HabitLogCreate,
    HabitLogPublic,
    HabitsViewPublic,
)
from fitbet.services.habits import choose_commitments, habits_view, list_templates, log_habit

router = APIRouter(tags=["habits"])


@router.get("/habits/templates", response_model=list[CommitmentTemplatePublic])
async def templates(session: AsyncSession = Depends(get_session)):
    return [CommitmentTemplatePublic.model_validate(t) for t in await list_templates(session)]


@router.put("/participants/{participant_id}/commitments", response_model=list[CommitmentTemplatePublic])
async def commitments(
    participant_id: int,
    payload: CommitmentChoice,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    now: datetime = Depends(get_now),
):
    chosen = await choose_commitments(
        session, participant_id=participant_id, actor_id=actor_id, template_ids=payload.template_ids, now=now
    )
    return [CommitmentTemplatePublic.model_validate(t) for t in chosen]


@router.get("/participants/{participant_id}/habits", response_model=HabitsViewPublic)
async def habits_today(
    participant_id: int,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    now: datetime = Depends(get_now),
):
    msg = await habits_view(session, participant_id=participant_id, actor_id=actor_id, now=now)
    return HabitsViewPublic(
        date_key=msg.date_key,
        text=msg.text,
        actions=[ActionPublic(label=a.label, action=a.action) for a in msg.affordances],
    )


@router.post("/participants/{participant_id}/habits", response_model=HabitLogPublic)
async def mark_habit(
    participant_id: int,
    payload: HabitLogCreate,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    now: datetime = Depends(get_now),
):
    entry = await log_habit(
        session,
        participant_id=participant_id,
        actor_id=actor_id,
        template_id=payload.template_id,
        date_key=payload.date_key,
        status=payload.status,
        now=now,
    )
    return HabitLogPublic.model_validate(entry)
