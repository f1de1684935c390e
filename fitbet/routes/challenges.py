from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from fitbet.db import get_session
from fitbet.auth_deps import get_actor_id, get_notifier, get_now
from fitbet.schemas.challenge import ChallengeCreate, ChallengePublic, ChatUser, ParticipantPublic
from fitbet.schemas.election import ElectionPublic
from fitbet.services.challenges import challenge_status, create_challenge
from fitbet.services.election import start_election
from fitbet.services.notifier import SafeNotifier
from fitbet.services.participants import join_challenge

router = APIRouter(prefix="/challenges", tags=["challenges"])


@router.post("", response_model=ChallengePublic, status_code=201)
async def create(
    payload: ChallengeCreate,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    ch = await create_challenge(session, notifier, data=payload, creator_id=actor_id, now=now)
    return await challenge_status(session, ch.id)


@router.get("/{challenge_id}", response_model=ChallengePublic)
async def get_status(challenge_id: int, session: AsyncSession = Depends(get_session)):
    return await challenge_status(session, challenge_id)


@router.post("/{challenge_id}/join", response_model=ParticipantPublic, status_code=201)
async def join(
    challenge_id: int,
    payload: ChatUser,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    p = await join_challenge(session, notifier, challenge_id=challenge_id, user_id=actor_id, user=payload, now=now)
    return ParticipantPublic.model_validate(p)


@router.post("/{challenge_id}/election", response_model=ElectionPublic, status_code=201)
async def start_bank_holder_election(
    challenge_id: int,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    e = await start_election(session, notifier, challenge_id=challenge_id, initiator_id=actor_id, now=now)
    return ElectionPublic.model_validate(e)
