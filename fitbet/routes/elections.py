from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from fitbet.db import get_session
from fitbet.auth_deps import get_actor_id, get_notifier, get_now
from fitbet.schemas.election import VoteCreate, VoteResult
from fitbet.services.election import cast_vote
from fitbet.services.notifier import SafeNotifier

router = APIRouter(prefix="/elections", tags=["elections"])


@router.post("/{election_id}/votes", response_model=VoteResult, status_code=201)
async def vote(
    election_id: int,
    payload: VoteCreate,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    result = await cast_vote(
        session, notifier, election_id=election_id, voter_id=actor_id, candidate_id=payload.candidate_id, now=now
    )
    return VoteResult(election_id=election_id, finalized=result.finalized, winner_user_id=result.winner_user_id)
