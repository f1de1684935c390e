from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from fitbet.db import get_session
from fitbet.auth_deps import get_actor_id, get_notifier, get_now
from fitbet.schemas.challenge import OnboardingData, ParticipantPublic
from fitbet.schemas.payment import PaymentPublic
from fitbet.services.challenges import list_participations
from fitbet.services.notifier import SafeNotifier
from fitbet.services.participants import complete_onboarding
from fitbet.services.payments import confirm_payment, mark_paid

router = APIRouter(prefix="/participants", tags=["participants"])


@router.get("/me", response_model=list[ParticipantPublic])
async def my_participations(session: AsyncSession = Depends(get_session), actor_id: int = Depends(get_actor_id)):
    return [ParticipantPublic.model_validate(p) for p in await list_participations(session, actor_id)]


@router.post("/{participant_id}/onboarding", response_model=ParticipantPublic)
async def onboarding(
    participant_id: int,
    payload: OnboardingData,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    p = await complete_onboarding(session, notifier, participant_id=participant_id, actor_id=actor_id, data=payload, now=now)
    return ParticipantPublic.model_validate(p)


@router.post("/{participant_id}/mark-paid", response_model=PaymentPublic)
async def mark_payment(
    participant_id: int,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    pay = await mark_paid(session, notifier, participant_id=participant_id, actor_id=actor_id, now=now)
    return PaymentPublic.model_validate(pay)


@router.post("/{participant_id}/confirm", response_model=PaymentPublic)
async def confirm(
    participant_id: int,
    session: AsyncSession = Depends(get_session),
    actor_id: int = Depends(get_actor_id),
    notifier: SafeNotifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
):
    pay = await confirm_payment(session, notifier, participant_id=participant_id, actor_id=actor_id, now=now)
    return PaymentPublic.model_validate(pay)
