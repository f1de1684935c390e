from __future__ import annotations
from datetime import datetime, timedelta
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fitbet.config import Settings, settings
from fitbet.errors import ConflictError, NotFoundError, PreconditionError
from fitbet.models.challenge import Challenge, Participant
from fitbet.models.habit import ParticipantCommitment
from fitbet.models.payment import Payment
from fitbet.models.status import (
    JOINABLE_CHALLENGE_STATUSES,
    LIVE_PARTICIPANT_STATUSES,
    OPEN_CHALLENGE_STATUSES,
    ParticipantStatus,
    PaymentStatus,
)
from fitbet.schemas.challenge import ChatUser, OnboardingData
from fitbet.services.election import send_ballot_if_running
from fitbet.services.notifier import SafeNotifier
from fitbet.services.payments import mark_paid_action, maybe_activate, upsert_payment

log = structlog.get_logger()

# fields cleared when a dropped participant joins again
_ONBOARDING_FIELDS = (
    "track", "start_weight", "start_waist", "height", "target_weight", "target_waist",
    "start_photo_front_id", "start_photo_left_id", "start_photo_right_id", "start_photo_back_id",
    "pending_checkin_window_id", "pending_checkin_requested_at", "onboarding_completed_at",
)


async def join_challenge(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    challenge_id: int,
    user_id: int,
    user: ChatUser,
    now: datetime,
) -> Participant:
    ch = await session.get(Challenge, challenge_id)
    if not ch:
        raise NotFoundError("Challenge not found")
    if ch.status not in JOINABLE_CHALLENGE_STATUSES:
        raise PreconditionError("Challenge is not accepting participants")

    # one live participation across open challenges
    elsewhere = await session.scalar(
        select(Challenge.chat_title)
        .join(Participant, Participant.challenge_id == Challenge.id)
        .where(
            Participant.user_id == user_id,
            Participant.challenge_id != ch.id,
            Participant.status.in_(LIVE_PARTICIPANT_STATUSES),
            Challenge.status.in_(OPEN_CHALLENGE_STATUSES),
        )
        .limit(1)
    )
    if elsewhere is not None:
        raise PreconditionError(f"You already take part in a challenge in «{elsewhere}»")

    p = await session.scalar(
        select(Participant).where(Participant.challenge_id == ch.id, Participant.user_id == user_id)
    )
    if p and p.status == ParticipantStatus.ONBOARDING:
        raise PreconditionError("Onboarding already started")
    if p and p.status != ParticipantStatus.DROPPED:
        raise PreconditionError("You already take part in this challenge")

    if p:
        for name in _ONBOARDING_FIELDS:
            setattr(p, name, None)
        p.total_checkins = p.completed_checkins = p.skipped_checkins = 0
        p.status = ParticipantStatus.ONBOARDING
        p.joined_at = now
        p.username, p.first_name = user.username, user.first_name
        await session.execute(delete(Payment).where(Payment.participant_id == p.id))
        await session.execute(delete(ParticipantCommitment).where(ParticipantCommitment.participant_id == p.id))
        rejoined = True
    else:
        p = Participant(
            challenge_id=ch.id,
            user_id=user_id,
            username=user.username,
            first_name=user.first_name,
            status=ParticipantStatus.ONBOARDING,
            joined_at=now,
        )
        session.add(p)
        rejoined = False
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("You already take part in this challenge")
    await session.refresh(p)
    log.info("participant_joined", participant_id=p.id, challenge_id=ch.id, user_id=user_id, rejoined=rejoined)

    await notifier.send(p.user_id, f"You joined the challenge in «{ch.chat_title}». Complete onboarding to take part.")
    return p


async def complete_onboarding(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    participant_id: int,
    actor_id: int,
    data: OnboardingData,
    now: datetime,
) -> Participant:
    p = await session.get(Participant, participant_id)
    if not p:
        raise NotFoundError("Participant not found")
    if p.user_id != actor_id:
        raise PreconditionError("Only the participant can complete their onboarding")
    if p.status != ParticipantStatus.ONBOARDING:
        raise PreconditionError("Onboarding is already complete")
    ch = await session.get(Challenge, p.challenge_id)
    if not ch:
        raise NotFoundError("Challenge not found")

    for name, value in data.model_dump().items():
        setattr(p, name, value)
    p.status = ParticipantStatus.PENDING_PAYMENT
    p.onboarding_completed_at = now
    await upsert_payment(session, p.id, status=PaymentStatus.PENDING, marked_paid_at=None, confirmed_at=None, confirmed_by=None)
    await session.commit()
    log.info("onboarding_completed", participant_id=p.id, challenge_id=ch.id, track=p.track.value)

    await notifier.send(ch.chat_id, f"✅ {p.label} completed onboarding.")
    if ch.bank_holder_id is not None:
        await notifier.send(
            p.user_id,
            f"Onboarding complete. Send your stake of {ch.stake_amount:g} to the Bank Holder and tap the button:",
            [mark_paid_action(p.id)],
        )
    else:
        await notifier.send(p.user_id, "Onboarding complete. Payment opens once the Bank Holder is elected.")
    await send_ballot_if_running(session, notifier, p)
    return p


async def handle_onboarding_timeouts(
    session: AsyncSession,
    notifier: SafeNotifier,
    now: datetime,
    timeout: timedelta | None = None,
    cfg: Settings | None = None,
) -> int:
    """Drop everyone still onboarding `timeout` after joining."""
    cfg = cfg or settings
    timeout = timeout or cfg.onboarding_timeout
    ids = (await session.execute(
        select(Participant.id).where(
            Participant.status == ParticipantStatus.ONBOARDING,
            Participant.joined_at <= now - timeout,
        )
    )).scalars().all()

    hours = round(timeout.total_seconds() / 3600)
    dropped = 0
    for pid in ids:
        try:
            p = await session.get(Participant, pid, populate_existing=True)
            if not p or p.status != ParticipantStatus.ONBOARDING:
                continue
            p.status = ParticipantStatus.DROPPED
            await session.commit()
            ch = await session.get(Challenge, p.challenge_id)
        except SQLAlchemyError:
            await session.rollback()
            log.exception("onboarding_timeout_failed", participant_id=pid)
            continue
        dropped += 1
        log.info("participant_dropped", participant_id=p.id, challenge_id=p.challenge_id)
        if not ch:
            continue
        await notifier.send(ch.chat_id, f"⏳ {p.label} did not finish onboarding within {hours} h and left the challenge.")
        await notifier.send(p.user_id, f"Onboarding was not completed within {hours} h, so you left the challenge. Join the next one!")
        try:
            # the dropped participant may have been the last one holding activation back
            await maybe_activate(session, notifier, challenge_id=ch.id, now=now, cfg=cfg)
        except SQLAlchemyError:
            await session.rollback()
            log.exception("activation_failed", challenge_id=ch.id)
    return dropped
