from __future__ import annotations
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fitbet.config import Settings, settings
from fitbet.errors import NotFoundError, PreconditionError, ValidationError
from fitbet.models.challenge import Challenge, Participant
from fitbet.models.checkin import CheckinWindow
from fitbet.models.status import OPEN_CHALLENGE_STATUSES, ChallengeStatus
from fitbet.schemas.challenge import ChallengeCreate, ChallengePublic, ParticipantPublic
from fitbet.schemas.checkin import WindowPublic
from fitbet.services.duration import add_duration, format_duration, format_window_duration
from fitbet.services.notifier import SafeNotifier

log = structlog.get_logger()


async def create_challenge(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    data: ChallengeCreate,
    creator_id: int,
    now: datetime,
    cfg: Settings | None = None,
) -> Challenge:
    cfg = cfg or settings
    existing = await session.scalar(
        select(Challenge.id).where(Challenge.chat_id == data.chat_id, Challenge.status.in_(OPEN_CHALLENGE_STATUSES))
    )
    if existing:
        raise PreconditionError("This chat already has an open challenge")
    # without a single check-in window nobody could ever miss one
    if add_duration(now, data.duration, cfg.challenge_duration_unit) - now <= cfg.checkin_period:
        raise ValidationError(
            f"The challenge must last longer than one check-in period ({format_window_duration(cfg.checkin_period)})"
        )

    ch = Challenge(
        chat_id=data.chat_id,
        chat_title=data.chat_title,
        creator_id=creator_id,
        duration=data.duration,
        stake_amount=data.stake_amount,
        discipline_threshold=data.discipline_threshold,
        max_skips=data.max_skips,
        status=ChallengeStatus.DRAFT,
        created_at=now,
    )
    session.add(ch)
    await session.commit()
    await session.refresh(ch)
    log.info("challenge_created", challenge_id=ch.id, chat_id=ch.chat_id, creator_id=creator_id)

    await notifier.send(
        ch.chat_id,
        "🏁 New challenge!\n"
        f"Duration: {format_duration(ch.duration, cfg.challenge_duration_unit)}\n"
        f"Stake: {ch.stake_amount:g}\n"
        f"Discipline threshold: {round(ch.discipline_threshold * 100)}%\n"
        f"Allowed skips: {ch.max_skips}",
    )
    return ch


async def get_challenge(session: AsyncSession, challenge_id: int) -> Challenge:
    ch = await session.get(Challenge, challenge_id)
    if not ch:
        raise NotFoundError("Challenge not found")
    return ch


async def challenge_status(session: AsyncSession, challenge_id: int, cfg: Settings | None = None) -> ChallengePublic:
    """Challenge with its roster, in join order, and its check-in schedule."""
    cfg = cfg or settings
    ch = await get_challenge(session, challenge_id)
    roster = (await session.execute(
        select(Participant).where(Participant.challenge_id == ch.id).order_by(Participant.joined_at.asc(), Participant.id.asc())
    )).scalars().all()

    out = ChallengePublic.model_validate(ch)
    out.duration_label = format_duration(ch.duration, cfg.challenge_duration_unit)
    out.participants = [ParticipantPublic.model_validate(p) for p in roster]
    schedule = (await session.execute(
        select(CheckinWindow).where(CheckinWindow.challenge_id == ch.id).order_by(CheckinWindow.window_number.asc())
    )).scalars().all()
    out.windows = [WindowPublic.model_validate(w) for w in schedule]
    return out


async def list_participations(session: AsyncSession, user_id: int) -> list[Participant]:
    """Every participation of the user, newest first."""
    return (await session.execute(
        select(Participant).where(Participant.user_id == user_id).order_by(Participant.joined_at.desc(), Participant.id.desc())
    )).scalars().all()
