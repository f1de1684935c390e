from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fitbet.models.challenge import Challenge, Participant
from fitbet.models.checkin import Checkin, CheckinWindow
from fitbet.models.payment import Payment
from fitbet.models.status import ChallengeStatus, ParticipantStatus, PaymentStatus, Track, WindowStatus
from fitbet.services.checkin_windows import close_window
from fitbet.services.notifier import SafeNotifier

log = structlog.get_logger()

GOAL_WEIGHT = 0.7
DISCIPLINE_WEIGHT = 0.3
WINNING_STATUSES = (ParticipantStatus.ACTIVE, ParticipantStatus.COMPLETED)


def _clamp0(x: float) -> float:
    if not math.isfinite(x):
        return 0.0
    return max(0.0, x)


def _progress(done: float, wanted: float) -> float:
    return _clamp0(done / wanted * 100) if wanted > 0 else 0.0


def compute_goal_achievement(
    track: Track | None,
    *,
    start_weight: float,
    start_waist: float,
    target_weight: float | None,
    target_waist: float | None,
    current_weight: float,
    current_waist: float,
) -> float:
    """
    Goal achievement in percent. Not capped above, so overshooting the target scores over 100.

    bulk: 0.7 x weight progress + 0.3 x 100
    cut:  0.7 x weight progress + 0.3 x waist progress

    A participant without targets scores 0.

    >>> compute_goal_achievement(Track.CUT, start_weight=90, start_waist=100, target_weight=80,
    ...                          target_waist=90, current_weight=85, current_waist=90)
    65.0
    """
    if track is None or target_weight is None or target_waist is None:
        return 0.0
    if track == Track.BULK:
        return GOAL_WEIGHT * _progress(current_weight - start_weight, target_weight - start_weight) + DISCIPLINE_WEIGHT * 100
    return (
        GOAL_WEIGHT * _progress(start_weight - current_weight, start_weight - target_weight)
        + DISCIPLINE_WEIGHT * _progress(start_waist - current_waist, start_waist - target_waist)
    )


def compute_discipline(completed: int, total: int) -> float:
    return completed / total * 100 if total > 0 else 100.0


@dataclass
class ParticipantResult:
    participant_id: int
    user_id: int
    label: str
    status: ParticipantStatus
    discipline: float
    goal: float
    total: float
    is_winner: bool
    payout: float = 0.0


def score_participant(p: Participant, latest: Checkin | None, threshold: float) -> ParticipantResult:
    start_weight = p.start_weight or 0.0
    start_waist = p.start_waist or 0.0
    current_weight = latest.weight if latest else start_weight
    current_waist = latest.waist if latest else start_waist

    discipline = compute_discipline(p.completed_checkins, p.total_checkins)
    goal = compute_goal_achievement(
        p.track,
        start_weight=start_weight,
        start_waist=start_waist,
        target_weight=p.target_weight,
        target_waist=p.target_waist,
        current_weight=current_weight,
        current_waist=current_waist,
    )
    return ParticipantResult(
        participant_id=p.id,
        user_id=p.user_id,
        label=p.label,
        status=p.status,
        discipline=discipline,
        goal=goal,
        total=GOAL_WEIGHT * goal + DISCIPLINE_WEIGHT * discipline,
        is_winner=p.status in WINNING_STATUSES and discipline >= threshold * 100 and goal >= 100,
    )


def compute_payouts(results: list[ParticipantResult], stake: float) -> list[ParticipantResult]:
    """
    Losers' stakes are split evenly between winners. With no winners or no losers
    everybody gets their stake back. Sets `payout` in place.
    """
    winners = [r for r in results if r.is_winner]
    losers = len(results) - len(winners)
    if not winners or not losers:
        for r in results:
            r.payout = stake
        return results
    share = stake * losers / len(winners)
    for r in results:
        r.payout = stake + share if r.is_winner else 0.0
    return results


async def _latest_checkin(session: AsyncSession, participant_id: int) -> Checkin | None:
    return await session.scalar(
        select(Checkin)
        .where(Checkin.participant_id == participant_id)
        .order_by(Checkin.submitted_at.desc(), Checkin.id.desc())
        .limit(1)
    )


def _fmt(x: float) -> str:
    return f"{x:.1f}"


async def settle_challenge(session: AsyncSession, notifier: SafeNotifier, ch: Challenge, now: datetime) -> list[ParticipantResult] | None:
    """
    Close what is still open, score every paid participant, announce the results and complete the challenge.
    Returns None without touching anything when the challenge is no longer active in the store.
    """
    res = await session.execute(
        update(Challenge)
        .where(Challenge.id == ch.id, Challenge.status == ChallengeStatus.ACTIVE)
        .values(status=ChallengeStatus.COMPLETED)
    )
    if res.rowcount != 1:
        log.info("challenge_already_settled", challenge_id=ch.id)
        return None
    ch.status = ChallengeStatus.COMPLETED

    still_open = (await session.execute(
        select(CheckinWindow).where(CheckinWindow.challenge_id == ch.id, CheckinWindow.status == WindowStatus.OPEN)
    )).scalars().all()
    for w in still_open:
        await close_window(session, w, closed_at_override=now)

    paid = (await session.execute(
        select(Participant)
        .join(Payment, Payment.participant_id == Participant.id)
        .where(Participant.challenge_id == ch.id, Payment.status == PaymentStatus.CONFIRMED)
        .order_by(Participant.user_id.asc())
    )).scalars().all()

    results = [score_participant(p, await _latest_checkin(session, p.id), ch.discipline_threshold) for p in paid]
    compute_payouts(results, ch.stake_amount)

    await session.execute(
        update(Participant)
        .where(Participant.challenge_id == ch.id, Participant.status == ParticipantStatus.ACTIVE)
        .values(status=ParticipantStatus.COMPLETED)
    )
    await session.commit()

    if not results:
        log.info("challenge_settled", challenge_id=ch.id, participants=0)
        return results

    ranking = sorted(results, key=lambda r: r.total, reverse=True)
    winners = sum(1 for r in results if r.is_winner)
    log.info("challenge_settled", challenge_id=ch.id, participants=len(results), winners=winners)

    lines = [
        f"{i}. {r.label}: {_fmt(r.total)} (goal {_fmt(r.goal)}%, discipline {_fmt(r.discipline)}%)"
        + (" 🏆" if r.is_winner else "")
        for i, r in enumerate(ranking, start=1)
    ]
    await notifier.send(ch.chat_id, "🏁 The challenge is over!\n\n" + "\n".join(lines))
    for r in results:
        verdict = "You are a winner 🏆" if r.is_winner else "You did not reach the goal this time"
        await notifier.send(
            r.user_id,
            f"{verdict}.\nGoal: {_fmt(r.goal)}%\nDiscipline: {_fmt(r.discipline)}%\nPayout: {r.payout:g}",
        )
    return results


async def finalize_ended_challenges(session: AsyncSession, notifier: SafeNotifier, now: datetime) -> int:
    ids = (await session.execute(
        select(Challenge.id).where(Challenge.status == ChallengeStatus.ACTIVE, Challenge.ends_at <= now)
    )).scalars().all()

    settled = 0
    for cid in ids:
        try:
            ch = await session.get(Challenge, cid, populate_existing=True)
            if not ch or ch.status != ChallengeStatus.ACTIVE:
                continue
            results = await settle_challenge(session, notifier, ch, now)
        except SQLAlchemyError:
            await session.rollback()
            log.exception("challenge_settle_failed", challenge_id=cid)
            continue
        if results is None:
            await session.rollback()
            continue
        settled += 1
    return settled
