from __future__ import annotations
from datetime import datetime
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fitbet.config import Settings, settings
from fitbet.errors import NotFoundError, PreconditionError
from fitbet.models.challenge import Challenge, Participant
from fitbet.models.payment import Payment
from fitbet.models.status import (
    BLOCKING_ACTIVATION_STATUSES,
    ChallengeStatus,
    ParticipantStatus,
    PaymentStatus,
)
from fitbet.services.checkin_windows import generate_windows
from fitbet.services.duration import add_duration
from fitbet.services.notifier import Affordance, SafeNotifier

log = structlog.get_logger()


def mark_paid_action(participant_id: int) -> Affordance:
    return Affordance("💳 I have paid", f"paid_{participant_id}")


def confirm_action(participant_id: int) -> Affordance:
    return Affordance("✅ Confirm payment", f"confirm_{participant_id}")


async def upsert_payment(session: AsyncSession, participant_id: int, **values) -> Payment:
    """Get-or-create the participant's single payment row and apply `values`. Does not commit."""
    pay = await session.scalar(select(Payment).where(Payment.participant_id == participant_id))
    if pay is None:
        pay = Payment(participant_id=participant_id, **values)
        session.add(pay)
    else:
        for k, v in values.items():
            setattr(pay, k, v)
    await session.flush()
    return pay


async def confirm_own_payment(session: AsyncSession, p: Participant, holder_id: int, now: datetime) -> Payment:
    """The bank holder's own payment needs no second party. Does not commit."""
    pay = await upsert_payment(
        session, p.id,
        status=PaymentStatus.CONFIRMED, marked_paid_at=now, confirmed_at=now, confirmed_by=holder_id,
    )
    p.status = ParticipantStatus.ACTIVE
    return pay


async def _load(session: AsyncSession, participant_id: int) -> tuple[Participant, Challenge]:
    p = await session.get(Participant, participant_id)
    if not p:
        raise NotFoundError("Participant not found")
    ch = await session.get(Challenge, p.challenge_id)
    if not ch:
        raise NotFoundError("Challenge not found")
    return p, ch


async def mark_paid(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    participant_id: int,
    actor_id: int,
    now: datetime,
    cfg: Settings | None = None,
) -> Payment:
    p, ch = await _load(session, participant_id)
    if p.user_id != actor_id:
        raise PreconditionError("Only the participant can mark their own payment")
    if p.status != ParticipantStatus.PENDING_PAYMENT:
        raise PreconditionError("Payment is already marked or confirmed")

    if ch.bank_holder_id is not None and ch.bank_holder_id == p.user_id:
        pay = await confirm_own_payment(session, p, p.user_id, now)
        await session.commit()
        log.info("payment_self_confirmed", participant_id=p.id, challenge_id=ch.id)
        await notifier.send(p.user_id, "Payment confirmed ✅ (you are the Bank Holder).")
        await maybe_activate(session, notifier, challenge_id=ch.id, now=now, cfg=cfg)
        return pay

    pay = await upsert_payment(session, p.id, status=PaymentStatus.MARKED_PAID, marked_paid_at=now)
    p.status = ParticipantStatus.PAYMENT_MARKED
    await session.commit()
    log.info("payment_marked", participant_id=p.id, challenge_id=ch.id, has_holder=ch.bank_holder_id is not None)

    if ch.bank_holder_id is not None:
        await notifier.send(
            ch.bank_holder_id,
            f"{p.label} marked their payment. Please confirm:",
            [confirm_action(p.id)],
        )
    return pay


async def confirm_payment(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    participant_id: int,
    actor_id: int,
    now: datetime,
    cfg: Settings | None = None,
) -> Payment:
    p, ch = await _load(session, participant_id)
    if ch.bank_holder_id is None or ch.bank_holder_id != actor_id:
        raise PreconditionError("Only the Bank Holder can confirm payments")
    if p.status != ParticipantStatus.PAYMENT_MARKED:
        raise PreconditionError("Payment has not been marked by the participant")

    pay = await upsert_payment(session, p.id, status=PaymentStatus.CONFIRMED, confirmed_at=now, confirmed_by=actor_id)
    p.status = ParticipantStatus.ACTIVE
    await session.commit()
    log.info("payment_confirmed", participant_id=p.id, challenge_id=ch.id, confirmed_by=actor_id)

    await notifier.send(p.user_id, "Payment confirmed ✅")
    await notifier.send(ch.chat_id, f"✅ Payment confirmed: {p.label}")
    await maybe_activate(session, notifier, challenge_id=ch.id, now=now, cfg=cfg)
    return pay


async def maybe_activate(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    challenge_id: int,
    now: datetime,
    cfg: Settings | None = None,
) -> bool:
    """
    Start the challenge once nobody is left in onboarding / pending_payment / payment_marked
    and at least one participant is active. Sets started_at/ends_at and builds the window schedule.
    """
    cfg = cfg or settings
    ch = await session.get(Challenge, challenge_id)
    if not ch or ch.status not in (ChallengeStatus.DRAFT, ChallengeStatus.PENDING_PAYMENTS):
        return False

    blocking = await session.scalar(
        select(func.count()).select_from(Participant).where(
            Participant.challenge_id == challenge_id,
            Participant.status.in_(BLOCKING_ACTIVATION_STATUSES),
        )
    )
    if int(blocking or 0) > 0:
        return False
    active = await session.scalar(
        select(func.count()).select_from(Participant).where(
            Participant.challenge_id == challenge_id,
            Participant.status == ParticipantStatus.ACTIVE,
        )
    )
    if not active:
        return False

    ch.status = ChallengeStatus.ACTIVE
    ch.started_at = now
    ch.ends_at = add_duration(now, ch.duration, cfg.challenge_duration_unit)
    windows = await generate_windows(
        session,
        challenge_id=ch.id,
        started_at=ch.started_at,
        ends_at=ch.ends_at,
        period=cfg.checkin_period,
        window_duration=cfg.checkin_window,
    )
    await session.commit()
    log.info("challenge_activated", challenge_id=ch.id, ends_at=ch.ends_at.isoformat(), windows=windows)

    await notifier.send(ch.chat_id, "✅ All payments confirmed. The challenge is active!")
    return True
