from __future__ import annotations
import enum
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Literal
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fitbet.config import Settings, settings
from fitbet.errors import ConflictError, NotFoundError, PreconditionError
from fitbet.models.challenge import Challenge, Participant
from fitbet.models.election import BankHolderElection, BankHolderVote
from fitbet.models.status import (
    ELIGIBLE_STATUSES,
    OPEN_CHALLENGE_STATUSES,
    ChallengeStatus,
    ElectionStatus,
    ParticipantStatus,
)
from fitbet.services.notifier import Affordance, SafeNotifier
from fitbet.services.payments import confirm_action, confirm_own_payment, mark_paid_action, maybe_activate

log = structlog.get_logger()

FinalizeMode = Literal["all_votes", "timeout"]


@dataclass
class FinalizeResult:
    finalized: bool
    winner_user_id: int | None = None


def vote_action(election_id: int, candidate_user_id: int) -> str:
    return f"vote_{election_id}_{candidate_user_id}"


def select_winner(eligible_user_ids: Iterable[int], creator_id: int, votes: Iterable[int]) -> int:
    """
    Pick the bank holder from the votes (each item is the voted-for user id).

    With no votes at all the challenge creator wins when eligible, else the lowest
    eligible user id. Otherwise the eligible user with the most votes wins, ties
    going to the lowest user id.

    >>> select_winner([3, 1, 2], creator_id=9, votes=[2, 1, 2, 1])
    1
    """
    ids = sorted(eligible_user_ids)
    counts = Counter(votes)
    if not counts:
        return creator_id if creator_id in ids or not ids else ids[0]
    winner, best = None, -1
    for uid in ids:
        if counts[uid] > best:
            winner, best = uid, counts[uid]
    return winner if winner is not None else creator_id


async def _eligible(session: AsyncSession, challenge_id: int) -> list[Participant]:
    return (await session.execute(
        select(Participant)
        .where(Participant.challenge_id == challenge_id, Participant.status.in_(ELIGIBLE_STATUSES))
        .order_by(Participant.user_id.asc())
    )).scalars().all()


async def start_election(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    challenge_id: int,
    initiator_id: int,
    now: datetime,
    cfg: Settings | None = None,
) -> BankHolderElection:
    cfg = cfg or settings
    ch = await session.get(Challenge, challenge_id)
    if not ch:
        raise NotFoundError("Challenge not found")
    if ch.status not in OPEN_CHALLENGE_STATUSES:
        raise PreconditionError("Challenge is not open")
    if ch.creator_id != initiator_id:
        raise PreconditionError("Only the challenge creator can start the election")
    if ch.bank_holder_id is not None:
        raise PreconditionError("Bank Holder is already chosen")

    candidates = await _eligible(session, ch.id)
    if len(candidates) < 2:
        raise PreconditionError("At least 2 participants who finished onboarding are needed")

    running = await session.scalar(
        select(BankHolderElection.id).where(
            BankHolderElection.challenge_id == ch.id,
            BankHolderElection.status == ElectionStatus.IN_PROGRESS,
        )
    )
    if running:
        raise ConflictError("An election is already in progress")

    e = BankHolderElection(challenge_id=ch.id, initiated_by=initiator_id, status=ElectionStatus.IN_PROGRESS, created_at=now)
    session.add(e)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("An election is already in progress")
    await session.commit()
    log.info("election_started", election_id=e.id, challenge_id=ch.id, candidates=len(candidates))

    hours = cfg.election_timeout_hours
    await notifier.send(ch.chat_id, f"🗳 Bank Holder election started! Check your direct messages. Voting is open for {hours} h.")
    await send_ballots(notifier, e.id, candidates, recipients=candidates)
    return e


async def send_ballots(
    notifier: SafeNotifier,
    election_id: int,
    candidates: list[Participant],
    *,
    recipients: list[Participant],
) -> None:
    options = [Affordance(c.label, vote_action(election_id, c.user_id)) for c in candidates]
    for r in recipients:
        await notifier.send(r.user_id, "Vote for the Bank Holder:", options)


async def send_ballot_if_running(session: AsyncSession, notifier: SafeNotifier, p: Participant) -> bool:
    """A participant who finishes onboarding mid-election still gets a ballot."""
    e = await session.scalar(
        select(BankHolderElection).where(
            BankHolderElection.challenge_id == p.challenge_id,
            BankHolderElection.status == ElectionStatus.IN_PROGRESS,
        )
    )
    if not e:
        return False
    await send_ballots(notifier, e.id, await _eligible(session, p.challenge_id), recipients=[p])
    return True


async def cast_vote(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    election_id: int,
    voter_id: int,
    candidate_id: int,
    now: datetime,
    cfg: Settings | None = None,
) -> FinalizeResult:
    e = await session.get(BankHolderElection, election_id)
    if not e:
        raise NotFoundError("Election not found")
    if e.status != ElectionStatus.IN_PROGRESS:
        raise PreconditionError("The election is already over")

    eligible = {p.user_id for p in await _eligible(session, e.challenge_id)}
    if voter_id not in eligible:
        raise PreconditionError("You cannot vote in this election")
    if candidate_id not in eligible:
        raise PreconditionError("This candidate is not eligible")

    session.add(BankHolderVote(election_id=e.id, voter_id=voter_id, voted_for_id=candidate_id, voted_at=now))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("You have already voted")
    log.info("vote_cast", election_id=e.id, voter_id=voter_id, candidate_id=candidate_id)
    await notifier.send(voter_id, "Your vote is recorded ✅")

    return await finalize_election(session, notifier, election_id=e.id, now=now, mode="all_votes", cfg=cfg)


class Reconcile(enum.Enum):
    """What the newly elected bank holder means for a participant still waiting on payment."""
    NONE = "none"
    REQUEST_PAYMENT = "request_payment"
    SELF_CONFIRM = "self_confirm"
    FORWARD_TO_HOLDER = "forward_to_holder"


# (status, is the new holder) -> follow-up
RECONCILE_TABLE: dict[tuple[ParticipantStatus, bool], Reconcile] = {
    (ParticipantStatus.PENDING_PAYMENT, True): Reconcile.REQUEST_PAYMENT,
    (ParticipantStatus.PENDING_PAYMENT, False): Reconcile.REQUEST_PAYMENT,
    (ParticipantStatus.PAYMENT_MARKED, True): Reconcile.SELF_CONFIRM,
    (ParticipantStatus.PAYMENT_MARKED, False): Reconcile.FORWARD_TO_HOLDER,
}


def reconcile_action(status: ParticipantStatus, is_holder: bool) -> Reconcile:
    return RECONCILE_TABLE.get((status, is_holder), Reconcile.NONE)


async def finalize_election(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    election_id: int,
    now: datetime,
    mode: FinalizeMode,
    cfg: Settings | None = None,
) -> FinalizeResult:
    """
    Finalize when all eligible participants voted (mode="all_votes") or the voting
    period elapsed (mode="timeout"). Anything else, including an election that is
    no longer in progress, is a no-op.
    """
    cfg = cfg or settings
    e = await session.get(BankHolderElection, election_id, populate_existing=True)
    if not e or e.status != ElectionStatus.IN_PROGRESS:
        return FinalizeResult(finalized=False)
    ch = await session.get(Challenge, e.challenge_id)
    if not ch:
        return FinalizeResult(finalized=False)

    if mode == "timeout" and now - e.created_at < cfg.election_timeout:
        return FinalizeResult(finalized=False)

    eligible = await _eligible(session, ch.id)
    if not eligible:
        return FinalizeResult(finalized=False)

    votes = (await session.execute(
        select(BankHolderVote.voted_for_id).where(BankHolderVote.election_id == e.id)
    )).scalars().all()
    if mode == "all_votes":
        voters = await session.scalar(
            select(func.count(func.distinct(BankHolderVote.voter_id))).where(BankHolderVote.election_id == e.id)
        )
        if int(voters or 0) < len(eligible):
            return FinalizeResult(finalized=False)

    winner_id = select_winner([p.user_id for p in eligible], ch.creator_id, votes)
    winner = next((p for p in eligible if p.user_id == winner_id), None)

    # a concurrent vote or tick may have finalized it meanwhile
    claimed = await session.execute(
        update(BankHolderElection)
        .where(BankHolderElection.id == e.id, BankHolderElection.status == ElectionStatus.IN_PROGRESS)
        .values(status=ElectionStatus.COMPLETED, completed_at=now)
    )
    if claimed.rowcount != 1:
        return FinalizeResult(finalized=False)

    ch.bank_holder_id = winner_id
    ch.bank_holder_username = winner.username if winner else None
    if ch.status == ChallengeStatus.DRAFT:
        ch.status = ChallengeStatus.PENDING_PAYMENTS

    plan = [(p, reconcile_action(p.status, p.user_id == winner_id)) for p in eligible]
    for p, action in plan:
        if action is Reconcile.SELF_CONFIRM:
            await confirm_own_payment(session, p, winner_id, now)
    await session.commit()

    holder_label = winner.label if winner else f"id {winner_id}"
    log.info("election_finalized", election_id=e.id, challenge_id=ch.id, winner_user_id=winner_id, votes=len(votes), mode=mode)
    await notifier.send(ch.chat_id, f"🏦 Bank Holder elected: {holder_label}")
    await notifier.send(winner_id, "You were elected Bank Holder. You will confirm everyone's payments.")

    for p, action in plan:
        if action is Reconcile.REQUEST_PAYMENT:
            await notifier.send(
                p.user_id,
                f"Bank Holder is {holder_label}. Send your stake of {ch.stake_amount:g} and tap the button:",
                [mark_paid_action(p.id)],
            )
        elif action is Reconcile.SELF_CONFIRM:
            await notifier.send(p.user_id, "Payment confirmed ✅ (you are the Bank Holder).")
        elif action is Reconcile.FORWARD_TO_HOLDER:
            await notifier.send(winner_id, f"{p.label} marked their payment. Please confirm:", [confirm_action(p.id)])

    await maybe_activate(session, notifier, challenge_id=ch.id, now=now, cfg=cfg)
    return FinalizeResult(finalized=True, winner_user_id=winner_id)


async def finalize_overdue_elections(
    session: AsyncSession,
    notifier: SafeNotifier,
    now: datetime,
    cfg: Settings | None = None,
) -> int:
    cfg = cfg or settings
    ids = (await session.execute(
        select(BankHolderElection.id).where(
            BankHolderElection.status == ElectionStatus.IN_PROGRESS,
            BankHolderElection.created_at <= now - cfg.election_timeout,
        )
    )).scalars().all()

    finalized = 0
    for eid in ids:
        try:
            result = await finalize_election(session, notifier, election_id=eid, now=now, mode="timeout", cfg=cfg)
        except SQLAlchemyError:
            await session.rollback()
            log.exception("election_finalize_failed", election_id=eid)
            continue
        if result.finalized:
            finalized += 1
    return finalized
