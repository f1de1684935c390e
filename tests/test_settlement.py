from __future__ import annotations
from datetime import timedelta
import pytest
from fitbet.models.checkin import Checkin
from fitbet.models.status import ChallengeStatus, ParticipantStatus, Track, WindowStatus
from fitbet.services.settlement import (
    ParticipantResult,
    compute_discipline,
    compute_goal_achievement,
    compute_payouts,
    finalize_ended_challenges,
    settle_challenge,
)
from conftest import NOW

H = timedelta(hours=1)
CUT = dict(start_weight=90, start_waist=100, target_weight=80, target_waist=90)


def _result(pid: int, winner: bool) -> ParticipantResult:
    return ParticipantResult(
        participant_id=pid, user_id=pid, label=f"id {pid}", status=ParticipantStatus.ACTIVE,
        discipline=100.0, goal=100.0, total=100.0, is_winner=winner,
    )


def test_cut_goal_on_target_is_100():
    assert compute_goal_achievement(Track.CUT, **CUT, current_weight=80, current_waist=90) == pytest.approx(100)


def test_cut_goal_is_not_capped_and_floors_regress():
    # lost twice the planned weight, waist unchanged
    assert compute_goal_achievement(Track.CUT, **CUT, current_weight=70, current_waist=100) == pytest.approx(140)
    # gained weight instead of losing it
    assert compute_goal_achievement(Track.CUT, **CUT, current_weight=95, current_waist=95) == pytest.approx(15)


def test_bulk_goal_counts_weight_only():
    bulk = dict(start_weight=70, start_waist=80, target_weight=80, target_waist=80)
    assert compute_goal_achievement(Track.BULK, **bulk, current_weight=75, current_waist=90) == pytest.approx(65)
    # target at or below start leaves only the fixed term
    flat = dict(bulk, target_weight=70)
    assert compute_goal_achievement(Track.BULK, **flat, current_weight=75, current_waist=80) == pytest.approx(30)


def test_goal_without_targets_is_zero():
    assert compute_goal_achievement(None, start_weight=90, start_waist=100, target_weight=None,
                                    target_waist=None, current_weight=80, current_waist=90) == 0


def test_discipline_defaults_to_full_without_checkins():
    assert compute_discipline(0, 0) == 100
    assert compute_discipline(3, 4) == 75


def test_payouts_split_losers_stakes_between_winners():
    results = compute_payouts([_result(1, True), _result(2, True), _result(3, False), _result(4, False)], stake=100)
    assert [r.payout for r in results] == [200, 200, 0, 0]
    assert sum(r.payout for r in results) == 400


@pytest.mark.parametrize("winners", [(False, False), (True, True)])
def test_payouts_refund_when_nobody_lost_or_won(winners):
    results = compute_payouts([_result(i, w) for i, w in enumerate(winners)], stake=50)
    assert [r.payout for r in results] == [50, 50]


async def _checkin(session, p, w, weight, waist, at):
    session.add(Checkin(participant_id=p.id, window_id=w.id, weight=weight, waist=waist, submitted_at=at))
    await session.commit()


@pytest.mark.asyncio
async def test_winner_takes_the_losers_stake(session, factory, safe_notifier, notifier):
    ch = await factory.challenge(
        status=ChallengeStatus.ACTIVE, bank_holder_id=1, discipline_threshold=0.8, stake_amount=100,
        started_at=NOW - 6 * H, ends_at=NOW - H,
    )
    strong = await factory.participant(ch, 1, paid=True, completed_checkins=2, total_checkins=2)
    weak = await factory.participant(ch, 2, paid=True, completed_checkins=1, skipped_checkins=1, total_checkins=2)
    w1 = await factory.window(ch, 1, NOW - 5 * H, NOW - 4 * H, status=WindowStatus.CLOSED)
    w2 = await factory.window(ch, 2, NOW - 3 * H, NOW - 2 * H, status=WindowStatus.CLOSED)
    await _checkin(session, strong, w1, 85, 95, NOW - 5 * H)
    # latest check-in: 150% of the weight and waist goals
    await _checkin(session, strong, w2, 75, 85, NOW - 3 * H)
    await _checkin(session, weak, w1, 80, 90, NOW - 5 * H)

    assert await finalize_ended_challenges(session, safe_notifier, NOW) == 1

    assert ch.status == ChallengeStatus.COMPLETED
    assert strong.status == ParticipantStatus.COMPLETED and weak.status == ParticipantStatus.COMPLETED
    assert "Payout: 200" in notifier.to(1)[-1]
    assert "Goal: 150.0%" in notifier.to(1)[-1]
    assert "Payout: 0" in notifier.to(2)[-1]
    ranking = notifier.to(ch.chat_id)[-1]
    assert ranking.index("@user1") < ranking.index("@user2")


@pytest.mark.asyncio
async def test_settlement_closes_open_window_and_refunds_lone_participant(session, factory, safe_notifier, notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, bank_holder_id=1, max_skips=5, ends_at=NOW - H)
    paid = await factory.participant(ch, 1, paid=True)
    w = await factory.window(ch, 1, NOW - 2 * H, NOW + H, status=WindowStatus.OPEN)

    await finalize_ended_challenges(session, safe_notifier, NOW)

    assert w.status == WindowStatus.CLOSED
    assert w.closes_at == NOW
    assert paid.skipped_checkins == 1
    # no check-ins: current metrics are the start metrics, so the goal is missed
    assert "Payout: 100" in notifier.to(1)[-1]


@pytest.mark.asyncio
async def test_settlement_without_paid_participants_just_completes(session, factory, safe_notifier, notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, ends_at=NOW - H)
    unpaid = await factory.participant(ch, 2)

    assert await finalize_ended_challenges(session, safe_notifier, NOW) == 1
    assert ch.status == ChallengeStatus.COMPLETED
    assert unpaid.status == ParticipantStatus.COMPLETED
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_disqualified_participant_cannot_win(session, factory, safe_notifier, notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, bank_holder_id=1, stake_amount=100, ends_at=NOW - H)
    keeper = await factory.participant(ch, 1, paid=True)
    out = await factory.participant(ch, 2, paid=True, status=ParticipantStatus.DISQUALIFIED)
    w = await factory.window(ch, 1, NOW - 3 * H, NOW - 2 * H, status=WindowStatus.CLOSED)
    # both beat their targets
    await _checkin(session, keeper, w, 78, 88, NOW - 3 * H)
    await _checkin(session, out, w, 78, 88, NOW - 3 * H)

    await finalize_ended_challenges(session, safe_notifier, NOW)

    assert "Payout: 200" in notifier.to(1)[-1]
    assert "Payout: 0" in notifier.to(2)[-1]
    assert keeper.status == ParticipantStatus.COMPLETED
    assert out.status == ParticipantStatus.DISQUALIFIED


@pytest.mark.asyncio
async def test_ended_challenge_is_settled_once(session, factory, safe_notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, bank_holder_id=1, ends_at=NOW - H)
    await factory.participant(ch, 1, paid=True)

    assert await finalize_ended_challenges(session, safe_notifier, NOW) == 1
    assert await finalize_ended_challenges(session, safe_notifier, NOW + H) == 0


@pytest.mark.asyncio
async def test_challenge_not_yet_over_is_left_alone(session, factory, safe_notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, ends_at=NOW + H)

    assert await finalize_ended_challenges(session, safe_notifier, NOW) == 0
    assert ch.status == ChallengeStatus.ACTIVE


@pytest.mark.asyncio
async def test_challenge_settled_elsewhere_is_not_paid_out_again(session, session_factory, factory, safe_notifier, notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, bank_holder_id=1, ends_at=NOW - H)
    await factory.participant(ch, 1, paid=True)

    async with session_factory() as other:
        assert await finalize_ended_challenges(other, safe_notifier, NOW) == 1
    sent = len(notifier.sent)

    # `ch` is still loaded as active in this session
    assert await settle_challenge(session, safe_notifier, ch, NOW) is None
    assert len(notifier.sent) == sent
