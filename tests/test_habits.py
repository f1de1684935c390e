from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
import pytest
from sqlalchemy import select
from fitbet.errors import PreconditionError, ValidationError
from fitbet.models.habit import CommitmentTemplate, HabitLog, HabitReminderSend, ParticipantCommitment
from fitbet.models.status import ChallengeStatus, HabitLogStatus, ParticipantStatus
from fitbet.schemas.challenge import ChatUser
from fitbet.services.habits import (
    DEFAULT_TEMPLATES,
    choose_commitments,
    days_between,
    habits_message,
    local_date,
    log_habit,
    seed_templates,
    send_habit_reminders,
    week_start,
    weeks_between,
)
from fitbet.services.participants import join_challenge

STARTED = datetime(2026, 1, 1, 0, 0, tzinfo=timezone.utc)
# 21:00 in Moscow
EVENING = datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc)


async def _templates(session) -> dict[str, CommitmentTemplate]:
    await seed_templates(session)
    return {t.name: t for t in (await session.scalars(select(CommitmentTemplate))).all()}


async def _commit(session, p, *templates):
    for t in templates:
        session.add(ParticipantCommitment(participant_id=p.id, template_id=t.id, created_at=STARTED))
    await session.commit()


async def _done(session, p, t, *days: str):
    for d in days:
        session.add(HabitLog(participant_id=p.id, template_id=t.id, date_key=d, status=HabitLogStatus.DONE, created_at=EVENING, updated_at=EVENING))
    await session.commit()


def test_calendar_helpers():
    assert week_start(date(2026, 1, 15)) == date(2026, 1, 12)
    assert week_start(date(2026, 1, 12)) == date(2026, 1, 12)
    assert days_between(date(2026, 1, 1), date(2026, 1, 15)) == 15
    assert days_between(date(2026, 1, 2), date(2026, 1, 1)) == 0
    assert weeks_between(date(2026, 1, 1), date(2026, 1, 15)) == 3
    # late evening UTC is already tomorrow in Moscow
    assert local_date(datetime(2026, 1, 15, 22, 0, tzinfo=timezone.utc), "Europe/Moscow") == date(2026, 1, 16)


@pytest.mark.asyncio
async def test_seeding_is_idempotent(session):
    assert await seed_templates(session) == len(DEFAULT_TEMPLATES)
    assert await seed_templates(session) == 0
    weekly = await session.scalar(select(CommitmentTemplate).where(CommitmentTemplate.target_per_week.is_not(None)))
    assert (weekly.name, weekly.target_per_week) == ("Training 3× per week", 3)


@pytest.mark.asyncio
async def test_message_counts_weekly_target_and_daily_totals(session, factory):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=STARTED)
    p = await factory.participant(ch, 2)
    t = await _templates(session)
    training, steps = t["Training 3× per week"], t["8k steps"]
    await _commit(session, p, training, steps)
    await _done(session, p, training, "2026-01-12", "2026-01-13", "2026-01-15")
    await _done(session, p, steps, "2026-01-01", "2026-01-14")

    msg = await habits_message(session, p, EVENING)

    assert msg.date_key == "2026-01-15"
    lines = msg.text.splitlines()
    assert lines[0] == "Habits for today (15.01)"
    assert lines[2] == "1) Training 3× per week — ✅ today; week 3/3; total weeks 1/3"
    assert lines[3] == "2) 8k steps — ⏳ today; total days 2/15"
    assert [a.action for a in msg.affordances] == [
        f"habit_done_{p.id}_{training.id}_2026-01-15",
        f"habit_skip_{p.id}_{training.id}_2026-01-15",
        f"habit_done_{p.id}_{steps.id}_2026-01-15",
        f"habit_skip_{p.id}_{steps.id}_2026-01-15",
    ]


@pytest.mark.asyncio
async def test_message_without_habits_asks_to_choose(session, factory):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=STARTED)
    p = await factory.participant(ch, 2)

    msg = await habits_message(session, p, EVENING)

    assert "no habits selected" in msg.text and msg.affordances == []


@pytest.mark.asyncio
async def test_choosing_habits_replaces_previous_choice(session, factory):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=STARTED)
    p = await factory.participant(ch, 2)
    t = await _templates(session)
    ids = [t[s.name].id for s in DEFAULT_TEMPLATES]

    await choose_commitments(session, participant_id=p.id, actor_id=2, template_ids=ids[:3], now=EVENING)
    chosen = await choose_commitments(session, participant_id=p.id, actor_id=2, template_ids=[ids[5], ids[4]], now=EVENING)

    assert [c.id for c in chosen] == [ids[5], ids[4]]
    rows = (await session.scalars(select(ParticipantCommitment.template_id).where(ParticipantCommitment.participant_id == p.id))).all()
    assert sorted(rows) == sorted([ids[4], ids[5]])


@pytest.mark.asyncio
async def test_choosing_habits_is_validated(session, factory):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=STARTED)
    p = await factory.participant(ch, 2)
    t = await _templates(session)
    ids = [t[s.name].id for s in DEFAULT_TEMPLATES]
    retired = t["2 L water"]
    retired.is_active = False
    await session.commit()

    with pytest.raises(ValidationError, match="2 to 3"):
        await choose_commitments(session, participant_id=p.id, actor_id=2, template_ids=ids[:1], now=EVENING)
    with pytest.raises(ValidationError, match="2 to 3"):
        await choose_commitments(session, participant_id=p.id, actor_id=2, template_ids=ids[:4], now=EVENING)
    with pytest.raises(ValidationError, match="once"):
        await choose_commitments(session, participant_id=p.id, actor_id=2, template_ids=[ids[0], ids[0]], now=EVENING)
    with pytest.raises(ValidationError, match="retired"):
        await choose_commitments(session, participant_id=p.id, actor_id=2, template_ids=[ids[0], retired.id], now=EVENING)
    with pytest.raises(PreconditionError):
        await choose_commitments(session, participant_id=p.id, actor_id=3, template_ids=ids[:2], now=EVENING)


@pytest.mark.asyncio
async def test_logging_a_day_twice_keeps_the_latest_mark(session, factory):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=STARTED)
    p = await factory.participant(ch, 2)
    t = await _templates(session)
    sleep, water = t["Sleep 7+ hours"], t["2 L water"]
    await _commit(session, p, sleep)

    await log_habit(session, participant_id=p.id, actor_id=2, template_id=sleep.id, date_key="2026-01-15", status=HabitLogStatus.DONE, now=EVENING)
    entry = await log_habit(session, participant_id=p.id, actor_id=2, template_id=sleep.id, date_key="2026-01-15", status=HabitLogStatus.SKIPPED, now=EVENING)

    assert entry.status == HabitLogStatus.SKIPPED
    rows = (await session.scalars(select(HabitLog).where(HabitLog.participant_id == p.id))).all()
    assert [(r.date_key, r.status) for r in rows] == [("2026-01-15", HabitLogStatus.SKIPPED)]

    with pytest.raises(PreconditionError, match="not committed"):
        await log_habit(session, participant_id=p.id, actor_id=2, template_id=water.id, date_key="2026-01-15", status=HabitLogStatus.DONE, now=EVENING)
    with pytest.raises(ValidationError, match="ahead of time"):
        await log_habit(session, participant_id=p.id, actor_id=2, template_id=sleep.id, date_key="2026-01-16", status=HabitLogStatus.DONE, now=EVENING)
    with pytest.raises(ValidationError, match="not started"):
        await log_habit(session, participant_id=p.id, actor_id=2, template_id=sleep.id, date_key="2025-12-31", status=HabitLogStatus.DONE, now=EVENING)
    with pytest.raises(ValidationError, match="YYYY-MM-DD"):
        await log_habit(session, participant_id=p.id, actor_id=2, template_id=sleep.id, date_key="2026-02-30", status=HabitLogStatus.DONE, now=EVENING)


@pytest.mark.asyncio
async def test_reminders_go_out_once_per_local_day(session, factory, safe_notifier, notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=STARTED)
    tracked = await factory.participant(ch, 2)
    untracked = await factory.participant(ch, 3)
    dropped = await factory.participant(ch, 4, status=ParticipantStatus.DROPPED)
    t = await _templates(session)
    await _commit(session, tracked, t["8k steps"], t["Sleep 7+ hours"])
    await _commit(session, dropped, t["8k steps"], t["Sleep 7+ hours"])

    # 20:00 in Moscow is not reminder time
    assert await send_habit_reminders(session, safe_notifier, EVENING - timedelta(hours=1)) == 0
    assert await send_habit_reminders(session, safe_notifier, EVENING) == 1
    assert await send_habit_reminders(session, safe_notifier, EVENING + timedelta(minutes=30)) == 0

    assert notifier.to(2)[0].startswith("Habits for today (15.01)")
    assert f"habit_done_{tracked.id}_{t['8k steps'].id}_2026-01-15" in notifier.actions_to(2)
    assert notifier.to(untracked.user_id) == [] and notifier.to(dropped.user_id) == []

    assert await send_habit_reminders(session, safe_notifier, EVENING + timedelta(days=1)) == 1
    keys = (await session.scalars(select(HabitReminderSend.date_key).order_by(HabitReminderSend.id))).all()
    assert keys == ["2026-01-15", "2026-01-16"]


@pytest.mark.asyncio
async def test_reminder_recorded_elsewhere_is_not_sent_again(session, session_factory, factory, safe_notifier, notifier):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=STARTED)
    p = await factory.participant(ch, 2)
    t = await _templates(session)
    await _commit(session, p, t["8k steps"], t["Sleep 7+ hours"])

    async with session_factory() as other:
        other.add(HabitReminderSend(participant_id=p.id, date_key="2026-01-15", sent_at=EVENING))
        await other.commit()

    assert await send_habit_reminders(session, safe_notifier, EVENING) == 0
    assert notifier.to(2) == []


@pytest.mark.asyncio
async def test_rejoining_clears_chosen_habits(session, factory, safe_notifier):
    ch = await factory.challenge()
    p = await factory.participant(ch, 5, status=ParticipantStatus.DROPPED)
    t = await _templates(session)
    await _commit(session, p, t["8k steps"], t["Sleep 7+ hours"])

    await join_challenge(session, safe_notifier, challenge_id=ch.id, user_id=5, user=ChatUser(), now=EVENING)

    rows = (await session.scalars(select(ParticipantCommitment).where(ParticipantCommitment.participant_id == p.id))).all()
    assert rows == []
