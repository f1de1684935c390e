from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fitbet.config import Settings, settings
from fitbet.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from fitbet.models.challenge import Challenge, Participant
from fitbet.models.habit import CommitmentTemplate, HabitLog, HabitReminderSend, ParticipantCommitment
from fitbet.models.status import (
    LIVE_PARTICIPANT_STATUSES,
    HabitCadence,
    HabitCategory,
    HabitLogStatus,
    ParticipantStatus,
)
from fitbet.services.notifier import Affordance, SafeNotifier

log = structlog.get_logger()

MIN_COMMITMENTS = 2
MAX_COMMITMENTS = 3
_BUTTON_NAME_LIMIT = 32


@dataclass(frozen=True)
class TemplateSeed:
    name: str
    category: HabitCategory
    cadence: HabitCadence = HabitCadence.DAILY
    target_per_week: int | None = None
    description: str | None = None


DEFAULT_TEMPLATES: tuple[TemplateSeed, ...] = (
    TemplateSeed("Protein at every meal", HabitCategory.NUTRITION),
    TemplateSeed("400 g vegetables", HabitCategory.NUTRITION),
    TemplateSeed("No sugary drinks", HabitCategory.NUTRITION),
    TemplateSeed("Training 3× per week", HabitCategory.EXERCISE, HabitCadence.WEEKLY, 3),
    TemplateSeed("8k steps", HabitCategory.EXERCISE),
    TemplateSeed("Stretching 10 minutes", HabitCategory.EXERCISE),
    TemplateSeed("Sleep 7+ hours", HabitCategory.LIFESTYLE),
    TemplateSeed("2 L water", HabitCategory.LIFESTYLE),
    TemplateSeed("No alcohol on weekdays", HabitCategory.LIFESTYLE),
)


@dataclass
class HabitsMessage:
    date_key: str
    text: str
    affordances: list[Affordance] = field(default_factory=list)


# --- calendar helpers (habits count in local days of the configured timezone) ---

def local_date(now: datetime, tz_name: str) -> date:
    return now.astimezone(ZoneInfo(tz_name)).date()


def local_hour(now: datetime, tz_name: str) -> int:
    return now.astimezone(ZoneInfo(tz_name)).hour


def week_start(d: date) -> date:
    """Monday of the week containing `d`."""
    return d - timedelta(days=d.weekday())


def days_between(start: date, end: date) -> int:
    """Calendar days from `start` to `end`, both included; 0 when `end` is earlier."""
    if end < start:
        return 0
    return (end - start).days + 1


def weeks_between(start: date, end: date) -> int:
    """Monday-based weeks touched by the range, both ends included."""
    if end < start:
        return 0
    return (week_start(end) - week_start(start)).days // 7 + 1


def parse_date_key(key: str) -> date:
    try:
        return date.fromisoformat(key)
    except ValueError:
        raise ValidationError(f"Invalid date {key!r}, expected YYYY-MM-DD")


def _short(name: str) -> str:
    if len(name) <= _BUTTON_NAME_LIMIT:
        return name
    return name[: _BUTTON_NAME_LIMIT - 3] + "..."


# --- templates and commitments ---

async def seed_templates(session: AsyncSession) -> int:
    """Insert the default templates that are missing by name. Commits when anything was added."""
    existing = set((await session.scalars(select(CommitmentTemplate.name))).all())
    added = 0
    for t in DEFAULT_TEMPLATES:
        if t.name in existing:
            continue
        session.add(CommitmentTemplate(
            name=t.name,
            description=t.description,
            category=t.category,
            cadence=t.cadence,
            target_per_week=t.target_per_week,
            is_active=True,
        ))
        added += 1
    if added:
        await session.commit()
        log.info("habit_templates_seeded", added=added)
    return added


async def list_templates(session: AsyncSession) -> list[CommitmentTemplate]:
    res = await session.scalars(
        select(CommitmentTemplate).where(CommitmentTemplate.is_active.is_(True)).order_by(CommitmentTemplate.id)
    )
    return list(res.all())


async def committed_templates(session: AsyncSession, participant_id: int) -> list[CommitmentTemplate]:
    res = await session.scalars(
        select(CommitmentTemplate)
        .join(ParticipantCommitment, ParticipantCommitment.template_id == CommitmentTemplate.id)
        .where(ParticipantCommitment.participant_id == participant_id)
        .order_by(ParticipantCommitment.id)
    )
    return list(res.all())


async def _own_participant(session: AsyncSession, participant_id: int, actor_id: int) -> Participant:
    p = await session.get(Participant, participant_id)
    if not p:
        raise NotFoundError("Participant not found")
    if p.user_id != actor_id:
        raise PreconditionError("Only the participant can manage their habits")
    return p


async def choose_commitments(
    session: AsyncSession,
    *,
    participant_id: int,
    actor_id: int,
    template_ids: list[int],
    now: datetime,
) -> list[CommitmentTemplate]:
    """Replace the participant's habits with 2 to 3 distinct active templates."""
    p = await _own_participant(session, participant_id, actor_id)
    if p.status not in LIVE_PARTICIPANT_STATUSES:
        raise PreconditionError("Habits can only be chosen while you take part in a challenge")
    if len(set(template_ids)) != len(template_ids):
        raise ValidationError("Each habit can be chosen once")
    if not MIN_COMMITMENTS <= len(template_ids) <= MAX_COMMITMENTS:
        raise ValidationError(f"Choose {MIN_COMMITMENTS} to {MAX_COMMITMENTS} habits")

    found = {
        t.id: t
        for t in (await session.scalars(
            select(CommitmentTemplate).where(
                CommitmentTemplate.id.in_(template_ids),
                CommitmentTemplate.is_active.is_(True),
            )
        )).all()
    }
    missing = [tid for tid in template_ids if tid not in found]
    if missing:
        raise ValidationError(f"Unknown or retired habits: {', '.join(map(str, missing))}")

    await session.execute(delete(ParticipantCommitment).where(ParticipantCommitment.participant_id == p.id))
    for tid in template_ids:
        session.add(ParticipantCommitment(participant_id=p.id, template_id=tid, created_at=now))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Habits were changed concurrently, try again")
    log.info("habits_chosen", participant_id=p.id, template_ids=template_ids)
    return [found[tid] for tid in template_ids]


# --- daily logs ---

async def log_habit(
    session: AsyncSession,
    *,
    participant_id: int,
    actor_id: int,
    template_id: int,
    date_key: str,
    status: HabitLogStatus,
    now: datetime,
    cfg: Settings = settings,
) -> HabitLog:
    """
    Mark a habit done or skipped for one local day. A later mark for the same day replaces the earlier one.
    Days in the future or before the challenge started are rejected.
    """
    day = parse_date_key(date_key)
    p = await _own_participant(session, participant_id, actor_id)
    if p.status != ParticipantStatus.ACTIVE:
        raise PreconditionError("Habits are tracked only while the challenge is running")
    if day > local_date(now, cfg.habits_timezone):
        raise ValidationError("Habits cannot be marked ahead of time")
    ch = await session.get(Challenge, p.challenge_id)
    if ch and ch.started_at and day < local_date(ch.started_at, cfg.habits_timezone):
        raise ValidationError("The challenge had not started on that day")
    committed = await session.scalar(
        select(ParticipantCommitment.id).where(
            ParticipantCommitment.participant_id == p.id,
            ParticipantCommitment.template_id == template_id,
        )
    )
    if committed is None:
        raise PreconditionError("You have not committed to this habit")

    entry = await session.scalar(
        select(HabitLog).where(
            HabitLog.participant_id == p.id,
            HabitLog.template_id == template_id,
            HabitLog.date_key == day.isoformat(),
        )
    )
    if entry is None:
        entry = HabitLog(
            participant_id=p.id, template_id=template_id, date_key=day.isoformat(),
            status=status, created_at=now, updated_at=now,
        )
        session.add(entry)
    else:
        entry.status = status
        entry.updated_at = now
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("This day was marked concurrently, try again")
    log.info("habit_logged", participant_id=p.id, template_id=template_id, date_key=entry.date_key, status=status.value)
    return entry


# --- progress message ---

_STATUS_MARK = {HabitLogStatus.DONE: "✅", HabitLogStatus.SKIPPED: "❌"}


async def habits_message(session: AsyncSession, p: Participant, now: datetime, cfg: Settings = settings) -> HabitsMessage:
    """
    Today's habits of a participant with their running totals, plus one done/skip pair of buttons per habit.
    Weekly habits also report this week's count and how many weeks met the target.
    """
    today = local_date(now, cfg.habits_timezone)
    key = today.isoformat()
    templates = await committed_templates(session, p.id)
    if not templates:
        return HabitsMessage(key, "You have no habits selected yet. Choose 2 to 3 habits to start tracking them.")

    this_week = week_start(today)
    ch = await session.get(Challenge, p.challenge_id)
    start = local_date(ch.started_at, cfg.habits_timezone) if ch and ch.started_at else None
    lower = min(start, this_week) if start else this_week

    rows = (await session.execute(
        select(HabitLog.template_id, HabitLog.date_key, HabitLog.status).where(
            HabitLog.participant_id == p.id,
            HabitLog.date_key >= lower.isoformat(),
            HabitLog.date_key <= (this_week + timedelta(days=6)).isoformat(),
        )
    )).all()

    today_status: dict[int, HabitLogStatus] = {}
    week_done: Counter[int] = Counter()
    total_done: Counter[int] = Counter()
    done_per_week: dict[int, Counter[date]] = {}
    for tid, dk, status in rows:
        d = date.fromisoformat(dk)
        if dk == key:
            today_status[tid] = status
        if status != HabitLogStatus.DONE:
            continue
        if d >= this_week:
            week_done[tid] += 1
        if start and start <= d <= today:
            total_done[tid] += 1
            done_per_week.setdefault(tid, Counter())[week_start(d)] += 1

    lines = [f"Habits for today ({today:%d.%m})", ""]
    affordances: list[Affordance] = []
    for i, t in enumerate(templates, start=1):
        mark = _STATUS_MARK.get(today_status.get(t.id), "⏳")
        line = f"{i}) {t.name} — {mark} today"
        if t.cadence == HabitCadence.WEEKLY:
            target = t.target_per_week or 1
            line += f"; week {week_done[t.id]}/{target}"
            if start:
                met = sum(1 for n in done_per_week.get(t.id, Counter()).values() if n >= target)
                line += f"; total weeks {met}/{weeks_between(start, today)}"
        elif start:
            line += f"; total days {total_done[t.id]}/{days_between(start, today)}"
        lines.append(line)

        short = _short(t.name)
        affordances.append(Affordance(f"✅ {short}", f"habit_done_{p.id}_{t.id}_{key}"))
        affordances.append(Affordance(f"❌ {short}", f"habit_skip_{p.id}_{t.id}_{key}"))

    return HabitsMessage(key, "\n".join(lines), affordances)


async def habits_view(
    session: AsyncSession,
    *,
    participant_id: int,
    actor_id: int,
    now: datetime,
    cfg: Settings = settings,
) -> HabitsMessage:
    p = await _own_participant(session, participant_id, actor_id)
    return await habits_message(session, p, now, cfg)


# --- daily reminder sweep ---

async def send_habit_reminders(session: AsyncSession, notifier: SafeNotifier, now: datetime, cfg: Settings = settings) -> int:
    """
    Once per local day, at the configured local hour, DM every active participant with habits their progress.
    The reminder row is committed before sending, so a day's reminder goes out at most once
    even when ticks overlap across processes. Returns the number of reminders sent.
    """
    if local_hour(now, cfg.habits_timezone) != cfg.habit_reminder_hour:
        return 0
    key = local_date(now, cfg.habits_timezone).isoformat()

    already = select(HabitReminderSend.id).where(
        HabitReminderSend.participant_id == Participant.id,
        HabitReminderSend.date_key == key,
    )
    ids = (await session.scalars(
        select(Participant.id)
        .join(ParticipantCommitment, ParticipantCommitment.participant_id == Participant.id)
        .where(Participant.status == ParticipantStatus.ACTIVE, ~already.exists())
        .distinct()
        .order_by(Participant.id)
    )).all()

    sent = 0
    for pid in ids:
        try:
            p = await session.get(Participant, pid, populate_existing=True)
            if not p or p.status != ParticipantStatus.ACTIVE:
                continue
            msg = await habits_message(session, p, now, cfg)
            session.add(HabitReminderSend(participant_id=p.id, date_key=key, sent_at=now))
            await session.commit()
        except IntegrityError:
            await session.rollback()
            log.info("habit_reminder_already_sent", participant_id=pid, date_key=key)
            continue
        except SQLAlchemyError:
            await session.rollback()
            log.exception("habit_reminder_failed", participant_id=pid)
            continue
        await notifier.send(p.user_id, msg.text, msg.affordances)
        log.info("habit_reminder_sent", participant_id=p.id, date_key=key)
        sent += 1
    return sent
