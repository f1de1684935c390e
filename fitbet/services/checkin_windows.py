from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fitbet.errors import ConflictError, NotFoundError, PreconditionError
from fitbet.models.challenge import Challenge, Participant
from fitbet.models.checkin import Checkin, CheckinNotification, CheckinWindow
from fitbet.models.status import ParticipantStatus, WindowStatus
from fitbet.schemas.checkin import CheckinCreate
from fitbet.services.duration import format_window_duration
from fitbet.services.notifier import Affordance, SafeNotifier

log = structlog.get_logger()


# ---------- generation ----------

async def generate_windows(
    session: AsyncSession,
    *,
    challenge_id: int,
    started_at: datetime,
    ends_at: datetime,
    period: timedelta,
    window_duration: timedelta,
) -> int:
    """
    Replace the challenge's schedule with windows opening every `period` after `started_at`.
    Each lasts min(window_duration, period), clipped to `ends_at`; none opens at or after `ends_at`.
    Does not commit.
    """
    await session.execute(delete(CheckinWindow).where(CheckinWindow.challenge_id == challenge_id))

    step = period if period > timedelta(0) else window_duration
    span = min(window_duration, step)
    if step <= timedelta(0):
        return 0

    number = 1
    opens_at = started_at + step
    while opens_at < ends_at:
        session.add(CheckinWindow(
            challenge_id=challenge_id,
            window_number=number,
            opens_at=opens_at,
            closes_at=min(opens_at + span, ends_at),
            status=WindowStatus.SCHEDULED,
        ))
        number += 1
        opens_at += step
    await session.flush()
    return number - 1


# ---------- helpers ----------

async def _active_participants(session: AsyncSession, challenge_id: int) -> list[Participant]:
    return (await session.execute(
        select(Participant)
        .where(Participant.challenge_id == challenge_id, Participant.status == ParticipantStatus.ACTIVE)
        .order_by(Participant.user_id.asc())
    )).scalars().all()


async def _submitted_participant_ids(session: AsyncSession, window_id: int) -> set[int]:
    return set((await session.execute(
        select(Checkin.participant_id).where(Checkin.window_id == window_id)
    )).scalars().all())


@dataclass
class WindowTally:
    window_id: int
    window_number: int
    chat_id: int | None
    submitted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    disqualified: list[int] = field(default_factory=list)  # participant ids


# ---------- closing ----------

async def claim_window(session: AsyncSession, w: CheckinWindow, *criteria, **values) -> bool:
    """
    Conditionally update one window row. False when the criteria no longer hold in the
    store, i.e. a concurrent tick (another process or the cron script) got there first.
    """
    res = await session.execute(
        update(CheckinWindow).where(CheckinWindow.id == w.id, *criteria).values(**values)
    )
    return res.rowcount == 1


async def close_window(session: AsyncSession, w: CheckinWindow, *, closed_at_override: datetime | None = None) -> WindowTally | None:
    """
    Close one window and account every active participant exactly once.
    Submitters were already counted at submit time; everyone else takes a skip,
    and crossing max_skips disqualifies for good. Returns None when the window was
    no longer open in the store. Does not commit.
    """
    closes_at = w.closes_at if closed_at_override is None else min(w.closes_at, closed_at_override)
    if not await claim_window(
        session, w, CheckinWindow.status == WindowStatus.OPEN,
        status=WindowStatus.CLOSED, closes_at=closes_at,
    ):
        log.info("window_already_closed", window_id=w.id)
        return None
    w.status = WindowStatus.CLOSED
    w.closes_at = closes_at

    ch = await session.get(Challenge, w.challenge_id)
    tally = WindowTally(window_id=w.id, window_number=w.window_number, chat_id=ch.chat_id if ch else None)
    if not ch:
        return tally

    submitted = await _submitted_participant_ids(session, w.id)
    for p in await _active_participants(session, w.challenge_id):
        if p.id in submitted:
            tally.submitted.append(p.label)
            continue
        tally.skipped.append(p.label)
        p.skipped_checkins += 1
        p.total_checkins += 1
        p.pending_checkin_window_id = None
        p.pending_checkin_requested_at = None
        if p.skipped_checkins > ch.max_skips:
            p.status = ParticipantStatus.DISQUALIFIED
            tally.disqualified.append(p.id)
            log.info("participant_disqualified", participant_id=p.id, challenge_id=ch.id, skipped=p.skipped_checkins, max_skips=ch.max_skips)
    await session.flush()
    return tally


async def announce_closure(notifier: SafeNotifier, tally: WindowTally) -> None:
    if tally.chat_id is None:
        return
    done = ", ".join(tally.submitted) or "—"
    missed = ", ".join(tally.skipped) or "—"
    await notifier.send(
        tally.chat_id,
        f"Check-in window #{tally.window_number} is closed.\nSubmitted: {done}\nSkipped: {missed}",
    )


async def close_due_windows(session: AsyncSession, notifier: SafeNotifier, now: datetime) -> int:
    ids = (await session.execute(
        select(CheckinWindow.id)
        .where(CheckinWindow.status == WindowStatus.OPEN, CheckinWindow.closes_at <= now)
        .order_by(CheckinWindow.closes_at.asc())
    )).scalars().all()

    closed = 0
    for wid in ids:
        try:
            w = await session.get(CheckinWindow, wid, populate_existing=True)
            if not w or w.status != WindowStatus.OPEN:
                continue
            tally = await close_window(session, w)
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            log.exception("window_close_failed", window_id=wid)
            continue
        if tally is None:
            continue
        closed += 1
        log.info("window_closed", window_id=wid, submitted=len(tally.submitted), skipped=len(tally.skipped))
        await announce_closure(notifier, tally)
    return closed


# ---------- opening ----------

async def _replace_open_notice(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    challenge_id: int,
    participant_id: int | None,
    recipient_id: int,
    window_id: int,
    text: str,
    affordance: Affordance,
) -> None:
    """Retract the previous "window open" message for this recipient, send the new one and remember it."""
    prev = await session.scalar(
        select(CheckinNotification).where(
            CheckinNotification.challenge_id == challenge_id,
            CheckinNotification.participant_id.is_(None) if participant_id is None
            else CheckinNotification.participant_id == participant_id,
        )
    )
    if prev:
        await notifier.delete_message(prev.recipient_id, prev.message_id)

    message_id = await notifier.send(recipient_id, text, [affordance])
    if message_id is None:
        return
    if prev:
        prev.recipient_id = recipient_id
        prev.message_id = message_id
        prev.window_id = window_id
    else:
        session.add(CheckinNotification(
            challenge_id=challenge_id,
            participant_id=participant_id,
            recipient_id=recipient_id,
            message_id=message_id,
            window_id=window_id,
        ))
    await session.commit()


async def _open_one(session: AsyncSession, w: CheckinWindow) -> list[WindowTally] | None:
    if not await claim_window(session, w, CheckinWindow.status == WindowStatus.SCHEDULED, status=WindowStatus.OPEN):
        return None
    # A later window that is also due and starts before this one ends caps it.
    next_window = await session.scalar(
        select(CheckinWindow)
        .where(CheckinWindow.challenge_id == w.challenge_id, CheckinWindow.opens_at > w.opens_at)
        .order_by(CheckinWindow.opens_at.asc())
        .limit(1)
    )
    if next_window and w.closes_at > next_window.opens_at:
        log.warning("window_clamped", window_id=w.id, closes_at=w.closes_at.isoformat(), clamped_to=next_window.opens_at.isoformat())
        w.closes_at = next_window.opens_at

    # Safety net: nothing earlier may still be open once this one opens.
    overlapping = (await session.execute(
        select(CheckinWindow).where(
            CheckinWindow.challenge_id == w.challenge_id,
            CheckinWindow.status == WindowStatus.OPEN,
            CheckinWindow.opens_at < w.opens_at,
        )
    )).scalars().all()
    forced: list[WindowTally] = []
    for prev in overlapping:
        log.warning("window_force_closed", window_id=prev.id, successor_id=w.id)
        tally = await close_window(session, prev, closed_at_override=w.opens_at)
        if tally:
            forced.append(tally)

    w.status = WindowStatus.OPEN
    await session.flush()
    return forced


async def open_due_windows(session: AsyncSession, notifier: SafeNotifier, now: datetime) -> int:
    ids = (await session.execute(
        select(CheckinWindow.id)
        .where(CheckinWindow.status == WindowStatus.SCHEDULED, CheckinWindow.opens_at <= now)
        .order_by(CheckinWindow.opens_at.asc())
    )).scalars().all()

    opened = 0
    for wid in ids:
        try:
            w = await session.get(CheckinWindow, wid, populate_existing=True)
            if not w or w.status != WindowStatus.SCHEDULED:
                continue
            if await _open_one(session, w) is None:
                await session.rollback()
                continue
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            log.exception("window_open_failed", window_id=wid)
            continue
        opened += 1
        log.info("window_opened", window_id=wid, challenge_id=w.challenge_id, window_number=w.window_number)

        try:
            ch = await session.get(Challenge, w.challenge_id)
            if not ch:
                continue
            label = format_window_duration(w.closes_at - w.opens_at)
            action = Affordance("Submit check-in", f"checkin_{w.id}")
            await _replace_open_notice(
                session, notifier,
                challenge_id=ch.id, participant_id=None, recipient_id=ch.chat_id, window_id=w.id,
                text=f"Check-in window #{w.window_number} is open ({label}).",
                affordance=action,
            )
            for p in await _active_participants(session, ch.id):
                await _replace_open_notice(
                    session, notifier,
                    challenge_id=ch.id, participant_id=p.id, recipient_id=p.user_id, window_id=w.id,
                    text=f"Check-in window #{w.window_number} is open ({label}). Tap \"Submit check-in\".",
                    affordance=action,
                )
        except SQLAlchemyError:
            await session.rollback()
            log.exception("window_open_notice_failed", window_id=wid)
    return opened


# ---------- reminders ----------

async def send_due_reminders(session: AsyncSession, notifier: SafeNotifier, now: datetime, threshold: timedelta) -> int:
    ids = (await session.execute(
        select(CheckinWindow.id).where(
            CheckinWindow.status == WindowStatus.OPEN,
            CheckinWindow.closes_at <= now + threshold,
            CheckinWindow.reminder_sent_at.is_(None),
        )
    )).scalars().all()

    reminded = 0
    for wid in ids:
        try:
            w = await session.get(CheckinWindow, wid, populate_existing=True)
            if not w or w.reminder_sent_at is not None:
                continue
            # too short to warn meaningfully
            if w.closes_at - w.opens_at <= threshold:
                w.reminder_sent_at = now
                await session.commit()
                continue

            ch = await session.get(Challenge, w.challenge_id)
            if not ch:
                continue
            active = await _active_participants(session, ch.id)
            if not active:
                continue
            submitted = await _submitted_participant_ids(session, w.id)
            missing = [(p.user_id, p.label) for p in active if p.id not in submitted]

            if not await claim_window(session, w, CheckinWindow.reminder_sent_at.is_(None), reminder_sent_at=now):
                await session.rollback()
                continue
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            log.exception("window_reminder_failed", window_id=wid)
            continue
        if not missing:
            continue

        reminded += 1
        hours = round(threshold.total_seconds() / 3600)
        roster = ", ".join(label for _, label in missing)
        log.info("window_reminder_sent", window_id=wid, missing=len(missing))
        await notifier.send(
            ch.chat_id,
            f"Reminder: check-in #{w.window_number} closes in ~{hours} h.\nNot submitted yet: {roster}",
        )
        for user_id, _ in missing:
            await notifier.send(user_id, f"Reminder: submit check-in #{w.window_number} before the window closes.")
    return reminded


# ---------- user-triggered ----------

async def _participant_for_window(session: AsyncSession, window_id: int, user_id: int) -> tuple[CheckinWindow, Participant]:
    w = await session.get(CheckinWindow, window_id)
    if not w:
        raise NotFoundError("Check-in window not found")
    p = await session.scalar(
        select(Participant).where(Participant.challenge_id == w.challenge_id, Participant.user_id == user_id)
    )
    if not p:
        raise NotFoundError("Not a participant of this challenge")
    return w, p


async def request_checkin(session: AsyncSession, notifier: SafeNotifier, *, window_id: int, user_id: int, now: datetime) -> Participant:
    """The window affordance was tapped: remember which window the participant is about to submit for."""
    w, p = await _participant_for_window(session, window_id, user_id)
    if w.status != WindowStatus.OPEN:
        raise PreconditionError("Check-in window is closed")
    if p.status != ParticipantStatus.ACTIVE:
        raise PreconditionError("Check-ins are only for active participants")

    p.pending_checkin_window_id = w.id
    p.pending_checkin_requested_at = now
    await session.commit()
    await notifier.send(p.user_id, f"Send your check-in #{w.window_number}: weight, waist and four photos.")
    return p


async def submit_checkin(
    session: AsyncSession,
    notifier: SafeNotifier,
    *,
    window_id: int,
    user_id: int,
    data: CheckinCreate,
    now: datetime,
) -> Checkin:
    w, p = await _participant_for_window(session, window_id, user_id)
    if w.status != WindowStatus.OPEN:
        raise PreconditionError("Check-in window is closed")
    existing = await session.scalar(
        select(Checkin.id).where(Checkin.participant_id == p.id, Checkin.window_id == w.id)
    )
    if existing:
        raise ConflictError("Check-in already submitted for this window")
    if p.status != ParticipantStatus.ACTIVE:
        raise PreconditionError("Check-ins are only for active participants")

    c = Checkin(
        participant_id=p.id,
        window_id=w.id,
        weight=data.weight,
        waist=data.waist,
        photo_front_id=data.photo_front_id,
        photo_left_id=data.photo_left_id,
        photo_right_id=data.photo_right_id,
        photo_back_id=data.photo_back_id,
        submitted_at=now,
    )
    session.add(c)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Check-in already submitted for this window")

    p.completed_checkins += 1
    p.total_checkins += 1
    p.pending_checkin_window_id = None
    p.pending_checkin_requested_at = None
    await session.commit()

    log.info("checkin_submitted", participant_id=p.id, window_id=w.id)
    await notifier.send(p.user_id, f"Accepted ✅\nWeight: {c.weight}\nWaist: {c.waist}")
    return c
