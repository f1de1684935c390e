from __future__ import annotations
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "0")

from datetime import datetime, timezone
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fitbet.db import Base
from fitbet.models.challenge import Challenge, Participant
from fitbet.models.checkin import CheckinWindow
from fitbet.models.payment import Payment
from fitbet.models.status import ChallengeStatus, ParticipantStatus, PaymentStatus, Track, WindowStatus
import fitbet.models.election  # noqa: F401
import fitbet.models.habit  # noqa: F401
from fitbet.services.notifier import SafeNotifier

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class MemoryNotifier:
    """Records every outbound call. Set `fail = True` to make each call raise."""

    def __init__(self):
        self.sent: list[tuple[int, str, list[str]]] = []
        self.deleted: list[tuple[int, int]] = []
        self.fail = False
        self._next_id = 100

    async def send(self, recipient_id, text, affordances=None):
        if self.fail:
            raise RuntimeError("telegram is down")
        self._next_id += 1
        self.sent.append((recipient_id, text, [a.action for a in affordances or ()]))
        return self._next_id

    async def edit_affordances(self, recipient_id, message_id, affordances):
        if self.fail:
            raise RuntimeError("telegram is down")

    async def delete_message(self, recipient_id, message_id):
        if self.fail:
            raise RuntimeError("telegram is down")
        self.deleted.append((recipient_id, message_id))

    def to(self, recipient_id: int) -> list[str]:
        return [text for rid, text, _ in self.sent if rid == recipient_id]

    def actions_to(self, recipient_id: int) -> list[str]:
        return [a for rid, _, actions in self.sent if rid == recipient_id for a in actions]


class Factory:
    def __init__(self, session):
        self.session = session

    async def challenge(self, **kw) -> Challenge:
        values = dict(
            chat_id=-1001, chat_title="Gym", creator_id=1, duration=6, stake_amount=100.0,
            discipline_threshold=0.8, max_skips=1, status=ChallengeStatus.DRAFT, created_at=NOW,
        )
        values.update(kw)
        ch = Challenge(**values)
        self.session.add(ch)
        await self.session.commit()
        return ch

    async def participant(self, ch: Challenge, user_id: int, *, paid: bool = False, **kw) -> Participant:
        values = dict(
            challenge_id=ch.id, user_id=user_id, username=f"user{user_id}",
            status=ParticipantStatus.ACTIVE, joined_at=NOW,
            track=Track.CUT, start_weight=90.0, start_waist=100.0, height=180.0,
            target_weight=80.0, target_waist=90.0,
        )
        values.update(kw)
        p = Participant(**values)
        self.session.add(p)
        await self.session.flush()
        if paid:
            self.session.add(Payment(participant_id=p.id, status=PaymentStatus.CONFIRMED, confirmed_at=NOW, confirmed_by=ch.bank_holder_id))
        await self.session.commit()
        return p

    async def window(self, ch: Challenge, number: int, opens_at, closes_at, status=WindowStatus.SCHEDULED, **kw) -> CheckinWindow:
        w = CheckinWindow(challenge_id=ch.id, window_number=number, opens_at=opens_at, closes_at=closes_at, status=status, **kw)
        self.session.add(w)
        await self.session.commit()
        return w


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def notifier() -> MemoryNotifier:
    return MemoryNotifier()


@pytest.fixture
def safe_notifier(notifier) -> SafeNotifier:
    return SafeNotifier(notifier)


@pytest.fixture
def factory(session) -> Factory:
    return Factory(session)
