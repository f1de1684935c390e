from __future__ import annotations
import enum
from sqlalchemy import Enum as SAEnum


class ChallengeStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_PAYMENTS = "pending_payments"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipantStatus(str, enum.Enum):
    ONBOARDING = "onboarding"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_MARKED = "payment_marked"
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"
    DISQUALIFIED = "disqualified"


class WindowStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    OPEN = "open"
    CLOSED = "closed"


class ElectionStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    MARKED_PAID = "marked_paid"
    CONFIRMED = "confirmed"


class Track(str, enum.Enum):
    CUT = "cut"
    BULK = "bulk"


class HabitCadence(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class HabitCategory(str, enum.Enum):
    NUTRITION = "nutrition"
    EXERCISE = "exercise"
    LIFESTYLE = "lifestyle"


class HabitLogStatus(str, enum.Enum):
    DONE = "done"
    SKIPPED = "skipped"


# Challenge is still accepting work (not terminal)
OPEN_CHALLENGE_STATUSES = (ChallengeStatus.DRAFT, ChallengeStatus.PENDING_PAYMENTS, ChallengeStatus.ACTIVE)
# Challenge is recruiting
JOINABLE_CHALLENGE_STATUSES = (ChallengeStatus.DRAFT, ChallengeStatus.PENDING_PAYMENTS)
# Participant finished onboarding and may vote / be elected
ELIGIBLE_STATUSES = (ParticipantStatus.PENDING_PAYMENT, ParticipantStatus.PAYMENT_MARKED, ParticipantStatus.ACTIVE)
# Participants that still block activation
BLOCKING_ACTIVATION_STATUSES = (
    ParticipantStatus.ONBOARDING,
    ParticipantStatus.PENDING_PAYMENT,
    ParticipantStatus.PAYMENT_MARKED,
)
LIVE_PARTICIPANT_STATUSES = (ParticipantStatus.ONBOARDING,) + ELIGIBLE_STATUSES


def status_column(enum_cls: type[enum.Enum]) -> SAEnum:
    """Persist as plain strings (no native DB enum) so new members need no type migration."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=20,
        values_callable=lambda e: [m.value for m in e],
    )
