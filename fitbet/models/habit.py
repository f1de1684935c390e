from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, UniqueConstraint
from fitbet.db import Base, UTCDateTime
from fitbet.models.status import HabitCadence, HabitCategory, HabitLogStatus, status_column


class CommitmentTemplate(Base):
    """A habit participants can commit to. Weekly habits count toward `target_per_week`."""
    __tablename__ = "commitment_templates"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    category: Mapped[HabitCategory] = mapped_column(status_column(HabitCategory), nullable=False)
    cadence: Mapped[HabitCadence] = mapped_column(status_column(HabitCadence), nullable=False, default=HabitCadence.DAILY)
    target_per_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ParticipantCommitment(Base):
    __tablename__ = "participant_commitments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), index=True, nullable=False)
    template_id: Mapped[int] = mapped_column(Integer, ForeignKey("commitment_templates.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("participant_id", "template_id", name="uq_commitment_per_participant"),
    )


class HabitLog(Base):
    """One mark per participant, habit and local day (YYYY-MM-DD in the habits timezone)."""
    __tablename__ = "habit_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), index=True, nullable=False)
    template_id: Mapped[int] = mapped_column(Integer, ForeignKey("commitment_templates.id", ondelete="RESTRICT"), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), index=True, nullable=False)
    status: Mapped[HabitLogStatus] = mapped_column(status_column(HabitLogStatus), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("participant_id", "template_id", "date_key", name="uq_habit_log_per_day"),
    )


class HabitReminderSend(Base):
    """Marks the daily habits reminder as sent; the unique key makes the send once-per-day."""
    __tablename__ = "habit_reminder_sends"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("participant_id", "date_key", name="uq_habit_reminder_per_day"),
    )
