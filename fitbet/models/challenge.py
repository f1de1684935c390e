from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, BigInteger, Float, ForeignKey, UniqueConstraint
from fitbet.db import Base, UTCDateTime
from fitbet.models.status import ChallengeStatus, ParticipantStatus, Track, status_column


class Challenge(Base):
    __tablename__ = "challenges"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    chat_title: Mapped[str] = mapped_column(String(255), nullable=False)
    creator_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    duration: Mapped[int] = mapped_column(Integer, nullable=False)  # in settings.challenge_duration_unit
    stake_amount: Mapped[float] = mapped_column(Float, nullable=False)
    discipline_threshold: Mapped[float] = mapped_column(Float, nullable=False)  # fraction, e.g. 0.8
    max_skips: Mapped[int] = mapped_column(Integer, nullable=False)

    bank_holder_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    bank_holder_username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[ChallengeStatus] = mapped_column(status_column(ChallengeStatus), nullable=False, default=ChallengeStatus.DRAFT)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # set together, once, at activation
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Participant(Base):
    __tablename__ = "participants"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    track: Mapped[Track | None] = mapped_column(status_column(Track), nullable=True)
    start_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_waist: Mapped[float | None] = mapped_column(Float, nullable=True)
    height: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_waist: Mapped[float | None] = mapped_column(Float, nullable=True)

    start_photo_front_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_photo_left_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_photo_right_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_photo_back_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    total_checkins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_checkins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_checkins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    pending_checkin_window_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pending_checkin_requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    status: Mapped[ParticipantStatus] = mapped_column(status_column(ParticipantStatus), index=True, nullable=False, default=ParticipantStatus.ONBOARDING)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    onboarding_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_participant_per_challenge"),
    )

    @property
    def label(self) -> str:
        if self.username:
            return f"@{self.username}"
        return self.first_name or f"id {self.user_id}"
