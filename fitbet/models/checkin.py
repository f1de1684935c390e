from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, BigInteger, Float, ForeignKey, UniqueConstraint
from fitbet.db import Base, UTCDateTime
from fitbet.models.status import WindowStatus, status_column


class CheckinWindow(Base):
    __tablename__ = "checkin_windows"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    window_number: Mapped[int] = mapped_column(Integer, nullable=False)
    opens_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True, nullable=False)
    closes_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True, nullable=False)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[WindowStatus] = mapped_column(status_column(WindowStatus), index=True, nullable=False, default=WindowStatus.SCHEDULED)

    __table_args__ = (
        UniqueConstraint("challenge_id", "window_number", name="uq_window_number_per_challenge"),
    )


class Checkin(Base):
    __tablename__ = "checkins"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), index=True, nullable=False)
    window_id: Mapped[int] = mapped_column(Integer, ForeignKey("checkin_windows.id", ondelete="CASCADE"), index=True, nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    waist: Mapped[float] = mapped_column(Float, nullable=False)
    photo_front_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo_left_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo_right_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo_back_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("participant_id", "window_id", name="uq_checkin_once_per_window"),
    )


class CheckinNotification(Base):
    """
    Latest "window open" message per recipient, so it can be retracted when the next window opens.
    participant_id is NULL for the group message of the challenge.
    """
    __tablename__ = "checkin_notifications"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    participant_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=True)
    recipient_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    window_id: Mapped[int] = mapped_column(Integer, ForeignKey("checkin_windows.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint("challenge_id", "participant_id", name="uq_checkin_notification_recipient"),
    )
