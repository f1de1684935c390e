from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, BigInteger, ForeignKey
from fitbet.db import Base, UTCDateTime
from fitbet.models.status import PaymentStatus, status_column


class Payment(Base):
    """
    Stake payment per participant. Money moves outside the system;
    the row only tracks who said they paid and who confirmed it.
    """
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("participants.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    status: Mapped[PaymentStatus] = mapped_column(status_column(PaymentStatus), index=True, nullable=False, default=PaymentStatus.PENDING)
    marked_paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    confirmed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
