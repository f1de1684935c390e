from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, BigInteger, ForeignKey, Index, UniqueConstraint, text
from fitbet.db import Base, UTCDateTime
from fitbet.models.status import ElectionStatus, status_column


class BankHolderElection(Base):
    __tablename__ = "bank_holder_elections"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    initiated_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[ElectionStatus] = mapped_column(status_column(ElectionStatus), index=True, nullable=False, default=ElectionStatus.IN_PROGRESS)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        # one running election per challenge
        Index(
            "uq_election_in_progress_per_challenge",
            "challenge_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )


class BankHolderVote(Base):
    __tablename__ = "bank_holder_votes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    election_id: Mapped[int] = mapped_column(Integer, ForeignKey("bank_holder_elections.id", ondelete="CASCADE"), index=True, nullable=False)
    voter_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    voted_for_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    voted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("election_id", "voter_id", name="uq_vote_once_per_voter"),
    )
