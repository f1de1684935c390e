from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)

def upgrade() -> None:
    op.create_table(
        "challenges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("chat_title", sa.String(length=255), nullable=False),
        sa.Column("creator_id", sa.BigInteger(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("stake_amount", sa.Float(), nullable=False),
        sa.Column("discipline_threshold", sa.Float(), nullable=False),
        sa.Column("max_skips", sa.Integer(), nullable=False),
        sa.Column("bank_holder_id", sa.BigInteger(), nullable=True),
        sa.Column("bank_holder_username", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("created_at", nullable=False),
        _ts("started_at"),
        _ts("ends_at"),
    )
    op.create_index("ix_challenges_chat_id", "challenges", ["chat_id"])

    op.create_table(
        "participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("first_name", sa.String(length=128), nullable=True),
        sa.Column("track", sa.String(length=20), nullable=True),
        sa.Column("start_weight", sa.Float(), nullable=True),
        sa.Column("start_waist", sa.Float(), nullable=True),
        sa.Column("height", sa.Float(), nullable=True),
        sa.Column("target_weight", sa.Float(), nullable=True),
        sa.Column("target_waist", sa.Float(), nullable=True),
        sa.Column("start_photo_front_id", sa.String(length=255), nullable=True),
        sa.Column("start_photo_left_id", sa.String(length=255), nullable=True),
        sa.Column("start_photo_right_id", sa.String(length=255), nullable=True),
        sa.Column("start_photo_back_id", sa.String(length=255), nullable=True),
        sa.Column("total_checkins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_checkins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_checkins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_checkin_window_id", sa.Integer(), nullable=True),
        _ts("pending_checkin_requested_at"),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("joined_at", nullable=False),
        _ts("onboarding_completed_at"),
        sa.UniqueConstraint("challenge_id", "user_id", name="uq_participant_per_challenge"),
    )
    op.create_index("ix_participants_challenge_id", "participants", ["challenge_id"])
    op.create_index("ix_participants_user_id", "participants", ["user_id"])
    op.create_index("ix_participants_status", "participants", ["status"])

    op.create_table(
        "checkin_windows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("window_number", sa.Integer(), nullable=False),
        _ts("opens_at", nullable=False),
        _ts("closes_at", nullable=False),
        _ts("reminder_sent_at"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.UniqueConstraint("challenge_id", "window_number", name="uq_window_number_per_challenge"),
    )
    op.create_index("ix_checkin_windows_challenge_id", "checkin_windows", ["challenge_id"])
    op.create_index("ix_checkin_windows_opens_at", "checkin_windows", ["opens_at"])
    op.create_index("ix_checkin_windows_closes_at", "checkin_windows", ["closes_at"])
    op.create_index("ix_checkin_windows_status", "checkin_windows", ["status"])

    op.create_table(
        "checkins",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("window_id", sa.Integer(), sa.ForeignKey("checkin_windows.id", ondelete="CASCADE"), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("waist", sa.Float(), nullable=False),
        sa.Column("photo_front_id", sa.String(length=255), nullable=True),
        sa.Column("photo_left_id", sa.String(length=255), nullable=True),
        sa.Column("photo_right_id", sa.String(length=255), nullable=True),
        sa.Column("photo_back_id", sa.String(length=255), nullable=True),
        _ts("submitted_at", nullable=False),
        sa.UniqueConstraint("participant_id", "window_id", name="uq_checkin_once_per_window"),
    )
    op.create_index("ix_checkins_participant_id", "checkins", ["participant_id"])
    op.create_index("ix_checkins_window_id", "checkins", ["window_id"])

    op.create_table(
        "checkin_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=True),
        sa.Column("recipient_id", sa.BigInteger(), nullable=False),
        sa.Column("message_id", sa.BigInteger(), nullable=False),
        sa.Column("window_id", sa.Integer(), sa.ForeignKey("checkin_windows.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("challenge_id", "participant_id", name="uq_checkin_notification_recipient"),
    )
    op.create_index("ix_checkin_notifications_challenge_id", "checkin_notifications", ["challenge_id"])

    op.create_table(
        "bank_holder_elections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("initiated_by", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("created_at", nullable=False),
        _ts("completed_at"),
    )
    op.create_index("ix_bank_holder_elections_challenge_id", "bank_holder_elections", ["challenge_id"])
    op.create_index("ix_bank_holder_elections_status", "bank_holder_elections", ["status"])
    # one running election per challenge
    op.create_index(
        "uq_election_in_progress_per_challenge",
        "bank_holder_elections",
        ["challenge_id"],
        unique=True,
        sqlite_where=sa.text("status = 'in_progress'"),
        postgresql_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        "bank_holder_votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("election_id", sa.Integer(), sa.ForeignKey("bank_holder_elections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("voter_id", sa.BigInteger(), nullable=False),
        sa.Column("voted_for_id", sa.BigInteger(), nullable=False),
        _ts("voted_at", nullable=False),
        sa.UniqueConstraint("election_id", "voter_id", name="uq_vote_once_per_voter"),
    )
    op.create_index("ix_bank_holder_votes_election_id", "bank_holder_votes", ["election_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("marked_paid_at"),
        _ts("confirmed_at"),
        sa.Column("confirmed_by", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_payments_participant_id", "payments", ["participant_id"], unique=True)
    op.create_index("ix_payments_status", "payments", ["status"])

def downgrade() -> None:
    op.drop_table("payments")
    op.drop_table("bank_holder_votes")
    op.drop_index("uq_election_in_progress_per_challenge", table_name="bank_holder_elections")
    op.drop_table("bank_holder_elections")
    op.drop_table("checkin_notifications")
    op.drop_table("checkins")
    op.drop_table("checkin_windows")
    op.drop_table("participants")
    op.drop_table("challenges")
