from __future__ import annotations
from alembic import op
import sqlalchemy as sa

from fitbet.services.habits import DEFAULT_TEMPLATES

# revision identifiers
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None

def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)

def upgrade() -> None:
    templates = op.create_table(
        "commitment_templates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("cadence", sa.String(length=20), nullable=False),
        sa.Column("target_per_week", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "participant_commitments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("commitment_templates.id", ondelete="RESTRICT"), nullable=False),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("participant_id", "template_id", name="uq_commitment_per_participant"),
    )
    op.create_index("ix_participant_commitments_participant_id", "participant_commitments", ["participant_id"])

    op.create_table(
        "habit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("commitment_templates.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("date_key", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.UniqueConstraint("participant_id", "template_id", "date_key", name="uq_habit_log_per_day"),
    )
    op.create_index("ix_habit_logs_participant_id", "habit_logs", ["participant_id"])
    op.create_index("ix_habit_logs_date_key", "habit_logs", ["date_key"])

    op.create_table(
        "habit_reminder_sends",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date_key", sa.String(length=10), nullable=False),
        _ts("sent_at", nullable=False),
        sa.UniqueConstraint("participant_id", "date_key", name="uq_habit_reminder_per_day"),
    )

    op.bulk_insert(
        templates,
        [
            {
                "name": t.name,
                "description": t.description,
                "category": t.category.value,
                "cadence": t.cadence.value,
                "target_per_week": t.target_per_week,
                "is_active": True,
            }
            for t in DEFAULT_TEMPLATES
        ],
    )

def downgrade() -> None:
    op.drop_table("habit_reminder_sends")
    op.drop_table("habit_logs")
    op.drop_table("participant_commitments")
    op.drop_table("commitment_templates")
