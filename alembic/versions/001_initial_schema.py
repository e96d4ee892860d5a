"""initial schema: all tables

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Users & Challenges ──
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False, server_default=""),
        sa.Column("role", sa.String(), nullable=False, server_default="participant"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "challenges",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("creator_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_challenges_status", "challenges", ["status"])

    op.create_table(
        "criteria",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("challenge_id", sa.String(), sa.ForeignKey("challenges.id"), nullable=False),
        sa.Column("kind", sa.String(), nullable=False, server_default="quantitative"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_criteria_challenge_id", "criteria", ["challenge_id"])

    # ── Participation: participants → performances ──
    op.create_table(
        "participants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("challenge_id", sa.String(), sa.ForeignKey("challenges.id"), nullable=False),
        sa.Column("total_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("validation_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_participants_user_id", "participants", ["user_id"])
    op.create_index("ix_participants_challenge_id", "participants", ["challenge_id"])
    op.create_index("ix_participants_created_at", "participants", ["created_at"])

    op.create_table(
        "performances",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("participant_id", sa.String(), sa.ForeignKey("participants.id"), nullable=False),
        sa.Column("criterion_id", sa.String(), nullable=True),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("details", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_performances_participant_id", "performances", ["participant_id"])
    op.create_index("ix_performances_criterion_id", "performances", ["criterion_id"])

    # ── Gamification: stars, tiers, rewards, winners ──
    op.create_table(
        "stars",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False, server_default=""),
        sa.Column("awarded_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stars_user_id", "stars", ["user_id"])
    op.create_index("ix_stars_awarded_at", "stars", ["awarded_at"])

    op.create_table(
        "tiers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("min_stars", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=False, server_default=""),
    )
    op.create_index("ix_tiers_min_stars", "tiers", ["min_stars"])

    op.create_table(
        "rewards",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tier_id", sa.String(), sa.ForeignKey("tiers.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("type", sa.String(), nullable=False, server_default="Badge"),
        sa.Column("description", sa.String(), nullable=False, server_default=""),
        sa.Column("awarded_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_rewards_tier_id", "rewards", ["tier_id"])
    op.create_index("ix_rewards_user_id", "rewards", ["user_id"])

    op.create_table(
        "winners",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("challenge_id", sa.String(), sa.ForeignKey("challenges.id"), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_winners_user_id", "winners", ["user_id"])
    op.create_index("ix_winners_challenge_id", "winners", ["challenge_id"])


def downgrade() -> None:
    op.drop_table("winners")
    op.drop_table("rewards")
    op.drop_table("tiers")
    op.drop_table("stars")
    op.drop_table("performances")
    op.drop_table("participants")
    op.drop_table("criteria")
    op.drop_table("challenges")
    op.drop_table("users")
