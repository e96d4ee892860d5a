"""Star ledger, tiers, rewards and winners."""
from __future__ import annotations

from datetime import datetime

from sqlmodel import Field, SQLModel

from challenge_node.db.tables.challenges import utc_now


class StarRow(SQLModel, table=True):
    __tablename__ = "stars"

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    total: int
    reason: str = ""
    awarded_at: datetime = Field(default_factory=utc_now, index=True)


class TierRow(SQLModel, table=True):
    __tablename__ = "tiers"

    id: str = Field(primary_key=True)
    name: str
    min_stars: int = Field(index=True)
    description: str = ""


class RewardRow(SQLModel, table=True):
    __tablename__ = "rewards"

    id: str = Field(primary_key=True)
    tier_id: str = Field(foreign_key="tiers.id", index=True)
    user_id: str | None = Field(default=None, foreign_key="users.id", index=True)
    type: str = "Badge"
    description: str = ""
    awarded_at: datetime = Field(default_factory=utc_now)


class WinnerRow(SQLModel, table=True):
    __tablename__ = "winners"

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    challenge_id: str = Field(foreign_key="challenges.id", index=True)
    rank: int
    created_at: datetime = Field(default_factory=utc_now)
