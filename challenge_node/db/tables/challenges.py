"""User, challenge, criterion, participant and performance tables."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserRow(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    name: str
    email: str = ""
    role: str = Field(default="participant", index=True)
    created_at: datetime = Field(default_factory=utc_now)


class ChallengeRow(SQLModel, table=True):
    __tablename__ = "challenges"

    id: str = Field(primary_key=True)
    name: str
    start_date: datetime
    end_date: datetime
    status: str = Field(default="pending", index=True)
    creator_id: str | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utc_now)


class CriterionRow(SQLModel, table=True):
    __tablename__ = "criteria"

    id: str = Field(primary_key=True)
    name: str
    weight: float
    challenge_id: str = Field(foreign_key="challenges.id", index=True)
    kind: str = "quantitative"
    created_at: datetime = Field(default_factory=utc_now)


class ParticipantRow(SQLModel, table=True):
    __tablename__ = "participants"

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    challenge_id: str = Field(foreign_key="challenges.id", index=True)
    total_score: float = 0.0
    validation_status: str = "pending"
    created_at: datetime = Field(default_factory=utc_now, index=True)


class PerformanceRow(SQLModel, table=True):
    __tablename__ = "performances"

    id: str = Field(primary_key=True)
    participant_id: str = Field(foreign_key="participants.id", index=True)
    criterion_id: str | None = Field(default=None, index=True)
    value: float
    rank: int | None = None
    details: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
