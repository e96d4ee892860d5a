from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from challenge_node.entities.challenge import utc_now
from challenge_node.services.ranking import LeaderboardEntry, LeaderboardStats


# ---------------------------------------------------------------------------
# Live channel payloads: field names are the client-facing contract
# ---------------------------------------------------------------------------


class LeaderboardUser(BaseModel):
    id: str
    nom: str
    email: str = ""
    role: str = "participant"


class LeaderboardRow(BaseModel):
    rang: int
    utilisateur: LeaderboardUser | None = None
    utilisateurId: str
    nom: str = ""
    scoreTotal: float
    participantId: str
    challengeId: str
    isValidated: bool = False

    model_config = ConfigDict(extra="allow")


class LeaderboardUpdate(BaseModel):
    challengeId: str
    classement: list[LeaderboardRow] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class ChallengeStatistics(BaseModel):
    totalParticipants: int = 0
    scoreMax: float = 0.0
    scoreMin: float = 0.0
    scoreMoyen: float = 0.0
    derniereMiseAJour: datetime


class StatsUpdate(BaseModel):
    challengeId: str
    statistiques: ChallengeStatistics
    timestamp: datetime = Field(default_factory=utc_now)


class PerformanceChange(BaseModel):
    participantId: str
    action: Literal["create", "update", "delete"]
    challengeId: str
    timestamp: datetime = Field(default_factory=utc_now)


class SubscriptionConfirmed(BaseModel):
    challengeId: str
    status: Literal["subscribed", "unsubscribed"]


class Pong(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)


class ClientMessage(BaseModel):
    """Inbound frame from a live connection: `{"event": ..., "data": ...}`."""

    event: str = Field(min_length=1)
    data: Any = None

    def challenge_id(self) -> str:
        # clients send either a bare id or {"challengeId": id}
        value = self.data.get("challengeId") if isinstance(self.data, dict) else self.data
        if value is None or value == "":
            raise ValueError(f"{self.event} requires a challengeId")
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValueError(f"{self.event}: challengeId must be a string or an integer, got {value!r}")
        return str(value)


# ---------------------------------------------------------------------------
# HTTP surface payloads
# ---------------------------------------------------------------------------


class PerformanceIn(BaseModel):
    id: str | None = None
    participantId: str = Field(min_length=1)
    criterionId: str | None = None
    value: float
    rank: int | None = None
    details: dict[str, Any] | str | None = None


class PerformanceUpdateIn(BaseModel):
    criterionId: str | None = None
    value: float | None = None
    rank: int | None = None
    details: dict[str, Any] | str | None = None


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def leaderboard_row(entry: LeaderboardEntry) -> LeaderboardRow:
    participant = entry.participant
    user = entry.user
    return LeaderboardRow(
        rang=entry.rank,
        utilisateur=LeaderboardUser(id=user.id, nom=user.name, email=user.email, role=user.role) if user else None,
        utilisateurId=participant.user_id,
        nom=user.name if user else "",
        scoreTotal=participant.total_score,
        participantId=participant.id,
        challengeId=participant.challenge_id,
        isValidated=participant.validation_status == "validated",
    )


def build_leaderboard_update(challenge_id: str, entries: list[LeaderboardEntry]) -> LeaderboardUpdate:
    return LeaderboardUpdate(
        challengeId=challenge_id,
        classement=[leaderboard_row(entry) for entry in entries],
    )


def build_statistics(stats: LeaderboardStats) -> ChallengeStatistics:
    return ChallengeStatistics(
        totalParticipants=stats.total_participants,
        scoreMax=stats.score_max,
        scoreMin=stats.score_min,
        scoreMoyen=stats.score_mean,
        derniereMiseAJour=stats.computed_at,
    )


def build_stats_update(challenge_id: str, stats: LeaderboardStats) -> StatsUpdate:
    return StatsUpdate(challengeId=challenge_id, statistiques=build_statistics(stats))
