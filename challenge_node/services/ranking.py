"""Ranking engine: participant totals → ordered leaderboard, statistics and winners."""
from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

from challenge_node.config.runtime import FinalizationMode
from challenge_node.db.repositories import (
    DBChallengeRepository, DBParticipantRepository, DBStarRepository, DBUserRepository,
    DBWinnerRepository,
)
from challenge_node.entities.challenge import Participant, User, ensure_utc, utc_now
from challenge_node.entities.rewards import Winner
from challenge_node.errors import NotFoundError


@dataclass
class LeaderboardEntry:
    rank: int
    participant: Participant
    user: User | None

    @property
    def score(self) -> float:
        return self.participant.total_score


@dataclass
class LeaderboardStats:
    total_participants: int
    score_max: float
    score_min: float
    score_mean: float
    computed_at: datetime = field(default_factory=utc_now)


def ranking_key(participant: Participant) -> tuple:
    # score desc, then earlier creation first, then id for full determinism
    return (-participant.total_score, ensure_utc(participant.created_at), participant.id)


class StarWindow(StrEnum):
    GLOBAL = "global"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def period(self) -> str:
        return _WINDOW_PERIODS[self][0]

    def since(self, now: datetime | None = None) -> datetime | None:
        days = _WINDOW_PERIODS[self][1]
        if days is None:
            return None
        return ensure_utc(now or utc_now()) - timedelta(days=days)


_WINDOW_PERIODS: dict[StarWindow, tuple[str, int | None]] = {
    StarWindow.GLOBAL: ("all_time", None),
    StarWindow.WEEKLY: ("last_7_days", 7),
    StarWindow.MONTHLY: ("last_30_days", 30),
}

# roles kept out of the star rankings
UNRANKED_ROLES = frozenset({"admin"})


@dataclass
class StarStanding:
    """A user's place in the star-ledger ranking over one window."""
    rank: int
    user: User
    stars: int
    challenges_joined: int = 0
    challenges_won: int = 0

    @property
    def success_rate(self) -> float:
        if not self.challenges_joined:
            return 0.0
        return round(self.challenges_won * 100.0 / self.challenges_joined, 1)


class RankingEngine:
    def __init__(
        self,
        participant_repository: DBParticipantRepository,
        user_repository: DBUserRepository,
        winner_repository: DBWinnerRepository | None = None,
        challenge_repository: DBChallengeRepository | None = None,
        finalization_mode: FinalizationMode = FinalizationMode.IDEMPOTENT,
        star_repository: DBStarRepository | None = None,
    ):
        self.participant_repository = participant_repository
        self.user_repository = user_repository
        self.winner_repository = winner_repository
        self.challenge_repository = challenge_repository
        self.star_repository = star_repository
        self.finalization_mode = FinalizationMode(finalization_mode)
        self.logger = logging.getLogger(__name__)

    def compute_leaderboard(self, challenge_id: str) -> list[LeaderboardEntry]:
        """Rank every participant of a challenge. Ranks are 1-based, unique and
        never stored: they are derived from the persisted totals on each call."""
        participants = self.participant_repository.find(challenge_id=challenge_id)
        if not participants:
            return []

        users = self.user_repository.fetch_by_ids(p.user_id for p in participants)
        ordered = sorted(participants, key=ranking_key)
        return [
            LeaderboardEntry(rank=index, participant=participant, user=users.get(participant.user_id))
            for index, participant in enumerate(ordered, start=1)
        ]

    @staticmethod
    def compute_statistics(
        entries: list[LeaderboardEntry], now: datetime | None = None,
    ) -> LeaderboardStats:
        computed_at = now or utc_now()
        if not entries:
            return LeaderboardStats(0, 0.0, 0.0, 0.0, computed_at)

        scores = [entry.score for entry in entries]
        return LeaderboardStats(
            total_participants=len(scores),
            score_max=scores[0],
            score_min=scores[-1],
            score_mean=sum(scores) / len(scores),
            computed_at=computed_at,
        )

    def select_winners(self, challenge_id: str, count: int = 3) -> list[Winner]:
        if self.winner_repository is None:
            raise RuntimeError("select_winners requires a winner repository")
        if count < 1:
            raise ValueError(f"winner count must be at least 1, got {count}")
        if self.challenge_repository is not None and self.challenge_repository.get(challenge_id) is None:
            raise NotFoundError("challenge", challenge_id)

        podium = self.compute_leaderboard(challenge_id)[:count]
        if not podium:
            self.logger.warning("challenge %s has no ranked participants, stored winners left as is", challenge_id)
            return []
        now = utc_now()

        if self.finalization_mode == FinalizationMode.APPEND:
            winners = [
                Winner(
                    id=f"WIN_{uuid.uuid4().hex}",
                    user_id=entry.participant.user_id,
                    challenge_id=challenge_id,
                    rank=entry.rank,
                    created_at=now,
                )
                for entry in podium
            ]
            for winner in winners:
                self.winner_repository.save(winner)
        else:
            winners = [
                Winner(
                    id=f"WIN_{challenge_id}_{entry.rank}",
                    user_id=entry.participant.user_id,
                    challenge_id=challenge_id,
                    rank=entry.rank,
                    created_at=now,
                )
                for entry in podium
            ]
            self.winner_repository.replace_for_challenge(challenge_id, winners)

        self.logger.info(
            "Finalized %d winners for challenge %s (mode=%s)",
            len(winners), challenge_id, self.finalization_mode,
        )
        return winners

    # ── star-ledger rankings ──

    def star_standings(self, since: datetime | None = None) -> list[StarStanding]:
        """Rank every user outside UNRANKED_ROLES by stars earned since `since`
        (all time when None). Ties go to more challenges won in the window,
        then earlier sign-up."""
        if self.star_repository is None:
            raise RuntimeError("star rankings require a star repository")
        since = ensure_utc(since) if since is not None else None

        users = [user for user in self.user_repository.find() if user.role not in UNRANKED_ROLES]
        if not users:
            return []

        stars = self.star_repository.totals_by_user(since=since)
        joined: dict[str, set[str]] = defaultdict(set)
        for participant in self.participant_repository.find():
            if since is None or ensure_utc(participant.created_at) >= since:
                joined[participant.user_id].add(participant.challenge_id)
        won: dict[str, set[str]] = defaultdict(set)
        if self.winner_repository is not None:
            for winner in self.winner_repository.find():
                if since is None or ensure_utc(winner.created_at) >= since:
                    won[winner.user_id].add(winner.challenge_id)

        ordered = sorted(
            users,
            key=lambda u: (-stars.get(u.id, 0), -len(won.get(u.id, ())), ensure_utc(u.created_at), u.id),
        )
        return [
            StarStanding(
                rank=index,
                user=user,
                stars=stars.get(user.id, 0),
                challenges_joined=len(joined.get(user.id, ())),
                challenges_won=len(won.get(user.id, ())),
            )
            for index, user in enumerate(ordered, start=1)
        ]

    def star_leaderboard(self, since: datetime | None = None, limit: int = 50) -> list[StarStanding]:
        """Top `limit` standings. A windowed board only lists users who earned
        stars inside the window."""
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        standings = self.star_standings(since)
        if since is not None:
            standings = [standing for standing in standings if standing.stars > 0]
        return standings[:limit]

    def user_position(self, user_id: str, since: datetime | None = None) -> StarStanding:
        for standing in self.star_standings(since):
            if standing.user.id == user_id:
                return standing
        raise NotFoundError("user", user_id)
