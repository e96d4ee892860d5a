from challenge_node.db.tables.challenges import (
    ChallengeRow, CriterionRow, ParticipantRow, PerformanceRow, UserRow,
)
from challenge_node.db.tables.rewards import RewardRow, StarRow, TierRow, WinnerRow

__all__ = [
    "UserRow", "ChallengeRow", "CriterionRow", "ParticipantRow", "PerformanceRow",
    "StarRow", "TierRow", "RewardRow", "WinnerRow",
]
