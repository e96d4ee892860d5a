from challenge_node.schemas.live_messages import (
    ChallengeStatistics,
    ClientMessage,
    LeaderboardRow,
    LeaderboardUpdate,
    LeaderboardUser,
    PerformanceChange,
    PerformanceIn,
    PerformanceUpdateIn,
    Pong,
    StatsUpdate,
    SubscriptionConfirmed,
    build_leaderboard_update,
    build_statistics,
    build_stats_update,
    leaderboard_row,
)

__all__ = [
    "ChallengeStatistics",
    "ClientMessage",
    "LeaderboardRow",
    "LeaderboardUpdate",
    "LeaderboardUser",
    "PerformanceChange",
    "PerformanceIn",
    "PerformanceUpdateIn",
    "Pong",
    "StatsUpdate",
    "SubscriptionConfirmed",
    "build_leaderboard_update",
    "build_statistics",
    "build_stats_update",
    "leaderboard_row",
]
