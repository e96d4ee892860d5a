from .pg_notify import listen, notify, notify_performance_mutated, parse_mutation_payload
from .repositories import (
    DBChallengeRepository, DBCriterionRepository, DBParticipantRepository,
    DBPerformanceRepository, DBRewardRepository, DBStarRepository, DBTierRepository,
    DBUserRepository, DBWinnerRepository,
)
from .session import engine, create_session, database_url
