"""Reward engine: performance values → star ledger → tier unlocks."""
from __future__ import annotations

import logging
import math
import uuid

from challenge_node.config.runtime import FinalizationMode
from challenge_node.db.repositories import (
    DBParticipantRepository, DBPerformanceRepository, DBRewardRepository,
    DBStarRepository, DBTierRepository,
)
from challenge_node.entities.challenge import utc_now
from challenge_node.entities.rewards import Reward, Star, Tier, TierProgress
from challenge_node.errors import NotFoundError


class RewardEngine:
    def __init__(
        self,
        performance_repository: DBPerformanceRepository,
        participant_repository: DBParticipantRepository,
        star_repository: DBStarRepository,
        tier_repository: DBTierRepository,
        reward_repository: DBRewardRepository,
        star_value_divisor: float = 10,
        finalization_mode: FinalizationMode = FinalizationMode.IDEMPOTENT,
    ):
        if star_value_divisor <= 0:
            raise ValueError("star_value_divisor must be positive")
        self.performance_repository = performance_repository
        self.participant_repository = participant_repository
        self.star_repository = star_repository
        self.tier_repository = tier_repository
        self.reward_repository = reward_repository
        self.star_value_divisor = star_value_divisor
        self.finalization_mode = FinalizationMode(finalization_mode)
        self.logger = logging.getLogger(__name__)

    def stars_for_value(self, value: float) -> int:
        return max(0, math.floor(value / self.star_value_divisor))

    def grant_stars_for_performance(self, performance_id: str) -> int:
        """Append one ledger entry for the performance's owning user and
        return the number of stars it carries (possibly 0)."""
        performance = self.performance_repository.get(performance_id)
        if performance is None:
            raise NotFoundError("performance", performance_id)
        participant = self.participant_repository.get(performance.participant_id)
        if participant is None:
            raise NotFoundError("participant", performance.participant_id)

        stars = self.stars_for_value(performance.value)
        self.star_repository.save(Star(
            id=f"STAR_{uuid.uuid4().hex}",
            user_id=participant.user_id,
            total=stars,
            reason=f"Performance {performance.id}",
            awarded_at=utc_now(),
        ))
        self.logger.info(
            "Granted %d stars to user %s for performance %s",
            stars, participant.user_id, performance.id,
        )
        return stars

    def star_balance(self, user_id: str) -> int:
        return self.star_repository.balance(user_id)

    def evaluate_tier_unlocks(self, user_id: str) -> list[Reward]:
        """Create a reward for every tier the user's balance reaches.

        In idempotent mode a (user, tier) pair already rewarded is skipped, so
        the returned list only holds rewards created by this call.
        """
        balance = self.star_balance(user_id)
        reached = [tier for tier in self.tier_repository.find() if tier.min_stars <= balance]

        already_granted: set[str] = set()
        if self.finalization_mode == FinalizationMode.IDEMPOTENT:
            already_granted = {reward.tier_id for reward in self.reward_repository.find(user_id=user_id)}

        created: list[Reward] = []
        for tier in reached:
            if tier.id in already_granted:
                self.logger.debug("user %s already holds reward for tier %s", user_id, tier.id)
                continue

            if self.finalization_mode == FinalizationMode.APPEND:
                reward_id = f"RWD_{uuid.uuid4().hex}"
            else:
                reward_id = f"RWD_{user_id}_{tier.id}"
            reward = Reward(
                id=reward_id,
                tier_id=tier.id,
                type="Badge",
                description=f"Palier {tier.name} atteint",
                user_id=user_id,
                awarded_at=utc_now(),
            )
            self.reward_repository.save(reward)
            created.append(reward)

        if created:
            self.logger.info(
                "User %s unlocked %d rewards (balance=%d): %s",
                user_id, len(created), balance, ", ".join(r.tier_id for r in created),
            )
        return created

    def tier_progress(self, user_id: str) -> TierProgress:
        balance = self.star_balance(user_id)
        tiers = self.tier_repository.find()

        current: Tier | None = None
        upcoming: Tier | None = None
        for tier in tiers:
            if tier.min_stars <= balance:
                if current is None or tier.min_stars >= current.min_stars:
                    current = tier
            elif upcoming is None or tier.min_stars < upcoming.min_stars:
                upcoming = tier

        if upcoming is None:
            return TierProgress(user_id, balance, current, None, 0, 100.0)

        floor_stars = current.min_stars if current is not None else 0
        span = upcoming.min_stars - floor_stars
        progress = (balance - floor_stars) / span * 100 if span > 0 else 100.0
        return TierProgress(
            user_id=user_id,
            balance=balance,
            current=current,
            next=upcoming,
            stars_to_next=upcoming.min_stars - balance,
            progress_pct=max(0.0, min(100.0, progress)),
        )
