from __future__ import annotations

import unittest

from challenge_node.config.runtime import FinalizationMode
from challenge_node.entities.challenge import Participant, Performance
from challenge_node.entities.rewards import Star, Tier
from challenge_node.errors import NotFoundError
from challenge_node.services.rewards import RewardEngine


class InMemoryPerformanceRepository:
    def __init__(self, performances=()):
        self.performances = {p.id: p for p in performances}

    def get(self, performance_id):
        return self.performances.get(performance_id)


class InMemoryParticipantRepository:
    def __init__(self, participants=()):
        self.participants = {p.id: p for p in participants}

    def get(self, participant_id):
        return self.participants.get(participant_id)


class InMemoryStarRepository:
    def __init__(self, stars=()):
        self.stars = list(stars)

    def save(self, star):
        self.stars.append(star)

    def balance(self, user_id):
        return sum(s.total for s in self.stars if s.user_id == user_id)


class InMemoryTierRepository:
    def __init__(self, tiers=()):
        self.tiers = list(tiers)

    def find(self):
        return sorted(self.tiers, key=lambda t: t.min_stars)


class InMemoryRewardRepository:
    def __init__(self):
        self.rewards = {}

    def save(self, reward):
        self.rewards[reward.id] = reward

    def find(self, *, user_id=None, tier_id=None):
        results = list(self.rewards.values())
        if user_id is not None:
            results = [r for r in results if r.user_id == user_id]
        if tier_id is not None:
            results = [r for r in results if r.tier_id == tier_id]
        return results


TIERS = [
    Tier(id="T0", name="Débutant", min_stars=0),
    Tier(id="T10", name="Bronze", min_stars=10),
    Tier(id="T20", name="Argent", min_stars=20),
    Tier(id="T30", name="Or", min_stars=30),
]


def _engine(balance=0, mode=FinalizationMode.IDEMPOTENT, tiers=TIERS, performances=()):
    stars = InMemoryStarRepository([Star(id="S0", user_id="U1", total=balance)] if balance else [])
    rewards = InMemoryRewardRepository()
    engine = RewardEngine(
        performance_repository=InMemoryPerformanceRepository(performances),
        participant_repository=InMemoryParticipantRepository([
            Participant(id="PA1", user_id="U1", challenge_id="CH1"),
        ]),
        star_repository=stars,
        tier_repository=InMemoryTierRepository(tiers),
        reward_repository=rewards,
        star_value_divisor=10,
        finalization_mode=mode,
    )
    return engine, stars, rewards


class TestStarGrant(unittest.TestCase):
    def test_stars_are_value_over_divisor_floored(self):
        engine, _, _ = _engine()
        self.assertEqual(engine.stars_for_value(25), 2)
        self.assertEqual(engine.stars_for_value(9.99), 0)
        self.assertEqual(engine.stars_for_value(30), 3)
        self.assertEqual(engine.stars_for_value(-15), 0)

    def test_grant_appends_ledger_entry_for_owning_user(self):
        engine, stars, _ = _engine(performances=[
            Performance(id="P1", participant_id="PA1", value=42.0, criterion_id="C1"),
        ])

        granted = engine.grant_stars_for_performance("P1")

        self.assertEqual(granted, 4)
        self.assertEqual(len(stars.stars), 1)
        self.assertEqual(stars.stars[0].user_id, "U1")
        self.assertEqual(stars.stars[0].total, 4)
        self.assertIn("P1", stars.stars[0].reason)
        self.assertEqual(engine.star_balance("U1"), 4)

    def test_unknown_performance_grants_nothing(self):
        engine, stars, _ = _engine()
        with self.assertRaises(NotFoundError):
            engine.grant_stars_for_performance("missing")
        self.assertEqual(stars.stars, [])

    def test_divisor_must_be_positive(self):
        with self.assertRaises(ValueError):
            RewardEngine(None, None, None, None, None, star_value_divisor=0)


class TestTierUnlocks(unittest.TestCase):
    def test_balance_25_unlocks_first_three_tiers(self):
        engine, _, rewards = _engine(balance=25)
        created = engine.evaluate_tier_unlocks("U1")
        self.assertEqual([r.tier_id for r in created], ["T0", "T10", "T20"])
        self.assertEqual(len(rewards.find(user_id="U1")), 3)

    def test_idempotent_mode_skips_already_granted_tiers(self):
        engine, stars, rewards = _engine(balance=25)
        engine.evaluate_tier_unlocks("U1")
        self.assertEqual(engine.evaluate_tier_unlocks("U1"), [])

        stars.save(Star(id="S1", user_id="U1", total=5))
        created = engine.evaluate_tier_unlocks("U1")
        self.assertEqual([r.tier_id for r in created], ["T30"])
        self.assertEqual(len(rewards.find(user_id="U1")), 4)

    def test_append_mode_recreates_rewards(self):
        engine, _, rewards = _engine(balance=25, mode=FinalizationMode.APPEND)
        engine.evaluate_tier_unlocks("U1")
        engine.evaluate_tier_unlocks("U1")
        self.assertEqual(len(rewards.find(user_id="U1")), 6)


class TestTierProgress(unittest.TestCase):
    def test_between_tiers(self):
        engine, _, _ = _engine(balance=15)
        progress = engine.tier_progress("U1")
        self.assertEqual(progress.current.id, "T10")
        self.assertEqual(progress.next.id, "T20")
        self.assertEqual(progress.stars_to_next, 5)
        self.assertAlmostEqual(progress.progress_pct, 50.0)

    def test_top_tier_is_complete(self):
        engine, _, _ = _engine(balance=45)
        progress = engine.tier_progress("U1")
        self.assertEqual(progress.current.id, "T30")
        self.assertIsNone(progress.next)
        self.assertEqual(progress.stars_to_next, 0)
        self.assertEqual(progress.progress_pct, 100.0)

    def test_no_current_tier_uses_zero_baseline(self):
        engine, _, _ = _engine(balance=0, tiers=[Tier(id="T5", name="Bronze", min_stars=5)])
        progress = engine.tier_progress("U1")
        self.assertIsNone(progress.current)
        self.assertEqual(progress.stars_to_next, 5)
        self.assertEqual(progress.progress_pct, 0.0)


if __name__ == "__main__":
    unittest.main()
