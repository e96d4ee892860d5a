"""DB repository tests against an in-memory SQLite engine."""
from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from challenge_node.db.repositories import (
    DBChallengeRepository, DBCriterionRepository, DBParticipantRepository,
    DBPerformanceRepository, DBRewardRepository, DBStarRepository, DBTierRepository,
    DBUserRepository, DBWinnerRepository,
)
from challenge_node.db.tables import *  # noqa: F401,F403
from challenge_node.entities.challenge import (
    Challenge, ChallengeStatus, Criterion, CriterionKind, Participant, Performance, User,
)
from challenge_node.entities.rewards import Reward, Star, Tier, Winner


T0 = datetime(2026, 1, 1, 12, 0)


def make_session() -> Session:
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return Session(engine)


class RepositoryTestCase(unittest.TestCase):
    def setUp(self):
        self.session = make_session()

    def tearDown(self):
        self.session.close()


class TestChallengeRepositories(RepositoryTestCase):
    def test_user_upsert_and_fetch_by_ids(self):
        repo = DBUserRepository(self.session)
        repo.save(User(id="U1", name="Alice", created_at=T0))
        repo.save(User(id="U1", name="Alice B.", email="a@example.org", created_at=T0))
        repo.save(User(id="U2", name="Bob", created_at=T0))

        self.assertEqual(repo.get("U1").name, "Alice B.")
        self.assertEqual(repo.get("U1").email, "a@example.org")
        self.assertIsNone(repo.get("U9"))
        self.assertEqual(set(repo.fetch_by_ids(["U1", "U2", "U9", "U1"])), {"U1", "U2"})
        self.assertEqual(repo.fetch_by_ids([]), {})

    def test_challenge_round_trips_status(self):
        repo = DBChallengeRepository(self.session)
        repo.save(Challenge(
            id="CH1", name="Trail", start_date=T0, end_date=T0 + timedelta(days=7),
            status=ChallengeStatus.ACTIVE, created_at=T0,
        ))
        challenge = repo.get("CH1")
        self.assertEqual(challenge.status, ChallengeStatus.ACTIVE)
        self.assertIsNone(repo.get("CH9"))

    def test_criteria_filtered_by_challenge(self):
        repo = DBCriterionRepository(self.session)
        repo.save(Criterion(id="C1", name="distance", weight=2.0, challenge_id="CH1", created_at=T0))
        repo.save(Criterion(id="C2", name="time", weight=1.0, challenge_id="CH2", created_at=T0))
        repo.save(Criterion(id="C1", name="distance", weight=3.0, challenge_id="CH1", created_at=T0))

        criteria = repo.find(challenge_id="CH1")
        self.assertEqual([(c.id, c.weight) for c in criteria], [("C1", 3.0)])

    def test_criteria_with_french_kind_and_zero_weight_rows(self):
        self.session.add(CriterionRow(
            id="C1", name="distance", weight=2.0, challenge_id="CH1", kind="quantitatif", created_at=T0,
        ))
        self.session.add(CriterionRow(
            id="C2", name="style", weight=1.0, challenge_id="CH1", kind="qualitatif",
            created_at=T0 + timedelta(seconds=1),
        ))
        self.session.add(CriterionRow(
            id="C3", name="bonus", weight=0.0, challenge_id="CH1", created_at=T0 + timedelta(seconds=2),
        ))
        self.session.commit()

        with self.assertLogs("challenge_node.db.repositories", level="WARNING") as logs:
            criteria = DBCriterionRepository(self.session).find(challenge_id="CH1")

        self.assertEqual(
            [(c.id, c.kind) for c in criteria],
            [("C1", CriterionKind.QUANTITATIVE), ("C2", CriterionKind.QUALITATIVE)],
        )
        self.assertTrue(any("C3" in line for line in logs.output))

    def test_challenge_with_french_status(self):
        self.session.add(ChallengeRow(
            id="CH1", name="Trail", start_date=T0, end_date=T0 + timedelta(days=7), status="en cours",
        ))
        self.session.commit()
        self.assertEqual(DBChallengeRepository(self.session).get("CH1").status, ChallengeStatus.ACTIVE)

    def test_users_listed_by_sign_up(self):
        repo = DBUserRepository(self.session)
        repo.save(User(id="U2", name="Bob", created_at=T0 + timedelta(days=1)))
        repo.save(User(id="U1", name="Alice", role="admin", created_at=T0))

        users = repo.find()
        self.assertEqual([u.id for u in users], ["U1", "U2"])
        self.assertEqual(users[0].role, "admin")

    def test_participants_ordered_by_creation_and_score_update(self):
        repo = DBParticipantRepository(self.session)
        repo.save(Participant(id="PB", user_id="U2", challenge_id="CH1", created_at=T0 + timedelta(minutes=1)))
        repo.save(Participant(id="PA", user_id="U1", challenge_id="CH1", created_at=T0))
        repo.save(Participant(id="PC", user_id="U1", challenge_id="CH2", created_at=T0))

        self.assertEqual([p.id for p in repo.find(challenge_id="CH1")], ["PA", "PB"])
        self.assertEqual([p.id for p in repo.find(user_id="U1")], ["PA", "PC"])

        repo.update_total_score("PB", 42.5)
        self.assertEqual(repo.get("PB").total_score, 42.5)
        self.assertEqual(repo.get("PA").total_score, 0.0)

    def test_performance_save_find_delete(self):
        repo = DBPerformanceRepository(self.session)
        repo.save(Performance(id="P1", participant_id="PA", value=3.0, criterion_id="C1", created_at=T0))
        repo.save(Performance(
            id="P2", participant_id="PA", value=4.0, details='{"critereId": "C2"}',
            created_at=T0 + timedelta(seconds=1),
        ))

        performances = repo.find(participant_id="PA")
        self.assertEqual([p.id for p in performances], ["P1", "P2"])
        self.assertEqual(performances[1].criterion_ref().criterion_id, "C2")

        self.assertTrue(repo.delete("P1"))
        self.assertFalse(repo.delete("P1"))
        self.assertIsNone(repo.get("P1"))


class TestRewardRepositories(RepositoryTestCase):
    def test_star_ledger_balance(self):
        repo = DBStarRepository(self.session)
        self.assertEqual(repo.balance("U1"), 0)

        repo.save(Star(id="S1", user_id="U1", total=3, awarded_at=T0))
        repo.save(Star(id="S2", user_id="U1", total=4, awarded_at=T0 + timedelta(minutes=1)))
        repo.save(Star(id="S3", user_id="U2", total=10, awarded_at=T0))

        self.assertEqual(repo.balance("U1"), 7)
        self.assertEqual([s.id for s in repo.find(user_id="U1")], ["S1", "S2"])

    def test_star_totals_by_user(self):
        repo = DBStarRepository(self.session)
        self.assertEqual(repo.totals_by_user(), {})

        repo.save(Star(id="S1", user_id="U1", total=3, awarded_at=T0))
        repo.save(Star(id="S2", user_id="U1", total=4, awarded_at=T0 + timedelta(days=10)))
        repo.save(Star(id="S3", user_id="U2", total=10, awarded_at=T0))

        self.assertEqual(repo.totals_by_user(), {"U1": 7, "U2": 10})
        self.assertEqual(repo.totals_by_user(since=T0 + timedelta(days=1)), {"U1": 4})

    def test_tiers_sorted_by_threshold(self):
        repo = DBTierRepository(self.session)
        repo.save(Tier(id="T3", name="Or", min_stars=50))
        repo.save(Tier(id="T1", name="Débutant", min_stars=0))
        repo.save(Tier(id="T2", name="Bronze", min_stars=10))
        repo.save(Tier(id="T2", name="Bronze", min_stars=15))

        self.assertEqual([(t.id, t.min_stars) for t in repo.find()], [("T1", 0), ("T2", 15), ("T3", 50)])

    def test_rewards_filtered_by_user_and_tier(self):
        repo = DBRewardRepository(self.session)
        repo.save(Reward(id="R1", tier_id="T1", user_id="U1", awarded_at=T0))
        repo.save(Reward(id="R2", tier_id="T2", user_id="U1", awarded_at=T0))
        repo.save(Reward(id="R3", tier_id="T1", user_id="U2", awarded_at=T0))

        self.assertEqual({r.id for r in repo.find(user_id="U1")}, {"R1", "R2"})
        self.assertEqual([r.id for r in repo.find(user_id="U1", tier_id="T1")], ["R1"])

    def test_winner_replace_for_challenge(self):
        repo = DBWinnerRepository(self.session)
        repo.save(Winner(id="W_OTHER", user_id="U9", challenge_id="CH2", rank=1, created_at=T0))
        repo.replace_for_challenge("CH1", [
            Winner(id="WIN_CH1_1", user_id="U1", challenge_id="CH1", rank=1, created_at=T0),
            Winner(id="WIN_CH1_2", user_id="U2", challenge_id="CH1", rank=2, created_at=T0),
        ])
        repo.replace_for_challenge("CH1", [
            Winner(id="WIN_CH1_1", user_id="U2", challenge_id="CH1", rank=1, created_at=T0),
        ])

        winners = repo.find(challenge_id="CH1")
        self.assertEqual([(w.id, w.user_id) for w in winners], [("WIN_CH1_1", "U2")])
        self.assertEqual(len(repo.find(challenge_id="CH2")), 1)


if __name__ == "__main__":
    unittest.main()
