from __future__ import annotations

import json
import unittest
from datetime import datetime, timedelta, timezone

from challenge_node.entities.challenge import (
    Challenge, ChallengeStatus, Criterion, CriterionKind, Performance, ensure_utc,
)


START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 31, tzinfo=timezone.utc)


class TestChallengeStatus(unittest.TestCase):
    def _challenge(self, status=ChallengeStatus.PENDING):
        return Challenge(id="CH1", name="Marathon", start_date=START, end_date=END, status=status)

    def test_pending_before_start(self):
        self.assertEqual(self._challenge().effective_status(START - timedelta(days=1)), ChallengeStatus.PENDING)

    def test_active_from_start_inclusive(self):
        challenge = self._challenge()
        self.assertEqual(challenge.effective_status(START), ChallengeStatus.ACTIVE)
        self.assertEqual(challenge.effective_status(END), ChallengeStatus.ACTIVE)

    def test_finished_strictly_after_end(self):
        self.assertEqual(
            self._challenge().effective_status(END + timedelta(seconds=1)), ChallengeStatus.FINISHED,
        )

    def test_stored_finished_is_never_reverted(self):
        challenge = self._challenge(ChallengeStatus.FINISHED)
        self.assertEqual(challenge.effective_status(START - timedelta(days=10)), ChallengeStatus.FINISHED)

    def test_naive_now_is_treated_as_utc(self):
        naive = datetime(2026, 3, 15)
        self.assertEqual(self._challenge().effective_status(naive), ChallengeStatus.ACTIVE)

    def test_start_after_end_is_rejected(self):
        with self.assertRaises(ValueError):
            Challenge(id="CH2", name="broken", start_date=END, end_date=START)

    def test_parse_stored_status_tags(self):
        self.assertEqual(ChallengeStatus.parse("en cours"), ChallengeStatus.ACTIVE)
        self.assertEqual(ChallengeStatus.parse("Terminé"), ChallengeStatus.FINISHED)
        self.assertEqual(ChallengeStatus.parse("active"), ChallengeStatus.ACTIVE)
        self.assertEqual(ChallengeStatus.parse("archived"), ChallengeStatus.PENDING)

    def test_ensure_utc_keeps_aware_datetimes(self):
        aware = datetime(2026, 1, 1, tzinfo=timezone(timedelta(hours=2)))
        self.assertIs(ensure_utc(aware), aware)


class TestCriterion(unittest.TestCase):
    def test_weight_must_be_positive(self):
        with self.assertRaises(ValueError):
            Criterion(id="C1", name="distance", weight=0, challenge_id="CH1")

    def test_kind_accepts_french_and_unknown_tags(self):
        self.assertEqual(CriterionKind.parse("qualitatif"), CriterionKind.QUALITATIVE)
        self.assertEqual(CriterionKind.parse(" Quantitatif "), CriterionKind.QUANTITATIVE)
        self.assertEqual(CriterionKind.parse("qualitative"), CriterionKind.QUALITATIVE)
        self.assertEqual(CriterionKind.parse("mixte"), CriterionKind.QUANTITATIVE)
        self.assertEqual(CriterionKind.parse(None), CriterionKind.QUANTITATIVE)


class TestCriterionRef(unittest.TestCase):
    def test_explicit_field_wins_over_details(self):
        perf = Performance(
            id="P1", participant_id="PA1", value=3.0, criterion_id="C1",
            details=json.dumps({"critereId": "C9"}),
        )
        ref = perf.criterion_ref()
        self.assertEqual(ref.criterion_id, "C1")
        self.assertEqual(ref.source, "field")
        self.assertTrue(ref.resolved)

    def test_falls_back_to_details_payload(self):
        for key in ("critereId", "criterionId", "criterion_id"):
            perf = Performance(id="P1", participant_id="PA1", value=3.0, details=json.dumps({key: "C2"}))
            ref = perf.criterion_ref()
            self.assertEqual(ref.criterion_id, "C2", key)
            self.assertEqual(ref.source, "details")

    def test_unparseable_details_is_unresolved(self):
        for details in (None, "", "not json", "[1, 2]", json.dumps({"other": 1})):
            ref = Performance(id="P1", participant_id="PA1", value=1.0, details=details).criterion_ref()
            self.assertFalse(ref.resolved, details)
            self.assertEqual(ref.source, "unresolved")


if __name__ == "__main__":
    unittest.main()
