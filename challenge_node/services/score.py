"""Score engine: weighted performances → participant total score."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from challenge_node.db.repositories import (
    DBCriterionRepository, DBParticipantRepository, DBPerformanceRepository,
)
from challenge_node.errors import NotFoundError


@dataclass
class Contribution:
    performance_id: str
    criterion_id: str
    value: float
    weight: float

    @property
    def points(self) -> float:
        return self.value * self.weight


@dataclass
class ScoreBreakdown:
    participant_id: str
    challenge_id: str
    total: float = 0.0
    contributions: list[Contribution] = field(default_factory=list)
    missing_criteria: list[str] = field(default_factory=list)    # deduplicated, first-seen order
    unreferenced_performances: list[str] = field(default_factory=list)


class ScoreEngine:
    """Owns `Participant.total_score`: nothing else writes it."""

    def __init__(
        self,
        participant_repository: DBParticipantRepository,
        performance_repository: DBPerformanceRepository,
        criterion_repository: DBCriterionRepository,
    ):
        self.participant_repository = participant_repository
        self.performance_repository = performance_repository
        self.criterion_repository = criterion_repository
        self.logger = logging.getLogger(__name__)

    def compute_total_score(self, participant_id: str) -> float:
        return self.recompute(participant_id).total

    def recompute(self, participant_id: str) -> ScoreBreakdown:
        """Compute the breakdown and persist its total onto the participant."""
        breakdown = self.breakdown(participant_id)
        self.participant_repository.update_total_score(participant_id, breakdown.total)
        self.logger.info(
            "participant %s total score = %s (%d contributions, %d missing criteria)",
            participant_id, breakdown.total, len(breakdown.contributions),
            len(breakdown.missing_criteria),
        )
        return breakdown

    def breakdown(self, participant_id: str) -> ScoreBreakdown:
        """Read-only score computation. Missing criteria contribute zero."""
        participant = self.participant_repository.get(participant_id)
        if participant is None:
            raise NotFoundError("participant", participant_id)

        performances = self.performance_repository.find(participant_id=participant_id)
        criteria = self.criterion_repository.find(challenge_id=participant.challenge_id)
        weights = {c.id: c.weight for c in criteria}

        result = ScoreBreakdown(participant_id=participant_id, challenge_id=participant.challenge_id)
        total = 0.0
        for performance in performances:
            ref = performance.criterion_ref()
            if not ref.resolved:
                result.unreferenced_performances.append(performance.id)
                self.logger.debug("performance %s carries no criterion reference", performance.id)
                continue

            weight = weights.get(ref.criterion_id)
            if weight is None:
                if ref.criterion_id not in result.missing_criteria:
                    result.missing_criteria.append(ref.criterion_id)
                    self.logger.warning(
                        "criterion %s not found for performance %s (challenge %s)",
                        ref.criterion_id, performance.id, participant.challenge_id,
                    )
                continue

            contribution = Contribution(
                performance_id=performance.id,
                criterion_id=ref.criterion_id,
                value=performance.value,
                weight=weight,
            )
            total += contribution.points
            result.contributions.append(contribution)
            self.logger.debug(
                "performance %s: value=%s weight=%s contribution=%s",
                performance.id, performance.value, weight, contribution.points,
            )

        if result.missing_criteria:
            self.logger.warning(
                "%d missing criteria detected for participant %s",
                len(result.missing_criteria), participant_id,
            )

        result.total = total
        return result

    def recompute_challenge(self, challenge_id: str) -> dict[str, float]:
        """Recompute and persist the total of every participant in a challenge."""
        totals: dict[str, float] = {}
        for participant in self.participant_repository.find(challenge_id=challenge_id):
            totals[participant.id] = self.compute_total_score(participant.id)
        self.logger.info("Recomputed scores for %d participants of challenge %s", len(totals), challenge_id)
        return totals
