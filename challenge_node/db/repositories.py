from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, update
from sqlmodel import Session, select

from challenge_node.entities.challenge import (
    Challenge, ChallengeStatus, Criterion, CriterionKind, Participant, Performance, User,
)
from challenge_node.entities.rewards import Reward, Star, Tier, Winner
from challenge_node.db.tables import (
    ChallengeRow,
    CriterionRow,
    ParticipantRow,
    PerformanceRow,
    RewardRow,
    StarRow,
    TierRow,
    UserRow,
    WinnerRow,
)

logger = logging.getLogger(__name__)


class _SessionRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()


class DBUserRepository(_SessionRepository):
    def get(self, user_id: str) -> User | None:
        row = self._session.get(UserRow, user_id)
        return self._row_to_domain(row) if row else None

    def find(self) -> list[User]:
        rows = self._session.exec(select(UserRow).order_by(UserRow.created_at.asc(), UserRow.id.asc())).all()
        return [self._row_to_domain(row) for row in rows]

    def fetch_by_ids(self, ids: Iterable[str]) -> dict[str, User]:
        ids = list(set(ids))
        if not ids:
            return {}
        rows = self._session.exec(select(UserRow).where(UserRow.id.in_(ids))).all()
        return {row.id: self._row_to_domain(row) for row in rows}

    def save(self, user: User) -> None:
        row = UserRow(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            created_at=user.created_at,
        )
        existing = self._session.get(UserRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.name = row.name
            existing.email = row.email
            existing.role = row.role
            existing.created_at = row.created_at
        self._session.commit()

    @staticmethod
    def _row_to_domain(row: UserRow) -> User:
        return User(id=row.id, name=row.name, email=row.email, role=row.role, created_at=row.created_at)


class DBChallengeRepository(_SessionRepository):
    def get(self, challenge_id: str) -> Challenge | None:
        row = self._session.get(ChallengeRow, challenge_id)
        if row is None:
            return None
        return Challenge(
            id=row.id, name=row.name, start_date=row.start_date, end_date=row.end_date,
            status=ChallengeStatus.parse(row.status), creator_id=row.creator_id,
            created_at=row.created_at,
        )

    def save(self, challenge: Challenge) -> None:
        row = ChallengeRow(
            id=challenge.id,
            name=challenge.name,
            start_date=challenge.start_date,
            end_date=challenge.end_date,
            status=str(challenge.status),
            creator_id=challenge.creator_id,
            created_at=challenge.created_at,
        )
        existing = self._session.get(ChallengeRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.name = row.name
            existing.start_date = row.start_date
            existing.end_date = row.end_date
            existing.status = row.status
            existing.creator_id = row.creator_id
            existing.created_at = row.created_at
        self._session.commit()


class DBCriterionRepository(_SessionRepository):
    def find(self, *, challenge_id: str | None = None) -> list[Criterion]:
        """Criteria usable for scoring. Rows with a non-positive weight are
        left out, so performances pointing at them count as unresolved."""
        stmt = select(CriterionRow).order_by(CriterionRow.created_at.asc())
        if challenge_id is not None:
            stmt = stmt.where(CriterionRow.challenge_id == challenge_id)
        rows = self._session.exec(stmt).all()

        criteria: list[Criterion] = []
        for r in rows:
            if r.weight is None or not r.weight > 0:
                logger.warning("ignoring criterion %s with non-positive weight %r", r.id, r.weight)
                continue
            criteria.append(Criterion(
                id=r.id, name=r.name, weight=r.weight, challenge_id=r.challenge_id,
                kind=CriterionKind.parse(r.kind), created_at=r.created_at,
            ))
        return criteria

    def save(self, criterion: Criterion) -> None:
        row = CriterionRow(
            id=criterion.id,
            name=criterion.name,
            weight=criterion.weight,
            challenge_id=criterion.challenge_id,
            kind=str(criterion.kind),
            created_at=criterion.created_at,
        )
        existing = self._session.get(CriterionRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.name = row.name
            existing.weight = row.weight
            existing.challenge_id = row.challenge_id
            existing.kind = row.kind
            existing.created_at = row.created_at
        self._session.commit()


class DBParticipantRepository(_SessionRepository):
    def get(self, participant_id: str) -> Participant | None:
        row = self._session.get(ParticipantRow, participant_id)
        return self._row_to_domain(row) if row else None

    def find(
        self, *, challenge_id: str | None = None, user_id: str | None = None,
    ) -> list[Participant]:
        # creation order is the ranking tie-break, keep it stable
        stmt = select(ParticipantRow).order_by(ParticipantRow.created_at.asc(), ParticipantRow.id.asc())
        if challenge_id is not None:
            stmt = stmt.where(ParticipantRow.challenge_id == challenge_id)
        if user_id is not None:
            stmt = stmt.where(ParticipantRow.user_id == user_id)
        rows = self._session.exec(stmt).all()
        return [self._row_to_domain(row) for row in rows]

    def save(self, participant: Participant) -> None:
        row = ParticipantRow(
            id=participant.id,
            user_id=participant.user_id,
            challenge_id=participant.challenge_id,
            total_score=participant.total_score,
            validation_status=participant.validation_status,
            created_at=participant.created_at,
        )
        existing = self._session.get(ParticipantRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.user_id = row.user_id
            existing.challenge_id = row.challenge_id
            existing.total_score = row.total_score
            existing.validation_status = row.validation_status
            existing.created_at = row.created_at
        self._session.commit()

    def update_total_score(self, participant_id: str, total_score: float) -> None:
        self._session.exec(
            update(ParticipantRow)
            .where(ParticipantRow.id == participant_id)
            .values(total_score=total_score)
        )
        self._session.commit()

    @staticmethod
    def _row_to_domain(row: ParticipantRow) -> Participant:
        return Participant(
            id=row.id,
            user_id=row.user_id,
            challenge_id=row.challenge_id,
            total_score=float(row.total_score or 0.0),
            validation_status=row.validation_status,
            created_at=row.created_at,
        )


class DBPerformanceRepository(_SessionRepository):
    def get(self, performance_id: str) -> Performance | None:
        row = self._session.get(PerformanceRow, performance_id)
        return self._row_to_domain(row) if row else None

    def find(self, *, participant_id: str | None = None) -> list[Performance]:
        stmt = select(PerformanceRow).order_by(PerformanceRow.created_at.asc())
        if participant_id is not None:
            stmt = stmt.where(PerformanceRow.participant_id == participant_id)
        rows = self._session.exec(stmt).all()
        return [self._row_to_domain(row) for row in rows]

    def save(self, performance: Performance) -> None:
        row = PerformanceRow(
            id=performance.id,
            participant_id=performance.participant_id,
            criterion_id=performance.criterion_id,
            value=performance.value,
            rank=performance.rank,
            details=performance.details,
            created_at=performance.created_at,
        )
        existing = self._session.get(PerformanceRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.participant_id = row.participant_id
            existing.criterion_id = row.criterion_id
            existing.value = row.value
            existing.rank = row.rank
            existing.details = row.details
            existing.created_at = row.created_at
        self._session.commit()

    def delete(self, performance_id: str) -> bool:
        existing = self._session.get(PerformanceRow, performance_id)
        if existing is None:
            return False
        self._session.delete(existing)
        self._session.commit()
        return True

    @staticmethod
    def _row_to_domain(row: PerformanceRow) -> Performance:
        return Performance(
            id=row.id,
            participant_id=row.participant_id,
            value=float(row.value),
            criterion_id=row.criterion_id,
            rank=row.rank,
            details=row.details,
            created_at=row.created_at,
        )


class DBStarRepository(_SessionRepository):
    def save(self, star: Star) -> None:
        # append-only ledger
        self._session.add(StarRow(
            id=star.id,
            user_id=star.user_id,
            total=star.total,
            reason=star.reason,
            awarded_at=star.awarded_at,
        ))
        self._session.commit()

    def find(self, *, user_id: str | None = None) -> list[Star]:
        stmt = select(StarRow).order_by(StarRow.awarded_at.asc())
        if user_id is not None:
            stmt = stmt.where(StarRow.user_id == user_id)
        rows = self._session.exec(stmt).all()
        return [Star(
            id=r.id, user_id=r.user_id, total=r.total, reason=r.reason, awarded_at=r.awarded_at,
        ) for r in rows]

    def balance(self, user_id: str) -> int:
        total = self._session.exec(
            select(func.coalesce(func.sum(StarRow.total), 0)).where(StarRow.user_id == user_id)
        ).one()
        return int(total or 0)

    def totals_by_user(self, since: datetime | None = None) -> dict[str, int]:
        """Star sum per user, optionally only over entries awarded at or after `since`."""
        stmt = select(StarRow.user_id, func.sum(StarRow.total)).group_by(StarRow.user_id)
        if since is not None:
            stmt = stmt.where(StarRow.awarded_at >= since)
        return {user_id: int(total or 0) for user_id, total in self._session.exec(stmt).all()}


class DBTierRepository(_SessionRepository):
    def find(self) -> list[Tier]:
        rows = self._session.exec(
            select(TierRow).order_by(TierRow.min_stars.asc(), TierRow.id.asc())
        ).all()
        return [Tier(
            id=r.id, name=r.name, min_stars=r.min_stars, description=r.description,
        ) for r in rows]

    def save(self, tier: Tier) -> None:
        row = TierRow(
            id=tier.id,
            name=tier.name,
            min_stars=tier.min_stars,
            description=tier.description,
        )
        existing = self._session.get(TierRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.name = row.name
            existing.min_stars = row.min_stars
            existing.description = row.description
        self._session.commit()


class DBRewardRepository(_SessionRepository):
    def find(self, *, user_id: str | None = None, tier_id: str | None = None) -> list[Reward]:
        stmt = select(RewardRow).order_by(RewardRow.awarded_at.asc())
        if user_id is not None:
            stmt = stmt.where(RewardRow.user_id == user_id)
        if tier_id is not None:
            stmt = stmt.where(RewardRow.tier_id == tier_id)
        rows = self._session.exec(stmt).all()
        return [Reward(
            id=r.id, tier_id=r.tier_id, type=r.type, description=r.description,
            user_id=r.user_id, awarded_at=r.awarded_at,
        ) for r in rows]

    def save(self, reward: Reward) -> None:
        row = RewardRow(
            id=reward.id,
            tier_id=reward.tier_id,
            user_id=reward.user_id,
            type=reward.type,
            description=reward.description,
            awarded_at=reward.awarded_at,
        )
        existing = self._session.get(RewardRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.tier_id = row.tier_id
            existing.user_id = row.user_id
            existing.type = row.type
            existing.description = row.description
            existing.awarded_at = row.awarded_at
        self._session.commit()


class DBWinnerRepository(_SessionRepository):
    def find(self, *, challenge_id: str | None = None) -> list[Winner]:
        stmt = select(WinnerRow).order_by(WinnerRow.created_at.asc(), WinnerRow.rank.asc())
        if challenge_id is not None:
            stmt = stmt.where(WinnerRow.challenge_id == challenge_id)
        rows = self._session.exec(stmt).all()
        return [Winner(
            id=r.id, user_id=r.user_id, challenge_id=r.challenge_id, rank=r.rank,
            created_at=r.created_at,
        ) for r in rows]

    def save(self, winner: Winner) -> None:
        row = WinnerRow(
            id=winner.id,
            user_id=winner.user_id,
            challenge_id=winner.challenge_id,
            rank=winner.rank,
            created_at=winner.created_at,
        )
        existing = self._session.get(WinnerRow, row.id)
        if existing is None:
            self._session.add(row)
        else:
            existing.user_id = row.user_id
            existing.challenge_id = row.challenge_id
            existing.rank = row.rank
            existing.created_at = row.created_at
        self._session.commit()

    def replace_for_challenge(self, challenge_id: str, winners: Iterable[Winner]) -> None:
        """Swap the stored podium of a challenge for `winners` in one commit."""
        # ORM deletes so re-used ids leave the identity map before the inserts
        stale = self._session.exec(select(WinnerRow).where(WinnerRow.challenge_id == challenge_id)).all()
        for row in stale:
            self._session.delete(row)
        self._session.flush()
        for winner in winners:
            self._session.add(WinnerRow(
                id=winner.id,
                user_id=winner.user_id,
                challenge_id=winner.challenge_id,
                rank=winner.rank,
                created_at=winner.created_at,
            ))
        self._session.commit()
