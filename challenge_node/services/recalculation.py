"""Performance mutation → score recompute → leaderboard/stats broadcast → change event."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from challenge_node.entities.challenge import MutationKind
from challenge_node.schemas.live_messages import PerformanceChange
from challenge_node.services.live_updates import PERFORMANCE_CHANGE, LiveUpdateBroker
from challenge_node.services.score import ScoreEngine


class RecalculationCoordinator:
    """The one place where score persistence and live broadcast are coupled.

    Mutations of the same participant are serialized; different participants
    proceed concurrently.
    """

    def __init__(self, score_engine: ScoreEngine, broker: LiveUpdateBroker):
        self.score_engine = score_engine
        self.broker = broker
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self.logger = logging.getLogger(__name__)

    async def on_performance_mutated(self, participant_id: str, change_kind: MutationKind | str) -> float:
        kind = MutationKind(change_kind)

        async with self._participant_lock(participant_id):
            # 1. persist the new total; nothing is broadcast when this fails
            try:
                breakdown = self.score_engine.recompute(participant_id)
            except Exception as exc:
                self.logger.exception(
                    "score recompute failed for participant %s (%s), broadcast skipped: %s",
                    participant_id, kind, exc,
                )
                raise

            # 2. fresh leaderboard + stats from the persisted totals
            self.broker.publish_snapshots(breakdown.challenge_id)

            # 3. change notification, distinct from the state payloads
            self.broker.publish_event(
                breakdown.challenge_id,
                PERFORMANCE_CHANGE,
                PerformanceChange(
                    participantId=participant_id,
                    action=kind.value,
                    challengeId=breakdown.challenge_id,
                ),
            )

        self.logger.info(
            "handled %s mutation for participant %s (challenge %s, total=%s)",
            kind, participant_id, breakdown.challenge_id, breakdown.total,
        )
        return breakdown.total

    @asynccontextmanager
    async def _participant_lock(self, participant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(participant_id, asyncio.Lock())
        self._lock_users[participant_id] = self._lock_users.get(participant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[participant_id] -= 1
            if not self._lock_users[participant_id]:
                del self._lock_users[participant_id]
                del self._locks[participant_id]

    def active_locks(self) -> int:
        return len(self._locks)
