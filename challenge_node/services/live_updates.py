"""Live update broker: per-challenge topics → leaderboard/stats fan-out.

A connection is any object exposing ``async send(event, payload)``; it may
carry a ``connection_id`` attribute used in logs. Every connection gets its
own outbox drained by its own task, so a slow peer only ever delays itself.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections import OrderedDict
from typing import Any, Callable, Hashable, Protocol

from pydantic import BaseModel

from challenge_node.errors import ConnectionClosedError
from challenge_node.schemas.live_messages import (
    ClientMessage, Pong, SubscriptionConfirmed, build_leaderboard_update, build_stats_update,
)
from challenge_node.services.ranking import RankingEngine

LEADERBOARD_UPDATE = "leaderboard_update"
STATS_UPDATE = "stats_update"
PERFORMANCE_CHANGE = "performance_change"
SUBSCRIPTION_CONFIRMED = "subscription_confirmed"
PONG = "pong"
ERROR = "error"

# snapshot events: only the latest unsent one per challenge matters
COALESCED_EVENTS = frozenset({LEADERBOARD_UPDATE, STATS_UPDATE})


class LiveConnection(Protocol):
    async def send(self, event: str, payload: dict[str, Any]) -> None: ...


def describe(connection: Any) -> str:
    return str(getattr(connection, "connection_id", None) or f"conn-{id(connection):x}")


class SubscriptionRegistry:
    """challenge topic ↔ connection membership. Readers always get copies."""

    def __init__(self):
        self._topics: dict[str, set[Any]] = {}
        self._memberships: dict[Any, set[str]] = {}

    def add(self, connection: Any, challenge_id: str) -> bool:
        members = self._topics.setdefault(challenge_id, set())
        if connection in members:
            return False
        members.add(connection)
        self._memberships.setdefault(connection, set()).add(challenge_id)
        return True

    def remove(self, connection: Any, challenge_id: str) -> bool:
        members = self._topics.get(challenge_id)
        if not members or connection not in members:
            return False
        members.discard(connection)
        if not members:
            del self._topics[challenge_id]

        topics = self._memberships.get(connection)
        if topics is not None:
            topics.discard(challenge_id)
            if not topics:
                del self._memberships[connection]
        return True

    def remove_connection(self, connection: Any) -> set[str]:
        topics = self._memberships.pop(connection, set())
        for challenge_id in topics:
            members = self._topics.get(challenge_id)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self._topics[challenge_id]
        return topics

    def subscribers(self, challenge_id: str) -> list[Any]:
        return list(self._topics.get(challenge_id, ()))

    def topics_of(self, connection: Any) -> set[str]:
        return set(self._memberships.get(connection, ()))

    def stats(self) -> list[tuple[str, int]]:
        return sorted((challenge_id, len(members)) for challenge_id, members in self._topics.items())

    def clear(self) -> None:
        self._topics.clear()
        self._memberships.clear()


class ConnectionOutbox:
    """Pending messages of one connection plus the task that drains them."""

    def __init__(
        self,
        connection: Any,
        send_timeout_seconds: float,
        limit: int,
        on_closed: Callable[[Any], None],
    ):
        self.connection = connection
        self.send_timeout_seconds = send_timeout_seconds
        self.limit = limit
        self.on_closed = on_closed
        self.logger = logging.getLogger(__name__)

        self._pending: OrderedDict[Hashable, tuple[str, dict[str, Any]]] = OrderedDict()
        self._fifo_count = 0
        self._sequence = itertools.count()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task | None = None
        self.closed = False

    def enqueue(self, event: str, payload: dict[str, Any], challenge_id: str | None = None) -> None:
        if self.closed:
            return

        if event in COALESCED_EVENTS and challenge_id is not None:
            # replacing in place keeps the slot's position in the queue
            self._pending[(event, challenge_id)] = (event, payload)
        else:
            if self._fifo_count >= self.limit:
                self._drop_oldest_fifo()
            self._pending[("fifo", next(self._sequence))] = (event, payload)
            self._fifo_count += 1

        self._idle.clear()
        self._wakeup.set()
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._drain())

    def _drop_oldest_fifo(self) -> None:
        for key in self._pending:
            if key[0] == "fifo":
                event, _ = self._pending.pop(key)
                self._fifo_count -= 1
                self.logger.warning(
                    "outbox of %s is full (%d), dropped oldest %s",
                    describe(self.connection), self.limit, event,
                )
                return

    async def _drain(self) -> None:
        while not self.closed:
            await self._wakeup.wait()
            self._wakeup.clear()
            while self._pending and not self.closed:
                key, (event, payload) = self._pending.popitem(last=False)
                if key[0] == "fifo":
                    self._fifo_count -= 1
                try:
                    await asyncio.wait_for(
                        self.connection.send(event, payload), timeout=self.send_timeout_seconds,
                    )
                except asyncio.CancelledError:
                    raise
                except asyncio.TimeoutError:
                    self.logger.warning(
                        "send of %s to %s timed out after %ss",
                        event, describe(self.connection), self.send_timeout_seconds,
                    )
                except ConnectionClosedError:
                    self.logger.warning("%s closed while sending %s", describe(self.connection), event)
                    self.closed = True
                    self._pending.clear()
                    self._idle.set()
                    self.on_closed(self.connection)
                    return
                except Exception as exc:
                    self.logger.warning("delivery of %s to %s failed: %s", event, describe(self.connection), exc)
            if not self._pending:
                self._idle.set()
        self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def close(self) -> None:
        self.closed = True
        self._pending.clear()
        self._fifo_count = 0
        self._idle.set()
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()


class LiveUpdateBroker:
    def __init__(
        self,
        ranking_engine: RankingEngine,
        registry: SubscriptionRegistry | None = None,
        subscribe_snapshot_delay_seconds: float = 0.1,
        send_timeout_seconds: float = 5.0,
        outbox_limit: int = 256,
    ):
        self.ranking_engine = ranking_engine
        self.registry = registry or SubscriptionRegistry()
        self.subscribe_snapshot_delay_seconds = subscribe_snapshot_delay_seconds
        self.send_timeout_seconds = send_timeout_seconds
        self.outbox_limit = outbox_limit

        self._outboxes: dict[Any, ConnectionOutbox] = {}
        self._tasks: set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    # ── connection lifecycle ──

    def connect(self, connection: Any) -> None:
        if connection in self._outboxes:
            return
        self._outboxes[connection] = ConnectionOutbox(
            connection,
            send_timeout_seconds=self.send_timeout_seconds,
            limit=self.outbox_limit,
            on_closed=self.on_disconnect,
        )
        self.logger.info("live client connected: %s", describe(connection))

    def on_disconnect(self, connection: Any) -> None:
        topics = self.registry.remove_connection(connection)
        outbox = self._outboxes.pop(connection, None)
        if outbox is not None:
            outbox.close()
        if outbox is not None or topics:
            self.logger.info(
                "live client disconnected: %s (left %d challenges)", describe(connection), len(topics),
            )

    def subscribe(self, connection: Any, challenge_id: str) -> bool:
        """Join a challenge topic. Returns False when already subscribed."""
        self.connect(connection)
        added = self.registry.add(connection, challenge_id)
        if added:
            self.logger.info("%s subscribed to challenge %s", describe(connection), challenge_id)
            self._spawn(self._send_initial_snapshot(connection, challenge_id))
        self._send(
            connection, SUBSCRIPTION_CONFIRMED,
            SubscriptionConfirmed(challengeId=challenge_id, status="subscribed"),
        )
        return added

    def unsubscribe(self, connection: Any, challenge_id: str) -> bool:
        removed = self.registry.remove(connection, challenge_id)
        if removed:
            self.logger.info("%s unsubscribed from challenge %s", describe(connection), challenge_id)
        if connection in self._outboxes:
            self._send(
                connection, SUBSCRIPTION_CONFIRMED,
                SubscriptionConfirmed(challengeId=challenge_id, status="unsubscribed"),
            )
        return removed

    # ── publishing ──

    def publish_leaderboard(self, challenge_id: str) -> int:
        return self._publish(challenge_id, leaderboard=True, stats=False)

    def publish_stats(self, challenge_id: str) -> int:
        return self._publish(challenge_id, leaderboard=False, stats=True)

    def publish_snapshots(self, challenge_id: str) -> int:
        """Leaderboard and stats from a single ranking computation."""
        return self._publish(challenge_id, leaderboard=True, stats=True)

    def publish_event(self, challenge_id: str, event: str, payload: BaseModel | dict[str, Any]) -> int:
        subscribers = self.registry.subscribers(challenge_id)
        if not subscribers:
            self.logger.debug("no subscribers for challenge %s, %s not sent", challenge_id, event)
            return 0
        for connection in subscribers:
            self._send(connection, event, payload, challenge_id)
        self.logger.info("published %s for challenge %s to %d clients", event, challenge_id, len(subscribers))
        return len(subscribers)

    def _publish(self, challenge_id: str, *, leaderboard: bool, stats: bool) -> int:
        subscribers = self.registry.subscribers(challenge_id)
        if not subscribers:
            self.logger.debug("no subscribers for challenge %s, snapshot skipped", challenge_id)
            return 0

        messages = self._snapshot_messages(challenge_id, leaderboard=leaderboard, stats=stats)
        if messages is None:
            return 0

        for connection in subscribers:
            for event, payload in messages:
                self._send(connection, event, payload, challenge_id)
        self.logger.info(
            "published %s for challenge %s to %d clients",
            "+".join(event for event, _ in messages), challenge_id, len(subscribers),
        )
        return len(subscribers)

    def _snapshot_messages(
        self, challenge_id: str, *, leaderboard: bool, stats: bool,
    ) -> list[tuple[str, dict[str, Any]]] | None:
        try:
            entries = self.ranking_engine.compute_leaderboard(challenge_id)
            messages: list[tuple[str, dict[str, Any]]] = []
            if leaderboard:
                update = build_leaderboard_update(challenge_id, entries)
                messages.append((LEADERBOARD_UPDATE, update.model_dump(mode="json")))
            if stats:
                summary = self.ranking_engine.compute_statistics(entries)
                messages.append((STATS_UPDATE, build_stats_update(challenge_id, summary).model_dump(mode="json")))
            return messages
        except Exception as exc:
            self.logger.exception("snapshot computation failed for challenge %s: %s", challenge_id, exc)
            return None

    def send_to(self, connection: Any, event: str, payload: BaseModel | dict[str, Any]) -> None:
        """Queue one message for a single connection."""
        self._send(connection, event, payload)

    def _send(
        self,
        connection: Any,
        event: str,
        payload: BaseModel | dict[str, Any],
        challenge_id: str | None = None,
    ) -> None:
        outbox = self._outboxes.get(connection)
        if outbox is None:
            return
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        outbox.enqueue(event, payload, challenge_id)

    def _send_snapshots_to(self, connection: Any, challenge_id: str, *, leaderboard: bool, stats: bool) -> None:
        messages = self._snapshot_messages(challenge_id, leaderboard=leaderboard, stats=stats)
        for event, payload in messages or ():
            self._send(connection, event, payload, challenge_id)

    async def _send_initial_snapshot(self, connection: Any, challenge_id: str) -> None:
        await asyncio.sleep(self.subscribe_snapshot_delay_seconds)
        if connection not in self.registry.subscribers(challenge_id):
            return
        self._send_snapshots_to(connection, challenge_id, leaderboard=True, stats=True)

    def _spawn(self, coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── client requests ──

    def handle_message(self, connection: Any, message: ClientMessage | dict[str, Any]) -> None:
        """Dispatch one inbound client frame.

        Raises ``ValidationError``/``ValueError`` for malformed frames; the
        transport decides how to report those back.
        """
        if not isinstance(message, ClientMessage):
            message = ClientMessage.model_validate(message)

        event = message.event
        if event == "subscribe_challenge":
            self.subscribe(connection, message.challenge_id())
        elif event == "unsubscribe_challenge":
            self.unsubscribe(connection, message.challenge_id())
        elif event == "request_leaderboard":
            self.connect(connection)
            self._send_snapshots_to(connection, message.challenge_id(), leaderboard=True, stats=False)
        elif event == "request_stats":
            self.connect(connection)
            self._send_snapshots_to(connection, message.challenge_id(), leaderboard=False, stats=True)
        elif event == "ping":
            self.connect(connection)
            self._send(connection, PONG, Pong())
        else:
            self.logger.warning("unknown live event %r from %s", event, describe(connection))

    def connection_stats(self) -> dict[str, Any]:
        return {
            "connectedClients": len(self._outboxes),
            "challengeSubscriptions": [
                {"challengeId": challenge_id, "subscribedClients": count}
                for challenge_id, count in self.registry.stats()
            ],
        }

    # ── lifecycle ──

    async def flush(self) -> None:
        """Wait until scheduled snapshots ran and every outbox is drained."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        await asyncio.gather(*(outbox.wait_idle() for outbox in list(self._outboxes.values())))

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        for outbox in self._outboxes.values():
            outbox.close()
        self._outboxes.clear()
        self.registry.clear()
        self.logger.info("live update broker stopped")

