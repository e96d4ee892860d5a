"""PostgreSQL LISTEN/NOTIFY helpers for cross-process mutation signaling.

Usage:
    # publish (from any process that writes performances)
    from challenge_node.db.pg_notify import notify_performance_mutated
    notify_performance_mutated("PART_1", "create")

    # subscribe (async, inside the live worker)
    from challenge_node.db.pg_notify import listen
    async for channel, payload in listen("performance_mutated"):
        handle(channel, payload)
"""
from __future__ import annotations

import asyncio
import json
import logging
import select as _select
from typing import Any, AsyncIterator

import psycopg2
from challenge_node.db.session import database_url
from challenge_node.entities.challenge import MutationKind

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "performance_mutated"


def notify(channel: str = DEFAULT_CHANNEL, payload: str = "", connection: Any = None) -> None:
    """Send a NOTIFY on the given channel with an optional payload string."""
    own_conn = connection is None
    if own_conn:
        connection = _raw_connection()
    try:
        connection.autocommit = True
        with connection.cursor() as cur:
            if payload:
                cur.execute("SELECT pg_notify(%s, %s)", (channel, payload))
            else:
                cur.execute(f"NOTIFY {channel}")
    finally:
        if own_conn:
            connection.close()


def notify_performance_mutated(
    participant_id: str, action: str, channel: str = DEFAULT_CHANNEL, connection: Any = None,
) -> None:
    payload = json.dumps({"participantId": participant_id, "action": action})
    notify(channel, payload=payload, connection=connection)


def parse_mutation_payload(payload: str) -> tuple[str, str]:
    """Decode a mutation NOTIFY payload into (participant_id, action).

    Raises ValueError when the payload is not a JSON object with a participantId
    or names an unknown action.
    """
    data = json.loads(payload)
    if not isinstance(data, dict) or not data.get("participantId"):
        raise ValueError(f"mutation payload without participantId: {payload!r}")
    action = MutationKind(str(data.get("action") or MutationKind.UPDATE))
    return str(data["participantId"]), str(action)


async def listen(*channels: str, timeout: float | None = None) -> AsyncIterator[tuple[str, str]]:
    """Async generator that yields (channel, payload) tuples as notifications arrive.

    Runs until cancelled. `timeout` bounds each poll cycle (seconds).
    """
    if not channels:
        channels = (DEFAULT_CHANNEL,)

    conn = _raw_connection()
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            for ch in channels:
                cur.execute(f"LISTEN {ch}")

        loop = asyncio.get_running_loop()
        while True:
            notified = await loop.run_in_executor(
                None, _poll_notify, conn, timeout if timeout is not None else 30.0,
            )
            if notified:
                while conn.notifies:
                    n = conn.notifies.pop(0)
                    yield (n.channel, n.payload or "")
    finally:
        conn.close()


def _poll_notify(conn: Any, timeout: float) -> bool:
    """Synchronous poll, runs in executor thread."""
    if _select.select([conn], [], [], timeout) == ([], [], []):
        return False  # timeout
    conn.poll()
    return bool(conn.notifies)


def _raw_connection():
    """Create a raw psycopg2 connection from the same DB URL."""
    url = database_url()
    dsn = url.replace("+psycopg2", "")
    return psycopg2.connect(dsn)
