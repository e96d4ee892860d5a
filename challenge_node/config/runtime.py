from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import os


class FinalizationMode(StrEnum):
    # upsert-or-skip: re-running winner/reward finalization never duplicates rows
    IDEMPOTENT = "idempotent"
    # legacy replay: every run appends fresh Winner/Reward rows
    APPEND = "append"


@dataclass(frozen=True)
class RuntimeSettings:
    star_value_divisor: float
    default_winner_count: int
    finalization_mode: FinalizationMode
    subscribe_snapshot_delay_seconds: float
    send_timeout_seconds: float
    outbox_limit: int
    mutation_channel: str
    live_worker_host: str
    live_worker_port: int
    log_level: str

    def __post_init__(self) -> None:
        if self.star_value_divisor <= 0:
            raise ValueError("STAR_VALUE_DIVISOR must be positive")
        if self.default_winner_count < 1:
            raise ValueError("DEFAULT_WINNER_COUNT must be at least 1")
        if self.outbox_limit < 1:
            raise ValueError("OUTBOX_LIMIT must be at least 1")

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            star_value_divisor=float(os.getenv("STAR_VALUE_DIVISOR", "10")),
            default_winner_count=int(os.getenv("DEFAULT_WINNER_COUNT", "3")),
            finalization_mode=FinalizationMode(os.getenv("FINALIZATION_MODE", "idempotent").strip().lower()),
            subscribe_snapshot_delay_seconds=float(os.getenv("SUBSCRIBE_SNAPSHOT_DELAY_SECONDS", "0.1")),
            send_timeout_seconds=float(os.getenv("SEND_TIMEOUT_SECONDS", "5")),
            outbox_limit=int(os.getenv("OUTBOX_LIMIT", "256")),
            mutation_channel=os.getenv("MUTATION_CHANNEL", "performance_mutated"),
            live_worker_host=os.getenv("LIVE_WORKER_HOST", "0.0.0.0"),
            live_worker_port=int(os.getenv("LIVE_WORKER_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
