from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from challenge_node.entities.challenge import utc_now


@dataclass
class Star:
    """One append-only star ledger line. A user's balance is the sum of `total`."""
    id: str
    user_id: str
    total: int
    reason: str = ""
    awarded_at: datetime = field(default_factory=utc_now)


@dataclass
class Tier:
    id: str
    name: str
    min_stars: int
    description: str = ""


@dataclass
class Reward:
    id: str
    tier_id: str
    type: str = "Badge"
    description: str = ""
    user_id: str | None = None
    awarded_at: datetime = field(default_factory=utc_now)


@dataclass
class Winner:
    id: str
    user_id: str
    challenge_id: str
    rank: int
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class TierProgress:
    """Where a user stands between their current tier and the next one."""
    user_id: str
    balance: int
    current: Tier | None
    next: Tier | None
    stars_to_next: int
    progress_pct: float
