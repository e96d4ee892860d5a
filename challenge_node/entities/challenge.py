from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal


class ChallengeStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    FINISHED = "finished"

    @classmethod
    def parse(cls, value: str | None) -> "ChallengeStatus":
        # unknown tags fall back to pending; effective_status() still follows the dates
        tag = (value or "").strip().lower()
        return _CHALLENGE_STATUS_TAGS.get(tag, cls.PENDING)


class CriterionKind(StrEnum):
    QUANTITATIVE = "quantitative"
    QUALITATIVE = "qualitative"

    @classmethod
    def parse(cls, value: str | None) -> "CriterionKind":
        """Map a stored tag onto a kind; unknown tags count as quantitative."""
        tag = (value or "").strip().lower()
        return _CRITERION_KIND_TAGS.get(tag, cls.QUANTITATIVE)


# French tags are what records created outside this node carry.
_CHALLENGE_STATUS_TAGS = {
    "pending": ChallengeStatus.PENDING,
    "en attente": ChallengeStatus.PENDING,
    "active": ChallengeStatus.ACTIVE,
    "en cours": ChallengeStatus.ACTIVE,
    "finished": ChallengeStatus.FINISHED,
    "terminé": ChallengeStatus.FINISHED,
    "termine": ChallengeStatus.FINISHED,
}

_CRITERION_KIND_TAGS = {
    "quantitative": CriterionKind.QUANTITATIVE,
    "quantitatif": CriterionKind.QUANTITATIVE,
    "qualitative": CriterionKind.QUALITATIVE,
    "qualitatif": CriterionKind.QUALITATIVE,
}


class MutationKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (assume UTC if naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class User:
    id: str
    name: str
    email: str = ""
    role: str = "participant"
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class Challenge:
    """A time-boxed challenge. The stored status lags behind the clock;
    readers should use `effective_status()`."""
    id: str
    name: str
    start_date: datetime
    end_date: datetime
    status: ChallengeStatus = ChallengeStatus.PENDING
    creator_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if ensure_utc(self.start_date) > ensure_utc(self.end_date):
            raise ValueError(
                f"challenge {self.id!r}: start_date {self.start_date} is after end_date {self.end_date}"
            )

    def effective_status(self, now: datetime | None = None) -> ChallengeStatus:
        now = ensure_utc(now or utc_now())
        if self.status == ChallengeStatus.FINISHED:
            return ChallengeStatus.FINISHED
        if now > ensure_utc(self.end_date):
            return ChallengeStatus.FINISHED
        if now >= ensure_utc(self.start_date):
            return ChallengeStatus.ACTIVE
        return ChallengeStatus(self.status)


@dataclass
class Criterion:
    id: str
    name: str
    weight: float
    challenge_id: str
    kind: CriterionKind = CriterionKind.QUANTITATIVE
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.weight > 0:
            raise ValueError(f"criterion {self.id!r}: weight must be positive, got {self.weight!r}")


@dataclass
class Participant:
    id: str
    user_id: str
    challenge_id: str
    total_score: float = 0.0                                     # cached projection, written by ScoreEngine only
    validation_status: str = "pending"
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class CriterionRef:
    """Outcome of resolving which criterion a performance counts against.

    `source` tells where the id came from: the structured `criterion_id`
    column, the legacy `details` JSON blob, or nowhere at all.
    """
    criterion_id: str | None
    source: Literal["field", "details", "unresolved"]

    @property
    def resolved(self) -> bool:
        return self.criterion_id is not None


# Keys the details blob has carried the criterion id under.
_DETAILS_CRITERION_KEYS = ("critereId", "criterionId", "criterion_id")


@dataclass
class Performance:
    id: str
    participant_id: str
    value: float
    criterion_id: str | None = None
    rank: int | None = None                                      # informational only
    details: str | None = None                                   # opaque payload, usually JSON
    created_at: datetime = field(default_factory=utc_now)

    def criterion_ref(self) -> CriterionRef:
        if self.criterion_id:
            return CriterionRef(self.criterion_id, "field")
        parsed = self._parse_details()
        for key in _DETAILS_CRITERION_KEYS:
            value = parsed.get(key)
            if value not in (None, ""):
                return CriterionRef(str(value), "details")
        return CriterionRef(None, "unresolved")

    def _parse_details(self) -> dict[str, Any]:
        if not self.details:
            return {}
        try:
            parsed = json.loads(self.details)
        except (TypeError, ValueError):
            return {}
        return parsed if isinstance(parsed, dict) else {}
