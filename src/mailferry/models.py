"""Core data types shared by sources, backends and the orchestrator."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Optional, Set

from pydantic import BaseModel, Field, field_validator


DEFAULT_LABEL = "inbox"
SPAM_LABEL = "spam"
DELETED_STATE = "deleted"


# ---------------------------------------------------------------------------
# Message unit
# ---------------------------------------------------------------------------


@dataclass
class MessageUnit:
    """One raw message pulled from a source, with its provenance."""

    raw: bytes
    labels: Set[str] = field(default_factory=set)
    state: Set[str] = field(default_factory=set)
    description: str = ""

    @classmethod
    def from_tuple(cls, item: tuple) -> "MessageUnit":
        raw, labels, state, description = item
        return cls(
            raw=normalize_raw(raw),
            labels=set(labels),
            state=set(state),
            description=description,
        )


def normalize_raw(raw: bytes | str) -> bytes:
    """Coerce message content to bytes with LF line endings."""
    if isinstance(raw, str):
        raw = raw.encode("utf-8", errors="surrogateescape")
    return raw.replace(b"\r\n", b"\n")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    """How a single message was handled."""

    INDEXED = "indexed"
    SEEN = "seen"
    BAD = "bad"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RouteResult:
    """Result of routing one message through a write path."""

    outcome: Outcome
    reason: Optional[str] = None

    @classmethod
    def indexed(cls) -> "RouteResult":
        return cls(Outcome.INDEXED)

    @classmethod
    def seen(cls) -> "RouteResult":
        return cls(Outcome.SEEN)

    @classmethod
    def bad(cls, reason: str) -> "RouteResult":
        return cls(Outcome.BAD, reason)

    @classmethod
    def skipped(cls, reason: str) -> "RouteResult":
        return cls(Outcome.SKIPPED, reason)


class RunPhase(str, Enum):
    """Lifecycle phases of one ingestion run."""

    LOADING = "loading"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"
    FINISHING = "finishing"


# ---------------------------------------------------------------------------
# Run policy
# ---------------------------------------------------------------------------


class RunPolicy(BaseModel):
    """Per-run limits and label policy."""

    num_messages: Optional[int] = Field(
        default=None, ge=0, description="Stop after this many messages are scanned"
    )
    num_skip: int = Field(
        default=0, ge=0, description="Skip this many messages before processing"
    )
    verbose: bool = Field(default=False, description="Trace every message")
    add_labels: FrozenSet[str] = Field(
        default_factory=frozenset, description="Labels added to every message"
    )
    remove_labels: FrozenSet[str] = Field(
        default_factory=frozenset, description="Labels never applied"
    )
    skip_spam: bool = Field(default=True, description="Ignore messages labelled spam")
    skip_deleted: bool = Field(
        default=True, description="Ignore messages flagged deleted"
    )

    @field_validator("add_labels", "remove_labels", mode="before")
    @classmethod
    def _split_labels(cls, value):  # type: ignore[override]
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(v.strip().lower() for v in value if v and v.strip())


# ---------------------------------------------------------------------------
# Run statistics
# ---------------------------------------------------------------------------


@dataclass
class RunStatistics:
    """Counters for one run, owned by the orchestrator loop."""

    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    scanned: int = 0
    indexed: int = 0
    seen: int = 0
    bad: int = 0
    skipped: int = 0
    started_at: float = field(default=0.0)
    last_report_at: float = field(default=0.0)

    def __post_init__(self) -> None:
        now = self.clock()
        self.started_at = now
        self.last_report_at = now

    def record(self, result: RouteResult) -> None:
        if result.outcome is Outcome.INDEXED:
            self.indexed += 1
        elif result.outcome is Outcome.SEEN:
            self.seen += 1
        elif result.outcome is Outcome.BAD:
            self.bad += 1
        else:
            self.skipped += 1

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started_at

    @property
    def rate(self) -> float:
        elapsed = self.elapsed
        if elapsed <= 0:
            return 0.0
        return self.scanned / elapsed

    def report_due(self, interval: float) -> bool:
        return self.clock() - self.last_report_at > interval

    def mark_reported(self) -> None:
        self.last_report_at = self.clock()

    def summary(self) -> str:
        return (
            f"scanned {self.scanned}, indexed {self.indexed}, "
            f"{self.bad} bad, {self.seen} seen, {self.skipped} skipped messages "
            f"in {self.elapsed:.1f}s = {self.rate:.1f} m/s"
        )

    def as_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "indexed": self.indexed,
            "seen": self.seen,
            "bad": self.bad,
            "skipped": self.skipped,
            "elapsed_seconds": round(self.elapsed, 3),
        }


def apply_label_policy(
    labels: Set[str], policy: RunPolicy, *, provides_labels: bool
) -> Set[str]:
    """Return the final label set for a message."""
    result = set(labels)
    if not provides_labels:
        result.add(DEFAULT_LABEL)
    result |= set(policy.add_labels)
    result -= set(policy.remove_labels)
    return result


__all__ = [
    "DEFAULT_LABEL",
    "DELETED_STATE",
    "SPAM_LABEL",
    "MessageUnit",
    "Outcome",
    "RouteResult",
    "RunPhase",
    "RunPolicy",
    "RunStatistics",
    "apply_label_policy",
    "normalize_raw",
]
