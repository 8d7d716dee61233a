"""Per-unit results and aggregate counters for reconciliation runs.

Every unit of work in a run (one sub-window fetch, one CSV row, one
account in a multi-account sync) reports an Outcome instead of raising.
The orchestrator collects outcomes and folds them into SyncCounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class OutcomeKind(str, Enum):
    """Tag of an Outcome."""

    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result of one unit of work.

    Attributes:
        kind: OK, SKIPPED or FAILED
        value: Payload for OK outcomes
        reason: Why the unit was skipped or failed
        error: The exception for FAILED outcomes
        unit: Human-readable identity of the unit (for logs and messages)
    """

    kind: OutcomeKind
    value: T | None = None
    reason: str = ""
    error: Exception | None = None
    unit: str = ""

    @classmethod
    def ok(cls, value: T, unit: str = "") -> Outcome[T]:
        return cls(kind=OutcomeKind.OK, value=value, unit=unit)

    @classmethod
    def skipped(cls, reason: str, unit: str = "") -> Outcome[T]:
        return cls(kind=OutcomeKind.SKIPPED, reason=reason, unit=unit)

    @classmethod
    def failed(cls, error: Exception, unit: str = "") -> Outcome[T]:
        return cls(kind=OutcomeKind.FAILED, reason=str(error), error=error, unit=unit)

    @property
    def is_ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @property
    def is_skipped(self) -> bool:
        return self.kind == OutcomeKind.SKIPPED

    @property
    def is_failed(self) -> bool:
        return self.kind == OutcomeKind.FAILED

    def describe(self) -> str:
        """One-line description for job messages."""
        label = self.unit or "unit"
        if self.is_ok:
            return f"{label}: ok"
        return f"{label}: {self.kind.value} ({self.reason})"


@dataclass
class SyncCounts:
    """Mutable counters accumulated over a run.

    unchanged counts re-observed records whose stored fields already
    matched; failed counts units that raised and were logged.
    """

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: SyncCounts) -> None:
        """Add another counter set into this one."""
        self.inserted += other.inserted
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(other.errors)

    def record(self, outcome: Outcome[Any]) -> None:
        """Account for a non-OK outcome."""
        if outcome.is_skipped:
            self.skipped += 1
        elif outcome.is_failed:
            self.failed += 1
            self.errors.append(outcome.describe())

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SyncCounts:
        """Rebuild counters from a stored job result."""
        data = data or {}
        return cls(
            inserted=int(data.get("inserted", 0)),
            updated=int(data.get("updated", 0)),
            unchanged=int(data.get("unchanged", 0)),
            skipped=int(data.get("skipped", 0)),
            failed=int(data.get("failed", 0)),
            errors=list(data.get("errors", [])),
        )

    @property
    def processed(self) -> int:
        return self.inserted + self.updated + self.unchanged

    def to_dict(self) -> dict[str, Any]:
        """Serializable form stored as a job result."""
        result: dict[str, Any] = {
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed": self.failed,
        }
        if self.errors:
            result["errors"] = list(self.errors)
        return result
