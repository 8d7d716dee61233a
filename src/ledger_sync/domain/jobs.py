"""Sync job state model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import field_validator
from pydantic.dataclasses import dataclass

from ledger_sync.domain.records import ensure_utc
from ledger_sync.domain.types import JobStatus


@dataclass(frozen=True)
class JobState:
    """Snapshot of one ingestion run as stored by the tracker.

    A job may be read before any progress is reported: current_step and
    total_steps are then both zero.
    """

    job_id: str
    owner_id: str
    kind: str
    status: JobStatus
    current_step: int
    total_steps: int
    message: str
    created_at: datetime
    updated_at: datetime
    result: dict[str, Any] | None = None
    error: str | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def percent(self) -> float:
        """Completion percentage; completed jobs report 100."""
        if self.status == JobStatus.COMPLETED:
            return 100.0
        if self.total_steps <= 0:
            return 0.0
        return round(min(self.current_step, self.total_steps) / self.total_steps * 100, 1)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def to_dict(self) -> dict[str, Any]:
        """Polling payload."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "percent": self.percent,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "message": self.message,
            "result": self.result,
            "error": self.error,
        }
