"""Durable job progress tracker.

Job state lives in the database, keyed by job id, so progress survives
restarts and is shared between processes. Every write is a
read-modify-write of one row; progress writes never touch a job that
has already reached a terminal state.

State transitions:
- running -> running (progress)
- running -> completed | error (terminal)
- error -> running (explicit resume of an import job only)
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from ledger_sync.domain.errors import (
    JobAccessDenied,
    JobCancelled,
    JobNotFoundError,
    JobStateError,
)
from ledger_sync.domain.jobs import JobState
from ledger_sync.domain.types import JobStatus

if TYPE_CHECKING:
    from ledger_sync.db.repository import LedgerRepository

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"


def new_job_id(owner_id: str, now: datetime | None = None) -> str:
    """Build a job id unique per owner and creation time."""
    now = now or datetime.now(UTC)
    return f"{owner_id}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}"


class JobTracker:
    """Creates, updates and polls sync jobs."""

    def __init__(
        self,
        repository: LedgerRepository,
        retention: timedelta = timedelta(minutes=60),
        stuck_after: timedelta = timedelta(minutes=30),
    ) -> None:
        """Initialize tracker.

        Args:
            repository: Storage for job records
            retention: Age after which terminal jobs are purged
            stuck_after: Silence after which a running job is swept to error
        """
        self._repository = repository
        self._retention = retention
        self._stuck_after = stuck_after

    def create(self, owner_id: str, kind: str, message: str = "Starting") -> JobState:
        """Create a running job with zero progress.

        Args:
            owner_id: User who started the job
            kind: Job kind, e.g. "trade_sync" or "trade_import"
            message: Initial status message

        Returns:
            The new job state
        """
        state = self._repository.create_job(new_job_id(owner_id), owner_id, kind, message)
        logger.info(f"Job {state.job_id} ({kind}) created for owner {owner_id}")
        return state

    def get_progress(self, job_id: str) -> JobState:
        """Return the current job state.

        Raises:
            JobNotFoundError: If the job does not exist or was purged
        """
        state = self._repository.get_job(job_id)
        if state is None:
            raise JobNotFoundError(job_id)
        return state

    def authorize(self, job_id: str, owner_id: str) -> JobState:
        """Return the job state if owner_id owns it.

        Raises:
            JobNotFoundError: If the job does not exist
            JobAccessDenied: If another user owns the job
        """
        state = self.get_progress(job_id)
        if state.owner_id != owner_id:
            logger.warning(f"Owner {owner_id} denied access to job {job_id}")
            raise JobAccessDenied(job_id)
        return state

    def set_progress(
        self,
        job_id: str,
        current_step: int | None = None,
        total_steps: int | None = None,
        message: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """Record progress on a running job.

        Returns:
            False if the job is terminal or gone; the caller should stop
        """
        fields: dict[str, Any] = {}
        if current_step is not None:
            fields["current_step"] = current_step
        if total_steps is not None:
            fields["total_steps"] = total_steps
        if message is not None:
            fields["message"] = message
        if result is not None:
            fields["result"] = result

        _, applied = self._repository.update_job(job_id, fields, only_if_running=True)
        if not applied:
            logger.debug(f"Ignoring progress for inactive job {job_id}")
        return applied

    def ensure_active(self, job_id: str) -> None:
        """Raise if the job was moved out of running.

        Raises:
            JobCancelled: If the job is terminal or no longer exists
        """
        state = self._repository.get_job(job_id)
        if state is None or state.is_terminal:
            raise JobCancelled(job_id)

    def complete(
        self,
        job_id: str,
        result: dict[str, Any],
        message: str = "Completed",
    ) -> bool:
        """Move a running job to completed.

        Returns:
            False if the job had already reached a terminal state
        """
        state, applied = self._repository.update_job(
            job_id,
            {"status": JobStatus.COMPLETED, "message": message, "result": result},
            only_if_running=True,
        )
        if applied and state is not None:
            # Completed jobs report full progress
            self._repository.update_job(job_id, {"current_step": state.total_steps})
            logger.info(f"Job {job_id} completed: {message}")
        return applied

    def fail(
        self,
        job_id: str,
        error: str,
        message: str = "Failed",
        result: dict[str, Any] | None = None,
    ) -> bool:
        """Move a running job to error."""
        fields: dict[str, Any] = {"status": JobStatus.ERROR, "message": message, "error": error}
        if result is not None:
            fields["result"] = result
        _, applied = self._repository.update_job(job_id, fields, only_if_running=True)
        if applied:
            logger.error(f"Job {job_id} failed: {error}")
        return applied

    def cancel(self, job_id: str, owner_id: str) -> JobState:
        """Force a job into the error state.

        The background task notices on its next progress write or
        persistence batch and stops. Cancelling a terminal job is a no-op.

        Raises:
            JobNotFoundError: If the job does not exist
            JobAccessDenied: If another user owns the job
        """
        self.authorize(job_id, owner_id)
        state, applied = self._repository.update_job(
            job_id,
            {"status": JobStatus.ERROR, "message": CANCELLED_MESSAGE, "error": CANCELLED_MESSAGE},
            only_if_running=True,
        )
        if applied:
            logger.info(f"Job {job_id} cancelled by {owner_id}")
        if state is None:
            raise JobNotFoundError(job_id)
        return state

    def resume(self, job_id: str, owner_id: str) -> JobState:
        """Reopen an interrupted or errored job for the same owner.

        Returns:
            The job state with status running; current_step is the offset
            to resume from

        Raises:
            JobNotFoundError: If the job does not exist
            JobAccessDenied: If another user owns the job
            JobStateError: If the job already completed
        """
        state = self.authorize(job_id, owner_id)
        if state.status == JobStatus.COMPLETED:
            raise JobStateError(f"Job already completed: {job_id}", job_id)

        resumed, _ = self._repository.update_job(
            job_id,
            {
                "status": JobStatus.RUNNING,
                "error": None,
                "message": f"Resumed from step {state.current_step} (was {state.status.value})",
            },
        )
        if resumed is None:
            raise JobNotFoundError(job_id)
        logger.info(f"Job {job_id} resumed at step {state.current_step}")
        return resumed

    def list_running(self, owner_id: str | None = None) -> list[JobState]:
        return self._repository.list_jobs(owner_id=owner_id, status=JobStatus.RUNNING)

    def sweep_stuck(
        self,
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> list[JobState]:
        """Move running jobs with no update within stuck_after to error.

        Args:
            owner_id: Restrict to one owner (all owners when None)
            now: Reference time

        Returns:
            States of the swept jobs as they were before the sweep
        """
        now = now or datetime.now(UTC)
        cutoff = now - self._stuck_after
        minutes = int(self._stuck_after.total_seconds() // 60)
        swept: list[JobState] = []
        for state in self._repository.list_jobs(
            owner_id=owner_id, status=JobStatus.RUNNING, updated_before=cutoff
        ):
            applied = self.fail(
                state.job_id,
                f"No progress for {minutes} minutes",
                message="Timed out",
            )
            if applied:
                swept.append(state)
        if swept:
            logger.warning(f"Swept {len(swept)} stuck jobs")
        return swept

    def purge_terminal(self, now: datetime | None = None) -> int:
        """Delete completed and errored jobs older than the retention window."""
        now = now or datetime.now(UTC)
        deleted = self._repository.delete_jobs(
            (JobStatus.COMPLETED, JobStatus.ERROR), now - self._retention
        )
        if deleted:
            logger.info(f"Purged {deleted} terminal jobs")
        return deleted
