"""Background execution of sync jobs.

A request creates a job and gets its id back immediately; the work runs
as an asyncio task and reports only through the job record. The
housekeeping loop sweeps stuck jobs and purges old terminal ones.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from ledger_sync.domain.errors import JobCancelled, LedgerSyncError
from ledger_sync.domain.jobs import JobState
from ledger_sync.domain.outcomes import SyncCounts

if TYPE_CHECKING:
    from ledger_sync.jobs.tracker import JobTracker
    from ledger_sync.monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)

JobWork = Callable[[str], Awaitable[SyncCounts | dict[str, Any]]]


def summarize(counts: SyncCounts) -> str:
    """Human-readable completion message for a run."""
    message = (
        f"Inserted {counts.inserted}, updated {counts.updated}, "
        f"unchanged {counts.unchanged}, skipped {counts.skipped}"
    )
    if counts.failed:
        message += f", {counts.failed} failed: " + "; ".join(counts.errors)
    return message


class JobRunner:
    """Launches job bodies as background tasks."""

    def __init__(
        self,
        tracker: JobTracker,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._tracker = tracker
        self._metrics = metrics
        self._tasks: set[asyncio.Task[None]] = set()
        self._housekeeping_task: asyncio.Task[None] | None = None

    @property
    def tracker(self) -> JobTracker:
        return self._tracker

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    def start(self, owner_id: str, kind: str, work: JobWork, message: str = "Starting") -> JobState:
        """Create a job and run work in the background.

        Args:
            owner_id: User starting the job
            kind: Job kind for metrics and listing
            work: Coroutine function receiving the job id

        Returns:
            The freshly created job state
        """
        state = self._tracker.create(owner_id, kind, message)
        self.launch(state, work)
        return state

    def launch(self, state: JobState, work: JobWork) -> None:
        """Run work for an existing (created or resumed) job."""
        task = asyncio.create_task(self._run(state.job_id, state.kind, work))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job_id: str, kind: str, work: JobWork) -> None:
        if self._metrics:
            self._metrics.job_started(kind)
        status = "error"
        try:
            if self._metrics:
                with self._metrics.time_job(kind):
                    outcome = await work(job_id)
            else:
                outcome = await work(job_id)

            if isinstance(outcome, SyncCounts):
                if self._metrics:
                    self._metrics.record_counts(kind, outcome)
                completed = self._tracker.complete(job_id, outcome.to_dict(), summarize(outcome))
            else:
                completed = self._tracker.complete(job_id, outcome)
            if completed:
                status = "completed"
            else:
                logger.info(f"Job {job_id} finished after it was cancelled, result dropped")
        except JobCancelled:
            logger.info(f"Job {job_id} stopped after cancellation")
        except (LedgerSyncError, SQLAlchemyError) as e:
            self._tracker.fail(job_id, str(e))
        except Exception as e:
            # Job bodies report through the job record, never to the caller
            logger.error(f"Unexpected error in job {job_id}: {e}", exc_info=True)
            self._tracker.fail(job_id, f"Unexpected error: {e}")
        finally:
            if self._metrics:
                self._metrics.job_finished(kind, status)

    async def wait_all(self) -> None:
        """Wait for every running job task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Housekeeping ---

    def start_housekeeping(self, interval_seconds: float) -> None:
        """Start the periodic sweep and purge loop."""
        if self._housekeeping_task is None:
            self._housekeeping_task = asyncio.create_task(self._housekeeping_loop(interval_seconds))

    async def _housekeeping_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.run_housekeeping()

    def run_housekeeping(self) -> None:
        """Sweep stuck jobs and purge expired terminal jobs once."""
        try:
            self._tracker.sweep_stuck()
            self._tracker.purge_terminal()
        except SQLAlchemyError as e:
            logger.error(f"Error in job housekeeping: {e}")

    async def shutdown(self) -> None:
        """Cancel housekeeping and running job tasks."""
        if self._housekeeping_task:
            self._housekeeping_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._housekeeping_task
            self._housekeeping_task = None

        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Job runner shut down")
