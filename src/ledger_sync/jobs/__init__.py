"""Job tracking and background execution."""

from ledger_sync.jobs.runner import JobRunner, summarize
from ledger_sync.jobs.tracker import JobTracker, new_job_id

__all__ = [
    "JobRunner",
    "JobTracker",
    "new_job_id",
    "summarize",
]
