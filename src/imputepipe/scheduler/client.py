"""Scheduler client interface.

The orchestrator only talks to the batch scheduler through this interface,
so tests substitute an in-memory fake.
"""

from abc import ABC, abstractmethod
from typing import Iterable

from imputepipe.scheduler.jobs import JobSpec, QueueEntry, QueueFilter, QueueState, SubmittedJob


class SchedulerClient(ABC):
    """Submit, query and cancel batch jobs.

    Implementations keep no job state between calls: every query reflects
    the scheduler at that instant.
    """

    @abstractmethod
    def submit(self, spec: JobSpec) -> SubmittedJob:
        """Submit one job or array. Raises SubmissionError on rejection."""

    @abstractmethod
    def list_jobs(self) -> list[QueueEntry]:
        """List the user's queued and running jobs.

        Raises PollingUncertain when the scheduler cannot be queried.
        """

    @abstractmethod
    def cancel(self, job_ids: Iterable[str]) -> bool:
        """Best-effort cancel. Failures are logged, never raised."""

    def query_state(self, queue_filter: QueueFilter) -> QueueState:
        """Running and pending counts for jobs matching ``queue_filter``."""
        return QueueState.from_entries(e for e in self.list_jobs() if queue_filter.matches(e))

    def pending_count(self) -> int:
        """Pending depth of the user's whole queue (backpressure signal)."""
        return sum(1 for e in self.list_jobs() if e.is_pending)
