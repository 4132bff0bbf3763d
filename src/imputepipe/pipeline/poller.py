"""Completion polling without an event channel.

The scheduler offers no completion callback, so a stage is followed by
periodic queue queries. A drained queue is confirmed once after a short
delay, then the Output Validator decides whether the stage succeeded.

States::

    SUBMITTED --grace--> POLLING --empty--> CONFIRMING --empty--> DRAINED
                            ^                    |
                            +------non-empty-----+
    any state --abort()--> ABORTED
"""

import logging
import threading
from enum import Enum
from typing import Callable, Iterable, Optional

from imputepipe.contracts.artifacts import ArtifactRequirement, CompletionVerdict, validate_artifacts
from imputepipe.contracts.failure import PollingUncertain
from imputepipe.schemas.param import PollingConfig
from imputepipe.scheduler.client import SchedulerClient
from imputepipe.scheduler.jobs import QueueFilter

__all__ = ['PollState', 'CompletionPoller']

logger = logging.getLogger(__name__)


class PollState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    CONFIRMING = "confirming"
    DRAINED = "drained"
    ABORTED = "aborted"


class CompletionPoller:
    """Waits for a stage's jobs to leave the queue, then validates outputs.

    Parameters
    ----------
    scheduler : SchedulerClient
        Queried once per cycle; nothing is cached between cycles.
    polling : PollingConfig
        Grace, confirmation and poll intervals.
    sleeper : callable, optional
        Function to sleep (for testing). Defaults to waiting on the abort
        event, so ``abort()`` ends a sleep early.
    validator : callable, optional
        Replaces ``validate_artifacts``.
    abort_event : threading.Event, optional
        Shared stop flag; a private one is created when omitted.
    """

    def __init__(self, scheduler: SchedulerClient, polling: PollingConfig,
                 sleeper: Optional[Callable[[float], object]] = None,
                 validator: Optional[Callable[[Iterable[ArtifactRequirement]], CompletionVerdict]] = None,
                 abort_event: Optional[threading.Event] = None):
        self.scheduler = scheduler
        self.polling = polling
        self._abort = abort_event or threading.Event()
        self._sleep = sleeper or self._abort.wait
        self._validate = validator or validate_artifacts
        self.state = PollState.SUBMITTED
        self.cycles = 0

    def abort(self):
        """End any wait in progress; the current await returns pending."""
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def _transition(self, state: PollState, label: str):
        if state != self.state:
            logger.debug("%s: %s -> %s", label, self.state.value, state.value)
        self.state = state

    def _wait(self, seconds: float) -> bool:
        """Sleep; False when the wait was ended by abort()."""
        if self.aborted:
            return False
        self._sleep(seconds)
        return not self.aborted

    def wait_for_drain(self, label: str, queue_filter: QueueFilter, poll_interval_sec: float,
                       grace_sec: Optional[float] = None) -> bool:
        """Block until no job matching ``queue_filter`` is running or pending.

        Returns
        -------
        bool
            True once drained (confirmed twice); False if aborted.
        """
        self._transition(PollState.SUBMITTED, label)
        self.cycles = 0

        grace = self.polling.initial_grace_sec if grace_sec is None else grace_sec
        if grace and not self._wait(grace):
            self._transition(PollState.ABORTED, label)
            return False

        self._transition(PollState.POLLING, label)
        while True:
            self.cycles += 1
            try:
                state = self.scheduler.query_state(queue_filter)
            except PollingUncertain as e:
                logger.warning("%s: queue state unknown (%s); retrying in %ss", label, e, poll_interval_sec)
                self._transition(PollState.POLLING, label)
                if not self._wait(poll_interval_sec):
                    self._transition(PollState.ABORTED, label)
                    return False
                continue

            if not state.is_empty:
                logger.info("%s - Running: %d, Pending: %d", label, state.running, state.pending)
                self._transition(PollState.POLLING, label)
                if not self._wait(poll_interval_sec):
                    self._transition(PollState.ABORTED, label)
                    return False
                continue

            if self.state == PollState.CONFIRMING:
                self._transition(PollState.DRAINED, label)
                return True

            # First empty read; jobs may not be visible in the queue yet
            self._transition(PollState.CONFIRMING, label)
            logger.info("%s - no jobs in queue, confirming in %ss", label, self.polling.confirm_delay_sec)
            if not self._wait(self.polling.confirm_delay_sec):
                self._transition(PollState.ABORTED, label)
                return False

    def await_stage(self, label: str, queue_filter: QueueFilter,
                    requirements: Iterable[ArtifactRequirement],
                    poll_interval_sec: Optional[float] = None) -> CompletionVerdict:
        """Wait for a stage to drain and validate what it left on disk.

        Never returns satisfied while a matching job is queued or running.
        There is no global timeout; job time limits bound the wait.
        """
        interval = poll_interval_sec or self.polling.poll_interval_sec

        if not self.wait_for_drain(label, queue_filter, interval):
            return CompletionVerdict.pending("aborted")

        verdict = self._validate(requirements)
        if verdict.is_satisfied:
            logger.info("%s: outputs validated (%s artifacts)", label, verdict.found)
        else:
            logger.error("%s: output validation failed: %s", label, verdict.reason)
        return verdict
