"""Backpressure: keep the user's pending queue under a ceiling.

Before every submission the governor reads the pending depth and blocks
while it is at or above the limit. It is a gate, not a buffer: nothing is
queued in-process.
"""

import logging
import threading
import time
from typing import Callable, Optional

from imputepipe.contracts.failure import PollingUncertain, RunAborted

__all__ = ['BackpressureGovernor', 'admit']

logger = logging.getLogger(__name__)


def admit(pending_count_supplier: Callable[[], int], limit: int,
          interval_sec: float = 60, sleeper: Optional[Callable[[float], object]] = None,
          abort_event: Optional[threading.Event] = None) -> int:
    """Block until the pending depth is below ``limit``.

    An unknown depth (``PollingUncertain``) never admits; it is treated
    like a full queue and re-read after ``interval_sec``.

    Returns
    -------
    int
        The depth observed when admission was granted.

    Raises
    ------
    RunAborted
        If ``abort_event`` is set while waiting.
    """
    sleep = sleeper or time.sleep

    while True:
        if abort_event is not None and abort_event.is_set():
            raise RunAborted("stopped while waiting for queue capacity")

        try:
            depth = pending_count_supplier()
        except PollingUncertain as e:
            logger.warning("Pending depth unknown (%s); retrying in %ss", e, interval_sec)
            sleep(interval_sec)
            continue

        if depth < limit:
            return depth

        logger.info("Too many pending jobs (%d >= %d). Waiting %ss...", depth, limit, interval_sec)
        sleep(interval_sec)


class BackpressureGovernor:
    """Admission gate bound to one scheduler and one limit.

    Parameters
    ----------
    pending_count_supplier : callable
        Returns the current pending depth (e.g. ``SchedulerClient.pending_count``).
    limit : int
        Submissions block while depth >= limit.
    interval_sec : float
        Sleep between re-reads while blocked.
    sleeper : callable, optional
        Function to sleep (for testing). If None, waits on ``abort_event``
        when given, else uses `time.sleep`.
    abort_event : threading.Event, optional
        Ends a blocked admission with RunAborted.
    """

    def __init__(self, pending_count_supplier: Callable[[], int], limit: int,
                 interval_sec: float = 60, sleeper: Optional[Callable[[float], object]] = None,
                 abort_event: Optional[threading.Event] = None):
        self._supplier = pending_count_supplier
        self.limit = limit
        self.interval_sec = interval_sec
        self._abort = abort_event
        self._sleep = sleeper or (abort_event.wait if abort_event is not None else time.sleep)
        self.admitted = 0

    def admit(self) -> int:
        depth = admit(self._supplier, self.limit, self.interval_sec, self._sleep, self._abort)
        self.admitted += 1
        return depth
