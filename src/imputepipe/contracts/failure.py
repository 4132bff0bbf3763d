"""Centralized failure taxonomy for the orchestrator.

Fatal errors derive from PipelineError and stop the run; nothing is retried
automatically. PollingUncertain is the only transient error and is always
absorbed by the polling loops that raise it.
"""


class PipelineError(RuntimeError):
    """Base class for errors that terminate a run."""


class ContractViolation(PipelineError):
    """Raised when an internal orchestration invariant is violated.

    This indicates a bug in pipeline logic, not bad user input or a failed
    external job.

    Key distinction:
    - ValueError: User/config error (handled by Pydantic)
    - ContractViolation: Orchestrator bug (programmer error)
    - ValidationFailure: External jobs did not produce their artifacts
    """


class SubmissionError(PipelineError):
    """The scheduler rejected a job specification (malformed spec, quota)."""

    def __init__(self, message: str, job_name: str | None = None):
        super().__init__(message)
        self.job_name = job_name


class PollingUncertain(Exception):
    """A scheduler query failed transiently; the queue state is unknown.

    Never interpreted as "zero jobs". Callers sleep and query again.
    """


class ValidationFailure(PipelineError):
    """A stage's queue drained but its expected artifacts are missing or undersized."""

    def __init__(self, stage: str, reason: str, found: int | None = None,
                 required: int | None = None, log_tail: list[str] | None = None):
        super().__init__(f"{stage}: {reason}")
        self.stage = stage
        self.reason = reason
        self.found = found
        self.required = required
        self.log_tail = log_tail or []


class PreconditionAmbiguous(Exception):
    """Some, but not all, of a stage's artifacts already exist.

    Treated conservatively as "not complete"; per-unit skip logic then
    decides which units still need submitting.
    """

    def __init__(self, stage: str, present: int, expected: int):
        super().__init__(f"{stage}: found {present} of {expected} expected artifacts")
        self.stage = stage
        self.present = present
        self.expected = expected


class RunAborted(PipelineError):
    """The run was stopped (signal or stop()) while waiting on the scheduler."""
