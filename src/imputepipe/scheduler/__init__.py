"""Batch scheduler boundary: typed job specs and the SLURM client."""

from imputepipe.scheduler.jobs import (
    JobSpec,
    QueueEntry,
    QueueFilter,
    QueueState,
    SubmittedJob,
    derive_run_tag,
)
from imputepipe.scheduler.client import SchedulerClient
from imputepipe.scheduler.slurm import SlurmClient

__all__ = [
    'JobSpec',
    'QueueEntry',
    'QueueFilter',
    'QueueState',
    'SubmittedJob',
    'derive_run_tag',
    'SchedulerClient',
    'SlurmClient',
]
