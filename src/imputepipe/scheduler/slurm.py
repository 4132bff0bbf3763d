"""SLURM implementation of the scheduler client.

Drives ``sbatch``, ``squeue`` and ``scancel`` through ``subprocess.run``.
"""

import getpass
import logging
import os
import subprocess
from typing import Callable, Iterable, Optional

from imputepipe.contracts.failure import PollingUncertain, SubmissionError
from imputepipe.schemas.param import SchedulerConfig
from imputepipe.scheduler.client import SchedulerClient
from imputepipe.scheduler.jobs import JobSpec, QueueEntry, SubmittedJob

__all__ = ['SlurmClient']

logger = logging.getLogger(__name__)

QUEUE_FORMAT = "%i|%j|%t|%k"


class SlurmClient(SchedulerClient):
    """Scheduler client for SLURM clusters.

    Parameters
    ----------
    config : SchedulerConfig
        Binaries, account, partition and queue owner.
    runner : callable, optional
        Replacement for ``subprocess.run`` (tests).
    """

    def __init__(self, config: SchedulerConfig, runner: Optional[Callable] = None):
        self.config = config
        self.user = config.user or os.environ.get("USER") or getpass.getuser()
        self._run = runner or subprocess.run

    def _execute(self, args: list[str]) -> subprocess.CompletedProcess:
        logger.debug("Running: %s", " ".join(args))
        return self._run(
            args,
            capture_output=True,
            text=True,
            timeout=self.config.command_timeout_sec,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def build_submit_args(self, spec: JobSpec) -> list[str]:
        """Render a JobSpec into sbatch arguments."""
        args = [
            self.config.sbatch,
            "--parsable",
            f"--job-name={spec.name}",
            f"--time={spec.time_limit}",
            f"--mem-per-cpu={spec.mem_per_cpu_mb}",
            f"--cpus-per-task={spec.cpus_per_task}",
        ]
        if spec.is_array:
            args.append(f"--array={spec.array_expression}")
        if spec.depends_on:
            args.append("--dependency=afterok:" + ":".join(spec.depends_on))
        if self.config.account:
            args.append(f"--account={self.config.account}")
        if self.config.partition:
            args.append(f"--partition={self.config.partition}")
        if spec.output_path:
            args.append(f"--output={spec.output_path}")
        if spec.error_path:
            args.append(f"--error={spec.error_path}")
        if spec.workdir:
            args.append(f"--chdir={spec.workdir}")
        if spec.tag:
            args.append(f"--comment={spec.tag}")
        args.append(f"--wrap={spec.command}")
        return args

    def submit(self, spec: JobSpec) -> SubmittedJob:
        args = self.build_submit_args(spec)
        try:
            result = self._execute(args)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SubmissionError(f"sbatch failed for {spec.name}: {e}", job_name=spec.name) from e

        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip()
            raise SubmissionError(
                f"sbatch rejected {spec.name} (exit {result.returncode}): {message}",
                job_name=spec.name,
            )

        # --parsable prints "<id>" or "<id>;<cluster>"
        lines = (result.stdout or "").strip().splitlines()
        job_id = lines[-1].split(";", 1)[0].strip() if lines else ""
        if not job_id:
            raise SubmissionError(f"sbatch returned no job id for {spec.name}", job_name=spec.name)

        logger.info("Submitted %s as job %s%s", spec.name, job_id,
                    f" [array {spec.array_expression}]" if spec.is_array else "")
        return SubmittedJob.from_spec(job_id, spec)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_jobs(self) -> list[QueueEntry]:
        args = [self.config.squeue, "-h", "-r", "-u", self.user, f"--format={QUEUE_FORMAT}"]
        try:
            result = self._execute(args)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise PollingUncertain(f"squeue failed: {e}") from e

        if result.returncode != 0:
            raise PollingUncertain(
                f"squeue exited {result.returncode}: {(result.stderr or '').strip()}")

        entries = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            parts = line.split("|", 3)
            if len(parts) < 3:
                logger.debug("Ignoring unparseable queue line: %s", line)
                continue
            comment = parts[3] if len(parts) > 3 else ""
            if comment == "(null)":
                comment = ""
            entries.append(QueueEntry(job_id=parts[0], name=parts[1], state=parts[2], comment=comment))
        return entries

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, job_ids: Iterable[str]) -> bool:
        ids = [str(j) for j in job_ids]
        if not ids:
            return True
        try:
            result = self._execute([self.config.scancel, *ids])
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("scancel failed for %s: %s", ", ".join(ids), e)
            return False

        if result.returncode != 0:
            logger.warning("scancel exited %d for %s: %s", result.returncode,
                           ", ".join(ids), (result.stderr or "").strip())
            return False

        logger.info("Cancelled jobs: %s", ", ".join(ids))
        return True
