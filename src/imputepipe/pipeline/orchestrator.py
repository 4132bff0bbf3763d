"""Stage sequencing for the imputation workflow.

Drives the fixed stage list end to end against the batch scheduler:
skip what is already on disk, fan out the rest as scheduler jobs under
backpressure, poll until the queue drains, validate the artifacts, and
abort on the first stage that falls short.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import pandas as pd

from imputepipe.contracts.artifacts import CompletionVerdict, validate_artifacts
from imputepipe.contracts.base import require
from imputepipe.contracts.failure import (
    PollingUncertain,
    PreconditionAmbiguous,
    RunAborted,
    ValidationFailure,
)
from imputepipe.core.layout import RunLayout
from imputepipe.pipeline.governor import BackpressureGovernor
from imputepipe.pipeline.job_tracker import JobTracker
from imputepipe.pipeline.poller import CompletionPoller
from imputepipe.pipeline.stages import Stage, StageDefinition, build_stage_definitions, run_cleanup
from imputepipe.schemas.initialization import persist_runtime_config
from imputepipe.schemas.internal import InternalConfig
from imputepipe.scheduler.client import SchedulerClient
from imputepipe.scheduler.jobs import JobSpec, SubmittedJob, derive_run_tag
from imputepipe.scheduler.slurm import SlurmClient
from imputepipe.setup_directories import collect_error_tail, setup_run_directories

__all__ = ['ImputationPipeline']

logger = logging.getLogger(__name__)


class ImputationPipeline:
    """Runs one dataset through the imputation stages.

    All parallelism lives in the scheduler; this process only submits,
    sleeps and checks. Stage N is never submitted before stage N-1 has
    validated.

    **Resume:**

    Every artifact path is deterministic, so re-running after a failure or
    interruption skips each stage whose outputs already validate, and
    array/segment stages resubmit only the missing units. A stage is also
    skipped when a later stage is already satisfied (e.g. cleanup removed
    the intermediates of a finished run).

    Jobs carry a run tag derived from the dataset and working directory,
    so a resumed run waits for jobs an interrupted one left in the queue
    before planning the stage again.

    **Logging:**

    All output goes to both console and ``pipeline_{prefix}.log`` in the
    working directory. Log level from ``config.logging.level``.

    Example usage::

        config = init_runtime_config("settings.json", {"prefix": "COHORT"})
        pipeline = ImputationPipeline(config)
        summary = pipeline.run()
    """

    def __init__(self, config: InternalConfig, scheduler: Optional[SchedulerClient] = None,
                 sleeper: Optional[Callable[[float], object]] = None,
                 cancel_on_failure: bool = False, configure_logging: bool = True):
        """Initialize the pipeline.

        Parameters
        ----------
        config : InternalConfig
            Resolved runtime configuration.
        scheduler : SchedulerClient, optional
            Defaults to a SlurmClient built from ``config.scheduler``.
        sleeper : callable, optional
            Function to sleep (for testing). Defaults to waiting on the
            stop event, so ``stop()`` ends any wait.
        cancel_on_failure : bool
            Cancel this run's still-queued jobs when the run fails.
        configure_logging : bool
            Install the root file and console handlers on ``run()``.
        """
        self.config = config
        self.layout = RunLayout.from_config(config)
        self.run_tag = config.scheduler.run_tag or derive_run_tag(config.prefix, config.folders.working_dir)
        self.scheduler = scheduler or SlurmClient(config.scheduler)
        self.cancel_on_failure = cancel_on_failure
        self._configure_logging = configure_logging

        self._stop_event = threading.Event()
        self.governor = BackpressureGovernor(
            self.scheduler.pending_count,
            limit=config.backpressure.max_pending,
            interval_sec=config.backpressure.recheck_interval_sec,
            sleeper=sleeper,
            abort_event=self._stop_event,
        )
        self.poller = CompletionPoller(
            self.scheduler, config.polling, sleeper=sleeper, abort_event=self._stop_event)

        self.stages = build_stage_definitions(config, self.layout, self.run_tag)
        self.tracker: Optional[JobTracker] = None
        self.submitted: list[SubmittedJob] = []
        self._finished_stages: set[str] = set()
        self.stage_status: dict[str, str] = {s.value: "not run" for s in Stage}
        self.summary: Optional[pd.DataFrame] = None

    def _setup_logging(self):
        """Configure root logging with file and console handlers."""
        log_level = getattr(logging, self.config.logging.level.upper(), logging.INFO)

        log_path = self.layout.pipeline_log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Clear existing handlers and add new ones
        root = logging.getLogger()
        root.setLevel(log_level)
        for handler in root.handlers[:]:
            root.removeHandler(handler)

        fh = logging.FileHandler(log_path)
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)
        root.addHandler(ch)

        logger.info("Logging: level=%s, file=%s", self.config.logging.level, log_path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> pd.DataFrame:
        """Run every stage in order, then cleanup.

        Returns
        -------
        pandas.DataFrame
            Output-store artifacts (``artifact``, ``bytes``) after the run.

        Raises
        ------
        SubmissionError
            The scheduler rejected a job.
        ValidationFailure
            A stage drained without producing its artifacts.
        RunAborted
            ``stop()`` was called while waiting.
        """
        if self._configure_logging:
            self._setup_logging()

        setup_run_directories(self.layout)
        self.tracker = JobTracker(self.layout.ledger_path)
        if self.config.run_id:
            config_file = persist_runtime_config(self.config, self.layout.working_dir)
            logger.info("Runtime config: %s", config_file)

        logger.info("=" * 60)
        logger.info("Starting Imputation Pipeline")
        logger.info("=" * 60)
        logger.info("Dataset: %s (reference %s)", self.config.prefix, self.config.reference)
        logger.info("Working directory: %s", self.layout.working_dir)
        logger.info("Run id: %s, tag: %s", self.config.run_id, self.run_tag)

        started = time.monotonic()
        succeeded = False
        try:
            resume_index = self._resume_point()
            for index, definition in enumerate(self.stages):
                if index < resume_index:
                    logger.info("Skipping %s: downstream stage %s already satisfied",
                                definition.name, self.stages[resume_index].name)
                    self.stage_status[definition.name] = "skipped"
                    continue
                self._run_stage(definition)
            succeeded = True
        except BaseException:
            if self.cancel_on_failure:
                self.cancel_outstanding()
            raise
        finally:
            self._cleanup(succeeded)
            self.summary = self._summarize(succeeded, time.monotonic() - started)
            self.tracker.close()

        return self.summary

    def stop(self):
        """End any wait in progress; the run raises RunAborted. Safe to call multiple times."""
        if not self._stop_event.is_set():
            logger.info("Stop requested")
        self._stop_event.set()

    def cancel_outstanding(self) -> list[str]:
        """Best-effort cancel of this run's jobs still recorded as queued.

        The ledger is shared by every run in the working directory, so it is
        consulted only when this run has an id; otherwise only the jobs this
        process submitted are cancelled.
        """
        if self.tracker is not None and self.config.run_id:
            ids = [row["job_id"] for row in self.tracker.get_outstanding(self.config.run_id)]
        else:
            ids = [job.job_id for job in self.submitted if job.stage not in self._finished_stages]
        if not ids:
            return []

        logger.warning("Cancelling %d outstanding job(s)", len(ids))
        if self.scheduler.cancel(ids) and self.tracker:
            self.tracker.mark_cancelled(ids)
        return ids

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def _resume_point(self) -> int:
        """Index of the latest stage whose artifacts already validate, or -1."""
        for index in range(len(self.stages) - 1, -1, -1):
            try:
                if self.stages[index].precondition():
                    return index
            except PreconditionAmbiguous:
                continue
        return -1

    def _run_stage(self, definition: StageDefinition):
        label = definition.name
        logger.info("=" * 60)
        logger.info("Stage %d/%d: %s", definition.stage.ordinal + 1, len(Stage), label)
        logger.info("=" * 60)

        if definition.is_complete():
            logger.info("%s: outputs already present. Skipping.", label)
            self.stage_status[label] = "skipped"
            return

        self._drain_stale_jobs(definition)
        if definition.is_complete():
            logger.info("%s: completed by earlier jobs. Skipping.", label)
            self.stage_status[label] = "skipped"
            return

        units = definition.plan_units()
        pending = definition.pending_units(units) if units else []

        if units and not pending:
            logger.info("%s: all %d units have outputs; validating", label, len(units))
            self._check_verdict(definition, validate_artifacts(definition.requirements()))
            return

        if units:
            logger.info("%s: %d of %d units pending", label, len(pending), len(units))

        definition.prepare(pending)
        specs = definition.build_jobs(pending)
        require(bool(specs), f"{label}: pending work produced no jobs")

        jobs = self._submit_all(definition, specs)
        self.stage_status[label] = "submitted"

        verdict = self.poller.await_stage(
            label,
            definition.queue_filter(job.job_id for job in jobs),
            definition.requirements(),
            definition.poll_interval_sec,
        )
        if verdict.is_satisfied or verdict.is_failed:
            self._finished_stages.add(label)
            self.tracker.mark_stage_finished(self.config.run_id, label)
        self._check_verdict(definition, verdict)

    def _drain_stale_jobs(self, definition: StageDefinition):
        """Wait for jobs an interrupted run left in the queue for this stage."""
        queue_filter = definition.queue_filter()
        try:
            state = self.scheduler.query_state(queue_filter)
            if state.is_empty:
                return
            logger.warning("%s: %d job(s) from an earlier run still queued; waiting for them",
                           definition.name, state.total)
        except PollingUncertain as e:
            logger.warning("%s: could not check for earlier jobs (%s)", definition.name, e)

        drained = self.poller.wait_for_drain(
            f"{definition.name} (earlier jobs)", queue_filter, definition.poll_interval_sec, grace_sec=0)
        if not drained:
            raise RunAborted(f"{definition.name}: stopped while waiting for earlier jobs")

    def _submit_all(self, definition: StageDefinition, specs: list[JobSpec]) -> list[SubmittedJob]:
        jobs = []
        previous = None
        for spec in specs:
            if definition.chain_jobs and previous is not None:
                spec = spec.model_copy(update={"depends_on": (previous.job_id,)})

            self.governor.admit()
            job = self.scheduler.submit(spec)
            self.tracker.record_submission(job, self.config.run_id)
            self.submitted.append(job)
            jobs.append(job)
            previous = job

        logger.info("%s: submitted %d job(s)", definition.name, len(jobs))
        return jobs

    def _check_verdict(self, definition: StageDefinition, verdict: CompletionVerdict):
        label = definition.name
        if verdict.is_satisfied:
            logger.info("%s: completed", label)
            self.stage_status[label] = "completed"
            return

        if not verdict.is_failed:
            self.stage_status[label] = "aborted"
            raise RunAborted(f"{label}: stopped while waiting for jobs")

        self.stage_status[label] = "failed"
        for detail in verdict.details:
            logger.error("%s: %s", label, detail)

        tail = collect_error_tail([self.layout.scheduler_log_dir, self.layout.phasing_log_dir])
        if tail:
            logger.error("Recent scheduler errors:")
            for line in tail:
                logger.error("  %s", line)

        raise ValidationFailure(label, verdict.reason, found=verdict.found,
                                required=verdict.required, log_tail=tail)

    # ------------------------------------------------------------------
    # Cleanup and summary
    # ------------------------------------------------------------------

    def _cleanup(self, succeeded: bool):
        logger.info("=" * 60)
        logger.info("Stage %d/%d: %s", Stage.CLEANUP.ordinal + 1, len(Stage), Stage.CLEANUP.value)
        logger.info("=" * 60)
        try:
            run_cleanup(self.config, self.layout, succeeded)
            self.stage_status[Stage.CLEANUP.value] = "completed"
        except OSError as e:
            # Never mask the error that ended the run
            logger.error("Cleanup failed: %s", e)
            self.stage_status[Stage.CLEANUP.value] = "failed"

    def _summarize(self, succeeded: bool, elapsed_sec: float) -> pd.DataFrame:
        """Tabulate the output store and write ``run_summary_{run_id}.csv``."""
        output_dir = self.layout.output_dir
        rows = []
        if output_dir.is_dir():
            for path in sorted(output_dir.iterdir()):
                if path.is_file() and not path.name.startswith("run_summary_"):
                    rows.append({"artifact": path.name, "bytes": path.stat().st_size})
        summary = pd.DataFrame(rows, columns=["artifact", "bytes"])

        logger.info("=" * 60)
        logger.info("Run %s after %.1f min", "SUCCEEDED" if succeeded else "FAILED", elapsed_sec / 60)
        for stage, status in self.stage_status.items():
            logger.info("  %-16s %s", stage, status)
        logger.info("Output store: %d artifact(s), %.1f MB in %s",
                    len(summary), summary["bytes"].sum() / (1024 * 1024), output_dir)

        if not summary.empty:
            by_type = summary.groupby(summary["artifact"].map(_artifact_type))["bytes"].agg(["count", "sum"])
            for kind, row in by_type.iterrows():
                logger.info("  %-10s %3d file(s) %10.1f MB", kind, row["count"], row["sum"] / (1024 * 1024))

            csv_path = output_dir / f"run_summary_{self.config.run_id or 'latest'}.csv"
            summary.to_csv(csv_path, index=False)
            logger.info("Summary written: %s", csv_path)
        logger.info("=" * 60)

        return summary


def _artifact_type(name: str) -> str:
    """File type for the summary: ``impute.gz``, ``bgen``, ``bed`` and so on."""
    if name.endswith(".impute.gz"):
        return "impute.gz"
    suffix = Path(name).suffix
    return suffix[1:] if suffix else name
