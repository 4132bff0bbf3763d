"""End-to-end stage sequencing against the in-memory scheduler."""

import pytest

from imputepipe.contracts.failure import RunAborted, SubmissionError, ValidationFailure
from imputepipe.pipeline.job_tracker import JobTracker
from imputepipe.pipeline.orchestrator import ImputationPipeline
from imputepipe.pipeline.stages import Stage
from imputepipe.scheduler.jobs import QueueEntry, SubmittedJob
from tests.helpers.artifacts import JobCompleter, write, write_binary_set, write_haps, write_segments
from tests.helpers.fake_scheduler import FakeScheduler

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]

JOB_STAGES = [s.value for s in Stage][:-1]


def no_sleep(seconds):
    return None


def make_pipeline(config, scheduler, **kw):
    return ImputationPipeline(config, scheduler=scheduler, sleeper=no_sleep,
                              configure_logging=False, **kw)


def test_initialization(pipeline_config, fake_scheduler):
    pipeline = make_pipeline(pipeline_config, fake_scheduler)

    assert pipeline.run_tag.startswith("imputepipe:TEST:")
    assert [s.stage for s in pipeline.stages] == list(Stage)[:-1]
    assert pipeline.governor.limit == 100
    assert set(pipeline.stage_status.values()) == {"not run"}


def test_configured_run_tag_wins(make_config, fake_scheduler):
    config = make_config(scheduler={"run_tag": "nightly-7"})
    assert make_pipeline(config, fake_scheduler).run_tag == "nightly-7"


def test_stop_is_idempotent(pipeline_config, fake_scheduler):
    pipeline = make_pipeline(pipeline_config, fake_scheduler)

    pipeline.stop()
    pipeline.stop()  # should not raise
    assert pipeline._stop_event.is_set()


def test_full_run(pipeline_config, pipeline_layout, fake_scheduler):
    write_binary_set(pipeline_layout.dataset_base)
    write(pipeline_layout.working_dir / "TEST.log")

    summary = make_pipeline(pipeline_config, fake_scheduler).run()

    assert fake_scheduler.stages_submitted() == JOB_STAGES
    names = [s.name for s in fake_scheduler.submitted]
    # Strict stage ordering: no sort job before the last concatenation job
    last_cat = max(i for i, n in enumerate(names) if n.startswith("CAT_"))
    assert names.index("SORT_TEST") > last_cat
    assert sum(n.startswith("EM_") for n in names) == 110

    for path in pipeline_layout.merged_files():
        assert path.is_file()
    assert "TEST.bed" in set(summary["artifact"])
    assert (pipeline_layout.output_dir / "run_summary_latest.csv").is_file()

    # Default policy: intermediates removed, per-chromosome outputs kept
    assert not pipeline_layout.segment_dir.exists()
    assert not pipeline_layout.chromosome_dir.exists()
    assert not (pipeline_layout.working_dir / "TEST.log").exists()
    assert not pipeline_layout.qc_files()[0].exists()
    assert pipeline_layout.bgen_path(22).is_file()
    assert pipeline_layout.ledger_path.is_file()


def test_every_job_is_tagged_and_admitted(pipeline_config, pipeline_layout, fake_scheduler):
    write_binary_set(pipeline_layout.dataset_base)
    pipeline = make_pipeline(pipeline_config, fake_scheduler)

    pipeline.run()

    assert {s.tag for s in fake_scheduler.submitted} == {pipeline.run_tag}
    assert pipeline.governor.admitted == len(fake_scheduler.submitted)


def test_preprocess_jobs_are_chained(pipeline_config, pipeline_layout, fake_scheduler):
    write(pipeline_layout.working_dir / "TEST.ped")
    write(pipeline_layout.working_dir / "TEST.map")

    make_pipeline(pipeline_config, fake_scheduler).run()

    binarize, qc = fake_scheduler.jobs[:2]
    assert binarize.name == "PREP_TEST_binarize"
    assert qc.depends_on == (binarize.job_id,)


def test_concatenate_shortfall_stops_run(pipeline_config, pipeline_layout):
    """21 of 22 chromosomes concatenated: the run fails and sort is never submitted."""
    for chrom in range(1, 23):
        write_haps(pipeline_layout, chrom)
    write_segments(pipeline_layout)
    for chrom in range(1, 22):
        write(pipeline_layout.concatenated_path(chrom), "compressed\n")
    write(pipeline_layout.scheduler_log_dir / "CAT_TEST.chr22_1001.err", "gzip: No space left on device\n")
    scheduler = FakeScheduler(on_submit=lambda spec: None)
    pipeline = make_pipeline(pipeline_config, scheduler)

    with pytest.raises(ValidationFailure, match="expected 22, found 21") as exc:
        pipeline.run()

    assert exc.value.stage == "concatenate"
    assert (exc.value.found, exc.value.required) == (21, 22)
    assert any("No space left" in line for line in exc.value.log_tail)
    assert [s.name for s in scheduler.submitted] == ["CAT_TEST.chr22"]
    assert pipeline.stage_status["concatenate"] == "failed"
    assert pipeline.stage_status["sort-and-encode"] == "not run"
    # Failed runs keep their intermediates
    assert pipeline_layout.segment_dir.is_dir()


def test_resume_from_split_outputs(pipeline_config, pipeline_layout, fake_scheduler):
    """Per-chromosome sets already present: preprocess and split are skipped."""
    write_binary_set(pipeline_layout.dataset_base)
    for chrom in range(1, 23):
        write_binary_set(pipeline_layout.split_base(chrom))

    pipeline = make_pipeline(pipeline_config, fake_scheduler)
    pipeline.run()

    assert fake_scheduler.submitted[0].stage == "phase"
    assert "preprocess" not in fake_scheduler.stages_submitted()
    assert pipeline.stage_status["preprocess"] == "skipped"
    assert pipeline.stage_status["partition-split"] == "skipped"


def test_complete_run_submits_nothing(pipeline_config, pipeline_layout, fake_scheduler):
    write_binary_set(pipeline_layout.merged_base)

    pipeline = make_pipeline(pipeline_config, fake_scheduler)
    pipeline.run()

    assert fake_scheduler.submitted == []
    assert pipeline.stage_status["merge"] == "skipped"


def test_only_missing_units_resubmitted(pipeline_config, pipeline_layout, completer):
    """A failed chromosome is resubmitted alone on the next run."""
    write_binary_set(pipeline_layout.dataset_base)
    flaky = JobCompleter(pipeline_layout, skip=lambda spec, chrom: spec.stage == "phase" and chrom == 9)
    first = FakeScheduler(on_submit=flaky)

    with pytest.raises(ValidationFailure, match="expected 22, found 21"):
        make_pipeline(pipeline_config, first).run()

    second = FakeScheduler(on_submit=completer)
    make_pipeline(pipeline_config, second).run()

    phase = [s for s in second.submitted if s.stage == "phase"]
    assert [s.array_indices for s in phase] == [(9,)]
    assert "partition-split" not in second.stages_submitted()


def test_resume_after_partial_impute(pipeline_config, pipeline_layout, fake_scheduler):
    """Segments exist for chr1..21 only: just chr22 is imputed on the rerun."""
    for chrom in range(1, 23):
        write_binary_set(pipeline_layout.split_base(chrom))
        write_haps(pipeline_layout, chrom)
    write_segments(pipeline_layout, chromosomes=range(1, 22))

    pipeline = make_pipeline(pipeline_config, fake_scheduler)
    pipeline.run()

    impute = [s.name for s in fake_scheduler.submitted if s.stage == "impute"]
    assert impute == [f"EM_{i}.chr22" for i in range(48, 53)]
    assert fake_scheduler.stages_submitted() == JOB_STAGES[3:]
    assert pipeline.stage_status["phase"] == "skipped"
    assert pipeline.stage_status["impute"] == "completed"


def test_failed_segment_jobs_stop_run(pipeline_config, pipeline_layout):
    """The queue drains with chr9 segments missing: impute fails, nothing is concatenated."""
    write_binary_set(pipeline_layout.dataset_base)
    flaky = JobCompleter(pipeline_layout, skip=lambda spec, chrom: spec.stage == "impute" and chrom == 9)
    scheduler = FakeScheduler(on_submit=flaky)
    pipeline = make_pipeline(pipeline_config, scheduler)

    with pytest.raises(ValidationFailure, match="expected 110, found 105") as exc:
        pipeline.run()

    assert exc.value.stage == "impute"
    assert pipeline.stage_status["impute"] == "failed"
    assert "concatenate" not in scheduler.stages_submitted()

    retry = FakeScheduler(on_submit=JobCompleter(pipeline_layout))
    make_pipeline(pipeline_config, retry).run()

    impute = [s.name for s in retry.submitted if s.stage == "impute"]
    assert impute == [f"EM_{i}.chr9" for i in range(138, 143)]
    assert retry.stages_submitted()[0] == "impute"


def test_waits_for_jobs_left_by_earlier_run(pipeline_config):
    scheduler = FakeScheduler()
    pipeline = make_pipeline(pipeline_config, scheduler)
    split = pipeline.stages[1]
    stale = [QueueEntry(job_id="77_4", name="SPLIT_TEST", state="R", comment=pipeline.run_tag)]
    scheduler.scripted = [stale, stale, [], []]

    pipeline._drain_stale_jobs(split)

    # One check, then the drain loop: busy, empty, confirmed empty
    assert scheduler.list_calls == 4


def test_other_runs_jobs_are_ignored(pipeline_config):
    scheduler = FakeScheduler()
    pipeline = make_pipeline(pipeline_config, scheduler)
    other = [QueueEntry(job_id="78", name="SPLIT_TEST", state="R", comment="imputepipe:TEST:00000000")]
    scheduler.scripted = [other]

    pipeline._drain_stale_jobs(pipeline.stages[1])

    assert scheduler.list_calls == 1


def test_stop_while_waiting_for_earlier_jobs(pipeline_config):
    scheduler = FakeScheduler()
    pipeline = make_pipeline(pipeline_config, scheduler)
    stale = [QueueEntry(job_id="77", name="MERGE_TEST", state="PD", comment=pipeline.run_tag)]
    scheduler.scripted = [stale, stale]
    pipeline.poller._sleep = lambda seconds: pipeline.stop()

    with pytest.raises(RunAborted):
        pipeline._drain_stale_jobs(pipeline.stages[-1])


def test_submission_error_propagates(pipeline_config, pipeline_layout, completer):
    write_binary_set(pipeline_layout.dataset_base)
    scheduler = FakeScheduler(on_submit=completer, reject=lambda spec: spec.stage == "phase")

    with pytest.raises(SubmissionError, match="rejected shapeit_TEST"):
        make_pipeline(pipeline_config, scheduler).run()

    assert scheduler.stages_submitted() == ["preprocess", "partition-split"]


def test_stop_cancels_outstanding_jobs(pipeline_config, pipeline_layout):
    write_binary_set(pipeline_layout.dataset_base)
    scheduler = FakeScheduler(polls_visible=100)
    pipeline = None

    def stop_on_sleep(seconds):
        pipeline.stop()

    pipeline = ImputationPipeline(pipeline_config, scheduler=scheduler, sleeper=stop_on_sleep,
                                  cancel_on_failure=True, configure_logging=False)

    with pytest.raises(RunAborted):
        pipeline.run()

    assert scheduler.cancelled == [scheduler.jobs[0].job_id]
    assert pipeline.stage_status["preprocess"] == "aborted"


def test_failure_without_cancel_flag_leaves_jobs(pipeline_config, pipeline_layout):
    write_binary_set(pipeline_layout.dataset_base)
    scheduler = FakeScheduler(polls_visible=100)
    pipeline = None

    def stop_on_sleep(seconds):
        pipeline.stop()

    pipeline = make_pipeline(pipeline_config, scheduler)
    pipeline.poller._sleep = stop_on_sleep

    with pytest.raises(RunAborted):
        pipeline.run()
    assert scheduler.cancelled == []


def test_run_id_persists_config(make_config, pipeline_layout, fake_scheduler):
    config = make_config(validation={"min_bgen_bytes": 16, "min_concatenated_bytes": 8})
    config = config.model_copy(update={"run_id": "20260101T000000Z_abc123"})
    write_binary_set(pipeline_layout.merged_base)

    make_pipeline(config, fake_scheduler).run()

    assert (pipeline_layout.working_dir / "runtime_config_20260101T000000Z_abc123.json").is_file()
    assert (pipeline_layout.output_dir / "run_summary_20260101T000000Z_abc123.csv").is_file()


def test_cancel_without_run_id_spares_other_runs(pipeline_config, pipeline_layout, fake_scheduler):
    """Without a run id the shared ledger cannot tell runs apart."""
    assert pipeline_config.run_id is None
    pipeline = make_pipeline(pipeline_config, fake_scheduler)
    pipeline.tracker = JobTracker(pipeline_layout.ledger_path)
    pipeline.tracker.record_submission(SubmittedJob(job_id="555", name="EM_1.chr1", stage="impute"))
    pipeline.submitted = [
        SubmittedJob(job_id="1000", name="SPLIT_TEST", stage="partition-split"),
        SubmittedJob(job_id="1001", name="shapeit_TEST", stage="phase"),
    ]
    pipeline._finished_stages.add("partition-split")

    try:
        assert pipeline.cancel_outstanding() == ["1001"]
    finally:
        pipeline.tracker.close()

    assert fake_scheduler.cancelled == ["1001"]
