import pytest

from imputepipe.core.layout import RunLayout
from imputepipe.pipeline.stages import run_cleanup
from imputepipe.setup_directories import setup_run_directories
from tests.helpers.artifacts import write, write_binary_set, write_segments

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


@pytest.fixture
def finished_run(pipeline_layout):
    """A working tree as a finished run leaves it."""
    layout = pipeline_layout
    setup_run_directories(layout)
    write_binary_set(layout.qc_base)
    write(layout.duplicate_list)
    write(layout.working_dir / "TEST_QC.log")
    write(layout.scheduler_log_dir / "SPLIT_TEST_1_1.out")
    write(layout.working_dir / "TEST_CHR4.haps")
    write_segments(layout, chromosomes=[1])
    for chrom in (1, 2):
        write(layout.concatenated_path(chrom))
        write(layout.bgen_path(chrom))
    write_binary_set(layout.merged_base)
    write_binary_set(layout.dataset_base)
    return layout


def test_success_removes_intermediates(pipeline_config, finished_run):
    removed = run_cleanup(pipeline_config, finished_run, succeeded=True)

    layout = finished_run
    assert layout.segment_dir in removed
    for path in (layout.segment_dir, layout.scheduler_log_dir, layout.phasing_log_dir,
                 layout.chromosome_dir, layout.duplicate_list, layout.qc_files()[0],
                 layout.working_dir / "TEST_QC.log", layout.working_dir / "TEST_CHR4.haps"):
        assert not path.exists()

    # Inputs and outputs stay
    assert layout.dataset_files()[0].is_file()
    assert layout.bgen_path(1).is_file()
    assert layout.merged_files()[0].is_file()


def test_failure_retains_intermediates(pipeline_config, finished_run):
    assert run_cleanup(pipeline_config, finished_run, succeeded=False) == []
    assert finished_run.segment_dir.is_dir()


def test_remove_on_failure(make_config, finished_run):
    config = make_config(CLEANUP_ON_FAILURE=True)

    run_cleanup(config, finished_run, succeeded=False)

    assert not finished_run.segment_dir.exists()


def test_cleanup_disabled(make_config, finished_run):
    config = make_config(CLEANUP=False)

    assert run_cleanup(config, finished_run, succeeded=True) == []


def test_chromosome_outputs_removed_only_on_success(make_config, finished_run):
    config = make_config(CLEANUP=False, CLEANUP_CHR_FILES=True)
    layout = finished_run

    run_cleanup(config, layout, succeeded=False)
    assert layout.bgen_path(1).is_file()

    run_cleanup(config, layout, succeeded=True)
    assert not layout.bgen_path(1).exists()
    assert not layout.concatenated_path(2).exists()
    # Merged set is not a per-chromosome output
    assert layout.merged_files()[0].is_file()
