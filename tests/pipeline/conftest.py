import pytest

from imputepipe.core.layout import RunLayout
from imputepipe.pipeline.job_tracker import JobTracker
from tests.helpers.artifacts import JobCompleter
from tests.helpers.fake_scheduler import FakeScheduler


def no_sleep(seconds):
    return None


@pytest.fixture
def tracker(temp_dir):
    t = JobTracker(temp_dir / "jobs.db")
    yield t
    t.close()


@pytest.fixture
def pipeline_config(make_config):
    """InternalConfig for pipeline tests: small BGEN threshold, default cleanup."""
    return make_config(validation={"min_bgen_bytes": 16, "min_concatenated_bytes": 8})


@pytest.fixture
def pipeline_layout(pipeline_config):
    return RunLayout.from_config(pipeline_config)


@pytest.fixture
def completer(pipeline_layout):
    """Writes the outputs each submitted job would produce."""
    return JobCompleter(pipeline_layout)


@pytest.fixture
def fake_scheduler(completer):
    """Scheduler whose jobs succeed: outputs are written on submission."""
    return FakeScheduler(on_submit=completer)
