import os
import time
from pathlib import Path

import pytest

from imputepipe.setup_directories import collect_error_tail, get_job_log_paths, setup_run_directories

pytestmark = pytest.mark.unit


def test_setup_run_directories_creates_all(run_layout):
    dirs = setup_run_directories(run_layout)

    expected = {"working", "chromosome", "scheduler_logs", "phasing_logs", "segments", "output"}

    assert set(dirs.keys()) == expected

    for path in dirs.values():
        assert isinstance(path, Path)
        assert path.exists()
        assert path.is_dir()


def test_setup_run_directories_is_idempotent(run_layout):
    dirs1 = setup_run_directories(run_layout)
    dirs2 = setup_run_directories(run_layout)

    assert dirs1 == dirs2


def test_verbose_prints_roles(run_layout, capsys):
    setup_run_directories(run_layout, verbose=True)

    assert "scheduler_logs" in capsys.readouterr().out


def test_job_log_paths(run_layout):
    out, err = get_job_log_paths(run_layout, "MERGE_TEST")

    assert out == str(run_layout.scheduler_log_dir / "MERGE_TEST_%j.out")
    assert err == str(run_layout.scheduler_log_dir / "MERGE_TEST_%j.err")


def test_array_phasing_log_paths(run_layout):
    out, err = get_job_log_paths(run_layout, "shapeit_TEST", array=True, phasing=True)

    assert out == str(run_layout.phasing_log_dir / "shapeit_TEST_%A_%a.out")
    assert err.endswith("shapeit_TEST_%A_%a.err")


def test_error_tail_newest_first(temp_dir):
    old = temp_dir / "old.err"
    new = temp_dir / "new.err"
    old.write_text("old 1\nold 2\n")
    new.write_text("\n".join(f"new {i}" for i in range(8)) + "\n")
    (temp_dir / "job.out").write_text("not an error log\n")
    past = time.time() - 100
    os.utime(old, (past, past))

    tail = collect_error_tail([temp_dir, temp_dir / "missing"], lines_per_file=5, max_lines=6)

    assert tail[:5] == [f"new.err: new {i}" for i in range(3, 8)]
    assert tail[5] == "old.err: old 1"
    assert len(tail) == 6
