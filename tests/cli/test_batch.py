import json
from datetime import datetime

import pytest

from imputepipe.cli import batch
from imputepipe.cli.batch import discover_datasets, submit_batch
from tests.helpers.artifacts import write, write_binary_set
from tests.helpers.fake_scheduler import FakeScheduler

pytestmark = [pytest.mark.unit, pytest.mark.cli]


def fixed_clock():
    return datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def batch_dirs(temp_dir):
    dirs = {name: temp_dir / name for name in ("pipeline", "source", "dest")}
    for path in dirs.values():
        path.mkdir()
    return dirs


@pytest.fixture
def settings_path(batch_dirs):
    path = batch_dirs["pipeline"] / "settings.json"
    path.write_text(json.dumps({
        "ref": "1000GP_Phase3",
        "folder": {
            "FILESFOLDER": f"{batch_dirs['pipeline']}/",
            "SOURCE_DATA": f"{batch_dirs['source']}/",
            "BIN_FOLDER": f"{batch_dirs['dest']}/",
        },
        "ACCOUNT": "lab",
    }))
    return path


def add_datasets(source, *prefixes):
    for prefix in prefixes:
        write_binary_set(source / prefix)


class TestDiscovery:

    def test_skips_split_incomplete_and_imputed(self, batch_dirs):
        source, dest = batch_dirs["source"], batch_dirs["dest"]
        add_datasets(source, "ALPHA", "BETA", "GAMMA_CHR1", "DONE")
        write(source / "NOBIM.bed")
        write(source / "NOBIM.fam")
        write(dest / "DONE.bed")

        pending, done = discover_datasets(source, dest)

        assert [d.prefix for d in pending] == ["ALPHA", "BETA"]
        assert done == ["DONE"]
        assert [p.name for p in pending[0].inputs] == ["ALPHA.bed", "ALPHA.bim", "ALPHA.fam"]


class TestSubmit:

    def test_dry_run_submits_nothing(self, settings_path, batch_dirs):
        add_datasets(batch_dirs["source"], "ALPHA")
        scheduler = FakeScheduler()

        planned = submit_batch(str(settings_path), dry_run=True, scheduler=scheduler)

        assert [d.prefix for d in planned] == ["ALPHA"]
        assert scheduler.submitted == []
        assert not (batch_dirs["pipeline"] / "BATCH_WORKDIRS").exists()

    def test_one_job_per_dataset(self, settings_path, batch_dirs):
        add_datasets(batch_dirs["source"], "ALPHA", "BETA")
        scheduler = FakeScheduler()

        submitted = submit_batch(str(settings_path), scheduler=scheduler, clock=fixed_clock)

        assert [s.name for s in scheduler.submitted] == ["IMPUTE_ALPHA", "IMPUTE_BETA"]
        assert [d.job_id for d in submitted] == ["1000", "1001"]

        spec = scheduler.submitted[0]
        workdir = batch_dirs["pipeline"] / "BATCH_WORKDIRS" / "ALPHA_20260301_120000"
        assert spec.workdir == str(workdir)
        assert spec.time_limit == "48:00:00"
        assert spec.mem_per_cpu_mb == 16000
        assert "-m imputepipe.cli.run_imputation" in spec.command
        assert f'rm -rf "{workdir}"' in spec.command
        assert spec.output_path == str(batch_dirs["pipeline"] / "BATCH_IMPUTE_LOGS" / "ALPHA_20260301_120000.out")

    def test_job_settings(self, settings_path, batch_dirs):
        add_datasets(batch_dirs["source"], "ALPHA")

        submit_batch(str(settings_path), scheduler=FakeScheduler(), clock=fixed_clock)

        workdir = batch_dirs["pipeline"] / "BATCH_WORKDIRS" / "ALPHA_20260301_120000"
        settings = json.loads((workdir / "settings.json").read_text())
        assert settings["prefix"] == "ALPHA"
        assert settings["ACCOUNT"] == "lab"
        assert settings["folder"]["FILESFOLDER"] == f"{workdir}/"
        assert settings["folder"]["GWAS_BY_CHR"] == f"{workdir}/GWAS_BY_CHR/"
        assert settings["folder"]["BIN_FOLDER"] == f"{batch_dirs['dest']}/"
        assert "SOURCE_DATA" not in settings["folder"]
        assert (workdir / "ALPHA.bed").is_symlink()
        assert (workdir / "ALPHA.fam").resolve() == (batch_dirs["source"] / "ALPHA.fam").resolve()

    def test_test_mode_limits_datasets(self, settings_path, batch_dirs):
        add_datasets(batch_dirs["source"], "A1", "A2", "A3", "A4", "A5")
        scheduler = FakeScheduler()

        submit_batch(str(settings_path), test=True, scheduler=scheduler, clock=fixed_clock)

        assert [s.name for s in scheduler.submitted] == ["IMPUTE_A1", "IMPUTE_A2", "IMPUTE_A3"]

    def test_rejected_dataset_is_cleaned_up(self, settings_path, batch_dirs):
        add_datasets(batch_dirs["source"], "ALPHA", "BETA")
        scheduler = FakeScheduler(reject=lambda spec: spec.name == "IMPUTE_ALPHA")

        submitted = submit_batch(str(settings_path), scheduler=scheduler, clock=fixed_clock)

        assert [d.prefix for d in submitted] == ["BETA"]
        assert not (batch_dirs["pipeline"] / "BATCH_WORKDIRS" / "ALPHA_20260301_120000").exists()

    def test_nothing_to_do(self, settings_path, batch_dirs):
        add_datasets(batch_dirs["source"], "ALPHA")
        write(batch_dirs["dest"] / "ALPHA.bed")

        assert submit_batch(str(settings_path), scheduler=FakeScheduler()) == []


def test_main_missing_source(temp_dir):
    path = temp_dir / "settings.json"
    path.write_text(json.dumps({"folder": {"FILESFOLDER": str(temp_dir), "SOURCE_DATA": str(temp_dir / "nope")}}))

    assert batch.main([str(path), "--dry-run"]) == 1
