"""Batch front-end: submit one pipeline job per un-imputed dataset.

Scans the source folder for PLINK binary sets, skips those whose merged
output already exists in the output folder, and submits a SLURM job that
runs the full pipeline for each remaining dataset in its own working
directory.
"""

import sys
import json
import shutil
import argparse
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from imputepipe.contracts.failure import SubmissionError
from imputepipe.core.layout import BINARY_EXTENSIONS
from imputepipe.schemas.initialization import load_user_config_dict
from imputepipe.schemas.internal import InternalConfig
from imputepipe.schemas.param import ParamConfig
from imputepipe.schemas.resolve import resolve_config
from imputepipe.scheduler.client import SchedulerClient
from imputepipe.scheduler.jobs import JobSpec
from imputepipe.scheduler.slurm import SlurmClient


logger = logging.getLogger(__name__)

# Placeholder used to resolve folder roles before any dataset is known
BATCH_PREFIX = "batch"


@dataclass
class BatchDataset:
    """One dataset discovered in the source folder."""
    prefix: str
    source_dir: Path
    workdir: Optional[Path] = None
    job_id: Optional[str] = None

    @property
    def inputs(self) -> list[Path]:
        return [self.source_dir / f"{self.prefix}{ext}" for ext in BINARY_EXTENSIONS]


def resolve_batch_config(settings: dict) -> InternalConfig:
    """Resolve folder roles and scheduler settings shared by the whole batch."""
    overrides = {} if settings.get("prefix") or settings.get("PREFIX") else {"prefix": BATCH_PREFIX}
    return resolve_config(ParamConfig(), settings, overrides)


def discover_datasets(source_dir: Path, output_dir: Path) -> tuple[list[BatchDataset], list[str]]:
    """Find PLINK binary sets that still need imputing.

    Returns
    -------
    tuple
        (datasets to impute, prefixes already imputed)
    """
    source_dir = Path(source_dir)
    output_dir = Path(output_dir)
    pending = []
    done = []

    for bed in sorted(source_dir.glob("*.bed")):
        prefix = bed.stem
        if "_CHR" in prefix:
            logger.info("  Skipping chromosome-split file: %s", prefix)
            continue

        missing = [ext for ext in (".bim", ".fam") if not (source_dir / f"{prefix}{ext}").is_file()]
        if missing:
            logger.warning("  Missing %s file for %s, skipping", "/".join(missing), prefix)
            continue

        if (output_dir / f"{prefix}.bed").exists():
            logger.info("  Already imputed: %s", prefix)
            done.append(prefix)
        else:
            logger.info("  To impute: %s", prefix)
            pending.append(BatchDataset(prefix=prefix, source_dir=source_dir))

    return pending, done


def dataset_settings(settings: dict, prefix: str, workdir: Path, output_dir: Path) -> dict:
    """Per-dataset settings document: the batch settings re-rooted at ``workdir``."""
    result = json.loads(json.dumps(settings))
    result.pop("PREFIX", None)
    result["prefix"] = prefix

    folder = dict(result.get("folder") or {})
    folder.update({
        "FILESFOLDER": f"{workdir}/",
        "GWAS_BY_CHR": f"{workdir / 'GWAS_BY_CHR'}/",
        "SLURM_IMPUTE_LOG": f"{workdir / 'SLURM_IMPUTE_LOG'}/",
        "SHAPEIT_IMPUTE_LOG": f"{workdir / 'SHAPEIT_IMPUTE_LOG'}/",
        "IMPUTE_FILES": f"{workdir / 'imputeFiles'}/",
        "BIN_FOLDER": f"{output_dir}/",
    })
    folder.pop("SOURCE_DATA", None)
    result["folder"] = folder
    return result


def prepare_workdir(dataset: BatchDataset, settings: dict, config: InternalConfig,
                    timestamp: str) -> Path:
    """Create the job working directory, link the inputs and write settings.json."""
    root = Path(config.folders.working_dir) / config.batch.workdir_root
    workdir = root / f"{dataset.prefix}_{timestamp}"
    workdir.mkdir(parents=True, exist_ok=True)

    for source in dataset.inputs:
        link = workdir / source.name
        if link.exists() or link.is_symlink():
            link.unlink()
        link.symlink_to(source.resolve())

    job_settings = dataset_settings(settings, dataset.prefix, workdir, Path(config.folders.output_dir))
    with open(workdir / "settings.json", "w") as f:
        json.dump(job_settings, f, indent=2)

    dataset.workdir = workdir
    return workdir


def build_job(dataset: BatchDataset, config: InternalConfig, timestamp: str) -> JobSpec:
    """JobSpec running the pipeline for one dataset inside its working directory."""
    log_dir = Path(config.folders.working_dir) / config.batch.log_dir
    settings_path = dataset.workdir / "settings.json"

    command = f'"{sys.executable}" -m imputepipe.cli.run_imputation "{settings_path}"'
    if config.batch.remove_workdir:
        command += f' && rm -rf "{dataset.workdir}"'

    resources = config.batch.job
    return JobSpec(
        name=f"IMPUTE_{dataset.prefix}",
        command=command,
        time_limit=resources.time_limit,
        mem_per_cpu_mb=resources.mem_per_cpu_mb,
        cpus_per_task=resources.cpus_per_task,
        output_path=str(log_dir / f"{dataset.prefix}_{timestamp}.out"),
        error_path=str(log_dir / f"{dataset.prefix}_{timestamp}.err"),
        workdir=str(dataset.workdir),
        stage="batch",
    )


def submit_batch(
    settings_path: str,
    dry_run: bool = False,
    test: bool = False,
    scheduler: Optional[SchedulerClient] = None,
    clock=None,
) -> list[BatchDataset]:
    """Discover datasets and submit one pipeline job per dataset.

    A dataset whose submission is rejected is logged and its working
    directory removed; the remaining datasets are still submitted.

    Returns
    -------
    list of BatchDataset
        Datasets processed (submitted, or planned in a dry run).
    """
    settings = load_user_config_dict(settings_path)
    config = resolve_batch_config(settings)
    clock = clock or datetime.now

    source_dir = Path(config.folders.source_dir)
    output_dir = Path(config.folders.output_dir)

    print(f"\n{'='*60}")
    print("Batch Imputation Submission")
    print('='*60)
    print(f"Source (non-imputed): {source_dir}")
    print(f"Destination (imputed): {output_dir}")
    if dry_run:
        print("DRY RUN - no jobs will be submitted")
    print('='*60)

    if not source_dir.is_dir():
        raise FileNotFoundError(f"Source folder does not exist: {source_dir}")

    datasets, done = discover_datasets(source_dir, output_dir)
    logger.info("Found %d dataset(s) to impute, %d already imputed", len(datasets), len(done))

    if test and len(datasets) > config.batch.test_limit:
        datasets = datasets[:config.batch.test_limit]
        logger.info("Test mode: limited to first %d dataset(s)", len(datasets))

    if not datasets:
        logger.info("No datasets need imputation")
        return []

    if dry_run:
        for dataset in datasets:
            logger.info("Would submit IMPUTE_%s", dataset.prefix)
        return datasets

    output_dir.mkdir(parents=True, exist_ok=True)
    (Path(config.folders.working_dir) / config.batch.log_dir).mkdir(parents=True, exist_ok=True)
    scheduler = scheduler or SlurmClient(config.scheduler)

    submitted = []
    for dataset in datasets:
        timestamp = clock().strftime("%Y%m%d_%H%M%S")
        prepare_workdir(dataset, settings, config, timestamp)
        try:
            job = scheduler.submit(build_job(dataset, config, timestamp))
        except SubmissionError as e:
            logger.error("Failed to submit %s: %s", dataset.prefix, e)
            shutil.rmtree(dataset.workdir, ignore_errors=True)
            continue
        dataset.job_id = job.job_id
        submitted.append(dataset)

    logger.info("Submitted %d job(s): %s", len(submitted), " ".join(d.job_id for d in submitted))
    return submitted


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Submit one imputation job per un-imputed dataset")
    parser.add_argument("settings", help="Path to the batch settings.json")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be submitted without submitting")
    parser.add_argument("--test", action="store_true",
                        help="Only process the first few datasets")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
    )

    try:
        submit_batch(args.settings, dry_run=args.dry_run, test=args.test)
    except (ValueError, FileNotFoundError) as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
