"""Stage definitions for the imputation workflow.

Each stage of the fixed sequence declares:

- a precondition (``is_complete``): its artifacts already validate on disk
- a unit generator (``plan_units``): chromosomes or 1 Mb segments
- a submission procedure (``build_jobs``): typed job specs for pending units
- a completion predicate (``queue_filter``): run tag plus job-name pattern
- an output-validation predicate (``requirements``)

The external tools (plink, plink2, shapeit, impute2) are opaque: a stage only
knows which command to run and which files must exist afterwards.
"""

import logging
import re
import shutil
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from imputepipe.contracts.artifacts import ArtifactRequirement, artifact_ok, validate_artifacts
from imputepipe.contracts.failure import PipelineError, PreconditionAmbiguous
from imputepipe.core.layout import BINARY_EXTENSIONS, RunLayout
from imputepipe.pipeline.partition import (
    CHROMOSOMES,
    CHROMOSOME_LENGTH_MB,
    PartitionUnit,
    already_complete,
    plan_chromosome_units,
    plan_segment_units,
)
from imputepipe.schemas.internal import InternalConfig
from imputepipe.schemas.param import StageResources
from imputepipe.scheduler.jobs import JobSpec, QueueFilter
from imputepipe.setup_directories import get_job_log_paths

__all__ = [
    'Stage',
    'StageDefinition',
    'build_stage_definitions',
    'write_sample_file',
    'write_merge_list',
    'run_cleanup',
]

logger = logging.getLogger(__name__)

TASK_ID = "${SLURM_ARRAY_TASK_ID}"


class Stage(str, Enum):
    """The fixed stage sequence. Definition order is execution order."""

    PREPROCESS = "preprocess"
    PARTITION_SPLIT = "partition-split"
    PHASE = "phase"
    IMPUTE = "impute"
    CONCATENATE = "concatenate"
    SORT_AND_ENCODE = "sort-and-encode"
    FORMAT_CONVERT = "format-convert"
    MERGE = "merge"
    CLEANUP = "cleanup"

    @property
    def ordinal(self) -> int:
        return list(Stage).index(self)

    @property
    def config_key(self) -> str:
        return self.value.replace("-", "_")


def _q(path) -> str:
    """Double-quote a path for the job shell, leaving ${...} expandable."""
    return '"' + str(path).replace('"', '\\"') + '"'


def write_sample_file(fam_path: Path, sample_path: Path) -> int:
    """Write an Oxford sample descriptor from a PLINK .fam file.

    Two header lines (``ID_1 ID_2`` and ``0 0``) followed by one line per
    sample with the individual id in both columns.

    Returns
    -------
    int
        Number of samples written.
    """
    try:
        fam = pd.read_csv(fam_path, sep=r"\s+", header=None, usecols=[1], dtype=str)
    except pd.errors.EmptyDataError as e:
        raise PipelineError(f"{fam_path} lists no samples") from e

    ids = fam[1].tolist()
    sample = pd.DataFrame({"ID_1": ["0"] + ids, "ID_2": ["0"] + ids})

    sample_path.parent.mkdir(parents=True, exist_ok=True)
    sample.to_csv(sample_path, sep=" ", index=False)
    return len(ids)


def write_merge_list(layout: RunLayout) -> Path:
    """List chromosomes 2..22 for merging onto chromosome 1."""
    path = layout.merge_list_path
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        for chrom in CHROMOSOMES[1:]:
            f.write(f"{layout.converted_base(chrom)}\n")
    return path


class StageDefinition:
    """Base class for a job-submitting stage.

    Subclasses set ``stage`` and implement ``requirements`` and
    ``build_jobs``. Chromosome/segment stages also implement
    ``plan_units``; dataset-level stages return no units.
    """

    stage: Stage
    chain_jobs = False      # each job waits (after-ok) on the previous one
    long_running = False    # polled at the long interval
    unit_min_bytes = 0      # size below which a unit output counts as missing

    def __init__(self, config: InternalConfig, layout: RunLayout, run_tag: Optional[str] = None):
        self.config = config
        self.layout = layout
        self.run_tag = run_tag

    @property
    def name(self) -> str:
        return self.stage.value

    @property
    def prefix(self) -> str:
        return self.layout.prefix

    @property
    def resources(self) -> StageResources:
        return getattr(self.config.resources, self.stage.config_key)

    @property
    def poll_interval_sec(self) -> int:
        if self.long_running:
            return self.config.polling.long_poll_interval_sec
        return self.config.polling.poll_interval_sec

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def name_pattern(self) -> str:
        raise NotImplementedError

    def queue_filter(self, job_ids: Iterable[str] = ()) -> QueueFilter:
        return QueueFilter(name_pattern=self.name_pattern(), tag=self.run_tag, job_ids=tuple(job_ids))

    def requirements(self) -> list[ArtifactRequirement]:
        raise NotImplementedError

    def precondition(self) -> bool:
        """True when every required artifact already validates.

        Raises
        ------
        PreconditionAmbiguous
            When some, but not all, required artifacts are present.
        """
        verdict = validate_artifacts(self.requirements())
        if verdict.is_satisfied:
            return True
        if verdict.found:
            raise PreconditionAmbiguous(self.name, verdict.found, verdict.required)
        return False

    def is_complete(self) -> bool:
        try:
            return self.precondition()
        except PreconditionAmbiguous as e:
            logger.warning("Partial prior state: %s. Treating stage as not complete.", e)
            return False

    # ------------------------------------------------------------------
    # Units and jobs
    # ------------------------------------------------------------------

    def plan_units(self) -> list[PartitionUnit]:
        return []

    def pending_units(self, units: list[PartitionUnit]) -> list[PartitionUnit]:
        return [u for u in units if not already_complete(u, self.unit_min_bytes)]

    def prepare(self, units: list[PartitionUnit]):
        """Create output folders and write any side files the jobs read."""
        for path in self.layout.folder_roles.values():
            path.mkdir(parents=True, exist_ok=True)

    def build_jobs(self, units: list[PartitionUnit]) -> list[JobSpec]:
        raise NotImplementedError

    def _spec(self, name: str, command: str, array_indices=(), phasing_logs: bool = False,
              workdir: Optional[Path] = None) -> JobSpec:
        res = self.resources
        out, err = get_job_log_paths(self.layout, name, array=bool(array_indices), phasing=phasing_logs)
        return JobSpec(
            name=name,
            command=command,
            time_limit=res.time_limit,
            mem_per_cpu_mb=res.mem_per_cpu_mb,
            cpus_per_task=res.cpus_per_task,
            array_indices=tuple(array_indices),
            output_path=out,
            error_path=err,
            workdir=str(workdir or self.layout.working_dir),
            tag=self.run_tag,
            stage=self.name,
        )

    def _chromosome_requirements(self, description: str, paths_for, min_bytes: int = 0,
                                 min_lines: int = 0) -> ArtifactRequirement:
        return ArtifactRequirement(
            description=description,
            expected=tuple(tuple(paths_for(chrom)) for chrom in CHROMOSOMES),
            min_bytes=min_bytes,
            min_lines=min_lines,
        )


# =============================================================================
# Dataset-level stages
# =============================================================================

class PreprocessStage(StageDefinition):
    """Binarize text input if needed, drop duplicate variants, filter missingness."""

    stage = Stage.PREPROCESS
    chain_jobs = True

    def name_pattern(self) -> str:
        return f"PREP_{self.prefix}_*"

    def requirements(self) -> list[ArtifactRequirement]:
        return [ArtifactRequirement(
            description="QC'd binary dataset",
            expected=tuple((p,) for p in self.layout.qc_files()),
        )]

    def build_jobs(self, units) -> list[JobSpec]:
        plink = self.config.executables.plink
        layout = self.layout
        base = layout.dataset_base
        specs = []

        if not all(p.is_file() for p in layout.dataset_files()):
            ped, map_file = layout.text_inputs()
            if not (ped.is_file() and map_file.is_file()):
                raise PipelineError(
                    f"No input dataset: expected {self.prefix}.bed/.bim/.fam or "
                    f"{self.prefix}.ped/.map in {layout.working_dir}")
            specs.append(self._spec(
                f"PREP_{self.prefix}_binarize",
                f"{plink} --file {_q(base)} --allow-no-sex --make-bed --out {_q(base)}",
            ))

        qc = self.config.qc
        command = " && ".join([
            f"{plink} --bfile {_q(base)} --allow-no-sex "
            f"--list-duplicate-vars ids-only suppress-first --out {_q(base)}",
            f"touch {_q(layout.duplicate_list)}",
            f"{plink} --bfile {_q(base)} --allow-no-sex --exclude {_q(layout.duplicate_list)} "
            f"--mind {qc.mind} --geno {qc.geno} --make-bed --out {_q(layout.qc_base)}",
        ])
        specs.append(self._spec(f"PREP_{self.prefix}_qc", command))
        return specs


class MergeStage(StageDefinition):
    """Merge the 22 per-chromosome binary sets into one."""

    stage = Stage.MERGE

    def name_pattern(self) -> str:
        return f"MERGE_{self.prefix}"

    def requirements(self) -> list[ArtifactRequirement]:
        return [ArtifactRequirement(
            description="merged binary dataset",
            expected=tuple((p,) for p in self.layout.merged_files()),
        )]

    def prepare(self, units):
        super().prepare(units)
        write_merge_list(self.layout)

    def build_jobs(self, units) -> list[JobSpec]:
        layout = self.layout
        command = (
            f"{self.config.executables.plink} --bfile {_q(layout.converted_base(1))} "
            f"--merge-list {_q(layout.merge_list_path)} --allow-no-sex "
            f"--make-bed --out {_q(layout.merged_base)}"
        )
        return [self._spec(f"MERGE_{self.prefix}", command)]


# =============================================================================
# Per-chromosome array stages
# =============================================================================

class ChromosomeArrayStage(StageDefinition):
    """One array job over the chromosomes whose outputs are missing."""

    job_label: str = ""
    phasing_logs = False

    def unit_outputs(self, chrom: int) -> tuple[tuple[Path, ...], ...]:
        raise NotImplementedError

    def command(self) -> str:
        raise NotImplementedError

    @property
    def job_name(self) -> str:
        return f"{self.job_label}_{self.prefix}"

    def name_pattern(self) -> str:
        return self.job_name

    def plan_units(self) -> list[PartitionUnit]:
        return plan_chromosome_units(self.layout, outputs_for=self.unit_outputs)

    def build_jobs(self, units) -> list[JobSpec]:
        indices = [u.chromosome for u in units]
        if not indices:
            return []
        workdir = self.layout.phasing_log_dir if self.phasing_logs else None
        return [self._spec(self.job_name, self.command(), array_indices=indices,
                           phasing_logs=self.phasing_logs, workdir=workdir)]


class PartitionSplitStage(ChromosomeArrayStage):
    """Split the QC'd dataset into 22 per-chromosome binary sets."""

    stage = Stage.PARTITION_SPLIT
    job_label = "SPLIT"

    def unit_outputs(self, chrom):
        return tuple(self.layout.split_candidates(chrom, ext) for ext in BINARY_EXTENSIONS)

    def requirements(self) -> list[ArtifactRequirement]:
        return [
            self._chromosome_requirements(
                f"per-chromosome {ext} files",
                lambda c, ext=ext: self.layout.split_candidates(c, ext))
            for ext in BINARY_EXTENSIONS
        ]

    def command(self) -> str:
        layout = self.layout
        source = layout.qc_base if all(p.is_file() for p in layout.qc_files()) else layout.dataset_base
        return (
            f"{self.config.executables.plink} --bfile {_q(source)} --chr {TASK_ID} "
            f"--allow-no-sex --make-bed --out {_q(layout.split_base(TASK_ID))}"
        )


def _relocate_to_store(layout: RunLayout, chrom: int, ext: str):
    """Move a per-chromosome artifact from the working root into the store."""
    store, root = layout.split_candidates(chrom, ext)
    if root.is_file() and not store.exists():
        store.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(root), str(store))
        logger.debug("Moved %s to %s", root.name, store.parent)


class PhaseStage(ChromosomeArrayStage):
    """Phase each chromosome against the genetic map."""

    stage = Stage.PHASE
    job_label = "shapeit"
    phasing_logs = True

    def unit_outputs(self, chrom):
        return (self.layout.haps_candidates(chrom),)

    def pending_units(self, units):
        min_lines = self.config.validation.min_haps_lines
        pending = []
        for unit in units:
            if not any(_has_lines(p, min_lines) for p in self.layout.haps_candidates(unit.chromosome)):
                pending.append(unit)
        return pending

    def requirements(self) -> list[ArtifactRequirement]:
        return [self._chromosome_requirements(
            "phased haplotype files",
            self.layout.haps_candidates,
            min_bytes=1,
            min_lines=self.config.validation.min_haps_lines,
        )]

    def prepare(self, units):
        super().prepare(units)
        # Array tasks read one location, so gather split sets into the store
        for unit in units:
            for ext in BINARY_EXTENSIONS:
                _relocate_to_store(self.layout, unit.chromosome, ext)

    def command(self) -> str:
        layout = self.layout
        base = layout.split_base(TASK_ID)
        return (
            f"{self.config.executables.shapeit} --input-bed "
            f"{_q(str(base) + '.bed')} {_q(str(base) + '.bim')} {_q(str(base) + '.fam')} "
            f"-M {_q(layout.genetic_map(TASK_ID))} -O {_q(base)} -T {self.config.phasing.threads}"
        )


class SortAndEncodeStage(ChromosomeArrayStage):
    """Convert each concatenated chromosome to BGEN 1.2."""

    stage = Stage.SORT_AND_ENCODE
    job_label = "SORT"
    long_running = True

    @property
    def unit_min_bytes(self) -> int:
        return self.config.validation.min_bgen_bytes

    def unit_outputs(self, chrom):
        return ((self.layout.bgen_path(chrom),),)

    def requirements(self) -> list[ArtifactRequirement]:
        return [
            self._chromosome_requirements(
                "BGEN files",
                lambda c: (self.layout.bgen_path(c),),
                min_bytes=self.config.validation.min_bgen_bytes),
            ArtifactRequirement(
                description="sample descriptor",
                expected=((self.layout.sample_path,),),
                min_lines=self.config.validation.min_sample_lines),
        ]

    def prepare(self, units):
        super().prepare(units)
        fam = self.layout.locate(self.layout.sample_source_candidates())
        if not fam.is_file():
            raise PipelineError(f"No .fam file to build {self.layout.sample_path.name} from")
        count = write_sample_file(fam, self.layout.sample_path)
        logger.info("Sample file %s: %d samples (from %s)", self.layout.sample_path.name, count, fam.name)

    def command(self) -> str:
        layout = self.layout
        return (
            f"{self.config.executables.plink2} --gen {_q(layout.concatenated_path(TASK_ID))} ref-first "
            f"--sample {_q(layout.sample_path)} --oxford-single-chr {TASK_ID} "
            f"--export bgen-1.2 --out {_q(layout.converted_base(TASK_ID))}"
        )


class FormatConvertStage(ChromosomeArrayStage):
    """Convert each BGEN file to a PLINK binary set."""

    stage = Stage.FORMAT_CONVERT
    job_label = "BGEN2PLINK"

    def unit_outputs(self, chrom):
        return tuple((p,) for p in self.layout.converted_files(chrom))

    def requirements(self) -> list[ArtifactRequirement]:
        return [
            self._chromosome_requirements(
                f"converted {ext} files",
                lambda c, ext=ext: (self.layout.output_dir / f"{self.layout.output_name(c)}{ext}",))
            for ext in BINARY_EXTENSIONS
        ]

    def command(self) -> str:
        layout = self.layout
        return (
            f"{self.config.executables.plink2} --bgen {_q(layout.bgen_path(TASK_ID))} ref-first "
            f"--sample {_q(layout.sample_path)} --make-bed --out {_q(layout.converted_base(TASK_ID))}"
        )


# =============================================================================
# Per-segment and per-chromosome independent jobs
# =============================================================================

class ImputeStage(StageDefinition):
    """Impute each 1 Mb segment against the reference panel."""

    stage = Stage.IMPUTE

    def name_pattern(self) -> str:
        return "EM_*.chr*"

    def plan_units(self) -> list[PartitionUnit]:
        units = []
        for chrom in CHROMOSOMES:
            units.extend(plan_segment_units(chrom, CHROMOSOME_LENGTH_MB[chrom], self.layout))
        return units

    def _planned_units(self) -> Optional[list[PartitionUnit]]:
        """Segment plan, or None while any phased haplotype file is unreadable."""
        try:
            return self.plan_units()
        except (OSError, ValueError) as e:
            logger.debug("impute: segments cannot be planned yet (%s)", e)
            return None

    def requirements(self) -> list[ArtifactRequirement]:
        """Every planned segment output, plus the overall floor on segment files.

        Segment boundaries come from the phased haplotypes; until all 22 are
        readable the haplotypes themselves are the unmet requirement.
        """
        units = self._planned_units()
        if units is None:
            requirements = [self._chromosome_requirements(
                "phased haplotype files to plan segments from",
                self.layout.haps_candidates,
                min_bytes=1,
                min_lines=self.config.validation.min_haps_lines,
            )]
        elif units:
            requirements = [ArtifactRequirement(
                description="planned segment outputs",
                expected=tuple(alternatives for unit in units for alternatives in unit.outputs),
            )]
        else:
            requirements = []

        requirements.append(ArtifactRequirement(
            description="imputed segment files",
            directory=self.layout.segment_dir,
            pattern=self.layout.segment_regex(),
            min_count=self.config.validation.min_segment_outputs,
        ))
        return requirements

    def build_jobs(self, units) -> list[JobSpec]:
        layout = self.layout
        exe = self.config.executables.impute2
        params = self.config.imputation
        specs = []
        for unit in units:
            c, i = unit.chromosome, unit.segment_index
            command = (
                f"{exe} -known_haps_g {_q(layout.haps_path(c))} "
                f"-h {_q(layout.reference_haplotypes(c))} -l {_q(layout.reference_legend(c))} "
                f"-m {_q(layout.genetic_map(c))} -int {i}e6 {i + 1}e6 "
                f"-buffer {params.buffer_kb} -Ne {params.effective_size} "
                f"-o {_q(layout.segment_path(c, i))}"
            )
            specs.append(self._spec(f"EM_{i}.chr{c}", command))
        return specs


def _segment_files(layout: RunLayout, chrom: int) -> list[Path]:
    """Segment outputs of one chromosome in ascending numeric order."""
    regex = re.compile(layout.segment_regex(chrom))
    if not layout.segment_dir.is_dir():
        return []
    files = [p for p in layout.segment_dir.iterdir() if regex.fullmatch(p.name)]
    return sorted(files, key=lambda p: int(p.name.rsplit(".", 1)[1]))


class ConcatenateStage(StageDefinition):
    """Concatenate each chromosome's segments into one compressed file."""

    stage = Stage.CONCATENATE

    @property
    def unit_min_bytes(self) -> int:
        return self.config.validation.min_concatenated_bytes

    def name_pattern(self) -> str:
        return f"CAT_{self.prefix}.chr*"

    def plan_units(self) -> list[PartitionUnit]:
        return plan_chromosome_units(
            self.layout, outputs_for=lambda c: ((self.layout.concatenated_path(c),),))

    def requirements(self) -> list[ArtifactRequirement]:
        return [self._chromosome_requirements(
            "concatenated chromosome files",
            lambda c: (self.layout.concatenated_path(c),),
            min_bytes=self.config.validation.min_concatenated_bytes,
        )]

    def prepare(self, units):
        super().prepare(units)
        for unit in units:
            segments = _segment_files(self.layout, unit.chromosome)
            if not segments:
                raise PipelineError(
                    f"chr{unit.chromosome}: no imputed segments to concatenate in {self.layout.segment_dir}")
            with open(self.layout.segment_list_path(unit.chromosome), "w") as f:
                for path in segments:
                    f.write(f"{path}\n")

    def build_jobs(self, units) -> list[JobSpec]:
        layout = self.layout
        gzip = self.config.executables.gzip
        specs = []
        for unit in units:
            c = unit.chromosome
            out = layout.concatenated_path(c)
            tmp = out.with_name(out.name + ".tmp")
            # Written under a temporary name so a killed job leaves no valid-looking output
            command = (
                f'while read -r f; do cat "$f"; done < {_q(layout.segment_list_path(c))} '
                f"| {gzip} -c > {_q(tmp)} && mv {_q(tmp)} {_q(out)}"
            )
            specs.append(self._spec(f"CAT_{self.prefix}.chr{c}", command))
        return specs


def _has_lines(path: Path, min_lines: int) -> bool:
    ok, _ = artifact_ok(path, min_bytes=1, min_lines=min_lines)
    return ok


# =============================================================================
# Registry
# =============================================================================

STAGE_DEFINITIONS = {
    Stage.PREPROCESS: PreprocessStage,
    Stage.PARTITION_SPLIT: PartitionSplitStage,
    Stage.PHASE: PhaseStage,
    Stage.IMPUTE: ImputeStage,
    Stage.CONCATENATE: ConcatenateStage,
    Stage.SORT_AND_ENCODE: SortAndEncodeStage,
    Stage.FORMAT_CONVERT: FormatConvertStage,
    Stage.MERGE: MergeStage,
}


def build_stage_definitions(config: InternalConfig, layout: RunLayout,
                            run_tag: Optional[str] = None) -> list[StageDefinition]:
    """All job-submitting stages in execution order (cleanup excluded)."""
    return [cls(config, layout, run_tag) for cls in STAGE_DEFINITIONS.values()]


# =============================================================================
# Cleanup
# =============================================================================

def _remove(path: Path, removed: list):
    if path.is_dir():
        shutil.rmtree(path)
        removed.append(path)
    elif path.exists():
        path.unlink()
        removed.append(path)


def run_cleanup(config: InternalConfig, layout: RunLayout, succeeded: bool) -> list[Path]:
    """Apply the retain/remove policy. Runs after every run.

    Intermediates (log stores, per-chromosome store, segment store, QC set
    and temporary files) are removed when ``remove_intermediates`` is set;
    after a failed run only if ``remove_on_failure`` is also set, so failed
    runs keep their evidence. Per-chromosome outputs (``CHR*_{prefix}.*``)
    are removed only after a successful run with ``remove_chromosome_outputs``.

    Returns
    -------
    list of Path
        Removed files and directories.
    """
    policy = config.cleanup
    removed = []

    if not policy.remove_intermediates:
        logger.info("Cleanup: intermediates retained (policy)")
    elif not succeeded and not policy.remove_on_failure:
        logger.info("Cleanup: run failed; intermediates retained for inspection")
    else:
        for folder in (layout.scheduler_log_dir, layout.phasing_log_dir,
                       layout.chromosome_dir, layout.segment_dir):
            _remove(folder, removed)

        temporary = [layout.duplicate_list, layout.merge_list_path]
        for stem in (layout.prefix, f"{layout.prefix}_QC"):
            temporary.extend(layout.working_dir / f"{stem}{ext}" for ext in (".log", ".nosex", ".hh"))
        temporary.extend(layout.qc_files())
        temporary.extend(layout.split_candidates(c, ext)[1]
                         for c in CHROMOSOMES for ext in BINARY_EXTENSIONS + (".haps", ".sample", ".log"))
        for path in temporary:
            _remove(path, removed)

    if succeeded and policy.remove_chromosome_outputs:
        for path in sorted(layout.output_dir.glob(f"CHR*_{layout.prefix}.*")):
            _remove(path, removed)
    elif policy.remove_chromosome_outputs:
        logger.info("Cleanup: per-chromosome outputs retained (run did not complete)")

    logger.info("Cleanup removed %d path(s)", len(removed))
    return removed
