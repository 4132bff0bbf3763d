"""ParamConfig: Expert defaults for the imputation pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Resource budgets and thresholds mirror the job headers the pipeline has been
run with on the cluster (e.g. 120 h phasing, 10 GB/CPU imputation segments).

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from imputepipe.schemas.base import ImputeBaseModel


TIME_LIMIT_PATTERN = r"^(\d+-)?\d{1,3}:\d{2}:\d{2}$"


# =============================================================================
# Nested Configuration Models
# =============================================================================

class FolderConfig(ImputeBaseModel):
    """Named filesystem roles. Unset roles are derived from ``working_dir``."""
    working_dir: Optional[str] = None
    chromosome_dir: Optional[str] = None
    scheduler_log_dir: Optional[str] = None
    phasing_log_dir: Optional[str] = None
    segment_dir: Optional[str] = None
    output_dir: Optional[str] = None
    source_dir: Optional[str] = None


class SchedulerConfig(ImputeBaseModel):
    """SLURM client configuration."""
    account: Optional[str] = None
    partition: Optional[str] = None
    user: Optional[str] = Field(None, description="Queue owner; defaults to $USER")
    run_tag: Optional[str] = Field(None, description="Comment attached to every job")
    sbatch: str = "sbatch"
    squeue: str = "squeue"
    scancel: str = "scancel"
    command_timeout_sec: int = Field(120, ge=1)


class PollingConfig(ImputeBaseModel):
    """Completion polling cadence."""
    initial_grace_sec: int = Field(60, ge=0)
    confirm_delay_sec: int = Field(30, ge=0)
    poll_interval_sec: int = Field(300, ge=1)
    long_poll_interval_sec: int = Field(600, ge=1)


class BackpressureConfig(ImputeBaseModel):
    """Admission control on the user's pending queue."""
    max_pending: int = Field(100, ge=1)
    recheck_interval_sec: int = Field(60, ge=1)


class ExecutablesConfig(ImputeBaseModel):
    """External tool locations (opaque executables)."""
    plink: str = "plink"
    plink2: str = "plink2"
    shapeit: str = "shapeit"
    impute2: str = "impute2"
    gzip: str = "gzip"


class ReferencePanelConfig(ImputeBaseModel):
    """Reference panel files. ``{chrom}`` is replaced per chromosome."""
    panel_dir: Optional[str] = None
    haplotypes: str = "1000GP_Phase3_chr{chrom}.hap.gz"
    legend: str = "1000GP_Phase3_chr{chrom}.legend.gz"
    genetic_map: str = "genetic_map_chr{chrom}_combined_b37.txt"

    @field_validator("haplotypes", "legend", "genetic_map")
    @classmethod
    def require_chrom_placeholder(cls, v):
        """Templates must be chromosome specific."""
        if "{chrom}" not in v:
            raise ValueError(f"reference template '{v}' must contain '{{chrom}}'")
        return v


class QCConfig(ImputeBaseModel):
    """Sample and variant missingness filters for preprocessing."""
    mind: float = Field(0.05, gt=0, le=1.0)
    geno: float = Field(0.05, gt=0, le=1.0)


class PhasingConfig(ImputeBaseModel):
    """Phasing parameters."""
    threads: int = Field(4, ge=1)


class ImputationConfig(ImputeBaseModel):
    """Per-segment imputation parameters."""
    buffer_kb: int = Field(500, ge=0)
    effective_size: int = Field(20000, ge=1)


class StageResources(ImputeBaseModel):
    """Scheduler budget for one stage's jobs."""
    time_limit: str = Field("01:00:00", pattern=TIME_LIMIT_PATTERN)
    mem_per_cpu_mb: int = Field(4000, ge=1)
    cpus_per_task: int = Field(1, ge=1)


class ResourcesConfig(ImputeBaseModel):
    """Per-stage resource budgets."""
    preprocess: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="01:00:00", mem_per_cpu_mb=16000))
    partition_split: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="01:00:00", mem_per_cpu_mb=4000))
    phase: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="120:00:00", mem_per_cpu_mb=10000, cpus_per_task=4))
    impute: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="12:00:00", mem_per_cpu_mb=10000))
    concatenate: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="12:00:00", mem_per_cpu_mb=4000))
    sort_and_encode: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="12:00:00", mem_per_cpu_mb=32000))
    format_convert: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="08:00:00", mem_per_cpu_mb=16000))
    merge: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="08:00:00", mem_per_cpu_mb=16000))


class ValidationConfig(ImputeBaseModel):
    """Output sanity thresholds applied after each stage drains."""
    min_segment_outputs: int = Field(100, ge=1)
    min_haps_lines: int = Field(1, ge=1)
    min_concatenated_bytes: int = Field(1_000_000, ge=1)
    min_bgen_bytes: int = Field(10_000_000, ge=1)
    min_sample_lines: int = Field(3, ge=1)


class CleanupConfig(ImputeBaseModel):
    """Retain/remove policy applied by the terminal cleanup stage."""
    remove_intermediates: bool = True
    remove_chromosome_outputs: bool = False
    remove_on_failure: bool = False


class BatchConfig(ImputeBaseModel):
    """Batch front-end: one pipeline job per discovered dataset."""
    workdir_root: str = Field("BATCH_WORKDIRS", description="Relative to the working directory")
    log_dir: str = Field("BATCH_IMPUTE_LOGS", description="Relative to the working directory")
    test_limit: int = Field(3, ge=1)
    remove_workdir: bool = True
    job: StageResources = Field(
        default_factory=lambda: StageResources(time_limit="48:00:00", mem_per_cpu_mb=16000))


class LoggingConfig(ImputeBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(ImputeBaseModel):
    """Complete expert configuration with all defaults.

    This is the single source of truth for all pipeline parameters.
    Every tunable parameter MUST have a default here.

    Usage
    -----
    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    prefix: Optional[str] = None
    reference: str = "1000GP_Phase3"
    folders: FolderConfig = Field(default_factory=FolderConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    backpressure: BackpressureConfig = Field(default_factory=BackpressureConfig)
    executables: ExecutablesConfig = Field(default_factory=ExecutablesConfig)
    reference_panel: ReferencePanelConfig = Field(default_factory=ReferencePanelConfig)
    qc: QCConfig = Field(default_factory=QCConfig)
    phasing: PhasingConfig = Field(default_factory=PhasingConfig)
    imputation: ImputationConfig = Field(default_factory=ImputationConfig)
    resources: ResourcesConfig = Field(default_factory=ResourcesConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
