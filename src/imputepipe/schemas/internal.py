"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that processing code depends on.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Optional
from pydantic import ConfigDict, Field
from imputepipe.schemas.base import ImputeBaseModel
from imputepipe.schemas.param import (
    SchedulerConfig,
    PollingConfig,
    BackpressureConfig,
    ExecutablesConfig,
    QCConfig,
    PhasingConfig,
    ImputationConfig,
    ResourcesConfig,
    ValidationConfig,
    CleanupConfig,
    BatchConfig,
    LoggingConfig,
)


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalFolderConfig(ImputeBaseModel):
    """Runtime folder roles. Every role is resolved to an explicit path."""
    working_dir: str
    chromosome_dir: str
    scheduler_log_dir: str
    phasing_log_dir: str
    segment_dir: str
    output_dir: str
    source_dir: str


class InternalReferencePanelConfig(ImputeBaseModel):
    """Runtime reference panel configuration."""
    panel_dir: str
    haplotypes: str
    legend: str
    genetic_map: str


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(ImputeBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that orchestration code sees.
    It is fully validated, immutable, and contains explicit values for
    all parameters (no None for fields that runtime depends on).

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.limit = config.backpressure.max_pending  # NOT .get()
            self.prefix = config.prefix

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO validation

    All of that happens during config resolution, not in runtime code.
    """

    prefix: str = Field(min_length=1)
    reference: str
    folders: InternalFolderConfig
    scheduler: SchedulerConfig
    polling: PollingConfig
    backpressure: BackpressureConfig
    executables: ExecutablesConfig
    reference_panel: InternalReferencePanelConfig
    qc: QCConfig
    phasing: PhasingConfig
    imputation: ImputationConfig
    resources: ResourcesConfig
    validation: ValidationConfig
    cleanup: CleanupConfig
    batch: BatchConfig
    logging: LoggingConfig
    run_id: Optional[str] = None

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
    )
