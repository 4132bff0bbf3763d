"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts the pipeline's historical ``settings.json`` layout::

    {
        "prefix": "COHORT",
        "ref": "1000GP_Phase3",
        "folder": {
            "FILESFOLDER": "/scratch/impute/",
            "GWAS_BY_CHR": "/scratch/impute/GWAS_BY_CHR/",
            "SLURM_IMPUTE_LOG": "/scratch/impute/SLURM_IMPUTE_LOG/",
            "SHAPEIT_IMPUTE_LOG": "/scratch/impute/SHAPEIT_IMPUTE_LOG/",
            "BIN_FOLDER": "/scratch/impute/BIN/"
        }
    }

as well as flat upper-case aliases (PREFIX, CLEANUP, CLEANUP_CHR_FILES, ...)
and lower-case field names. Users only specify what they want to override.
"""

from typing import Optional, Any
from pydantic import AliasChoices, Field, field_validator
from imputepipe.schemas.base import ImputeBaseModel


class UserFolderConfig(ImputeBaseModel):
    """Folder roles under their settings.json names."""
    working_dir: Optional[str] = Field(None, validation_alias=AliasChoices("FILESFOLDER", "working_dir"))
    chromosome_dir: Optional[str] = Field(None, validation_alias=AliasChoices("GWAS_BY_CHR", "chromosome_dir"))
    scheduler_log_dir: Optional[str] = Field(
        None, validation_alias=AliasChoices("SLURM_IMPUTE_LOG", "scheduler_log_dir"))
    phasing_log_dir: Optional[str] = Field(
        None, validation_alias=AliasChoices("SHAPEIT_IMPUTE_LOG", "phasing_log_dir"))
    segment_dir: Optional[str] = Field(None, validation_alias=AliasChoices("IMPUTE_FILES", "segment_dir"))
    output_dir: Optional[str] = Field(None, validation_alias=AliasChoices("BIN_FOLDER", "output_dir"))
    source_dir: Optional[str] = Field(None, validation_alias=AliasChoices("SOURCE_DATA", "source_dir"))

    model_config = ImputeBaseModel.model_config.copy()
    model_config.update({"extra": "ignore"})

    @field_validator("*", mode="before")
    @classmethod
    def empty_string_is_unset(cls, v):
        """jq-style settings files use "" or "null" for unset folders."""
        if isinstance(v, str) and v.strip() in ("", "null"):
            return None
        return v


class UserConfig(ImputeBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    This config is converted to internal overrides during resolution.

    Usage
    -----
        user_cfg = UserConfig.model_validate(json.load(open("settings.json")))
        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Dataset identity
    prefix: Optional[str] = Field(None, validation_alias=AliasChoices("prefix", "PREFIX"))
    reference: Optional[str] = Field(None, validation_alias=AliasChoices("ref", "REF", "reference"))

    # Folder roles
    folder: Optional[UserFolderConfig] = Field(
        None, validation_alias=AliasChoices("folder", "FOLDER", "folders"))

    # Cleanup flags (flat aliases)
    cleanup: Optional[bool] = Field(None, validation_alias=AliasChoices("CLEANUP", "cleanup"))
    cleanup_chr_files: Optional[bool] = Field(
        None, validation_alias=AliasChoices("CLEANUP_CHR_FILES", "cleanup_chr_files"))
    cleanup_on_failure: Optional[bool] = Field(
        None, validation_alias=AliasChoices("CLEANUP_ON_FAILURE", "cleanup_on_failure"))

    # Scheduler settings (flat aliases)
    account: Optional[str] = Field(None, validation_alias=AliasChoices("ACCOUNT", "account"))
    partition: Optional[str] = Field(None, validation_alias=AliasChoices("PARTITION", "partition"))
    max_pending: Optional[int] = Field(None, validation_alias=AliasChoices("MAX_PENDING", "max_pending"))
    poll_interval_sec: Optional[int] = Field(
        None, validation_alias=AliasChoices("POLL_INTERVAL_SEC", "poll_interval_sec"))

    # Reference panel location (flat alias)
    reference_panel_dir: Optional[str] = Field(
        None, validation_alias=AliasChoices("REFERENCE_PANEL_DIR", "reference_panel_dir"))

    log_level: Optional[str] = Field(None, validation_alias=AliasChoices("LOG_LEVEL", "log_level"))

    # Nested overrides (advanced users)
    scheduler: Optional[dict[str, Any]] = None
    polling: Optional[dict[str, Any]] = None
    backpressure: Optional[dict[str, Any]] = None
    executables: Optional[dict[str, Any]] = None
    reference_panel: Optional[dict[str, Any]] = None
    qc: Optional[dict[str, Any]] = None
    phasing: Optional[dict[str, Any]] = None
    imputation: Optional[dict[str, Any]] = None
    resources: Optional[dict[str, Any]] = None
    validation: Optional[dict[str, Any]] = None
    batch: Optional[dict[str, Any]] = None

    model_config = ImputeBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept any case for log level names."""
        if isinstance(v, str):
            return v.upper().strip()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.prefix is not None:
            overrides["prefix"] = self.prefix
        if self.reference is not None:
            overrides["reference"] = self.reference

        if self.folder is not None:
            folders = self.folder.model_dump(exclude_none=True)
            if folders:
                overrides["folders"] = folders

        # Scheduler section
        scheduler = {}
        if self.account is not None:
            scheduler["account"] = self.account
        if self.partition is not None:
            scheduler["partition"] = self.partition
        if self.scheduler is not None:
            scheduler.update(self.scheduler)
        if scheduler:
            overrides["scheduler"] = scheduler

        # Polling section
        polling = {}
        if self.poll_interval_sec is not None:
            polling["poll_interval_sec"] = self.poll_interval_sec
        if self.polling is not None:
            polling.update(self.polling)
        if polling:
            overrides["polling"] = polling

        # Backpressure section
        backpressure = {}
        if self.max_pending is not None:
            backpressure["max_pending"] = self.max_pending
        if self.backpressure is not None:
            backpressure.update(self.backpressure)
        if backpressure:
            overrides["backpressure"] = backpressure

        # Reference panel section
        panel = {}
        if self.reference_panel_dir is not None:
            panel["panel_dir"] = self.reference_panel_dir
        if self.reference_panel is not None:
            panel.update(self.reference_panel)
        if panel:
            overrides["reference_panel"] = panel

        # Cleanup section
        cleanup = {}
        if self.cleanup is not None:
            cleanup["remove_intermediates"] = self.cleanup
        if self.cleanup_chr_files is not None:
            cleanup["remove_chromosome_outputs"] = self.cleanup_chr_files
        if self.cleanup_on_failure is not None:
            cleanup["remove_on_failure"] = self.cleanup_on_failure
        if cleanup:
            overrides["cleanup"] = cleanup

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        # Remaining nested sections pass through unchanged
        for section in ("executables", "qc", "phasing", "imputation", "resources", "validation", "batch"):
            value = getattr(self, section)
            if value is not None:
                overrides[section] = value

        return overrides
