"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: dataset prefix, working/output folders, account, verbosity.

This schema handles command-line arguments parsed by argparse.
"""

from typing import Literal, Optional
from imputepipe.schemas.base import ImputeBaseModel


class CLIConfig(ImputeBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Usage
    -----
        cli_cfg = CLIConfig(prefix="COHORT_A", working_dir="/scratch/impute")
        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    prefix: Optional[str] = None
    working_dir: Optional[str] = None
    output_dir: Optional[str] = None
    account: Optional[str] = None
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.prefix is not None:
            overrides["prefix"] = self.prefix

        folders = {}
        if self.working_dir is not None:
            folders["working_dir"] = str(self.working_dir)
        if self.output_dir is not None:
            folders["output_dir"] = str(self.output_dir)
        if folders:
            overrides["folders"] = folders

        if self.account is not None:
            overrides["scheduler"] = {"account": self.account}

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
