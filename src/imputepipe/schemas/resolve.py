"""Configuration resolution and merging logic.

This module provides the single entrypoint for configuration resolution:
resolve_config(). It merges ParamConfig, UserConfig, and CLIConfig in
the correct precedence order and returns a validated InternalConfig.

Precedence (highest to lowest):
1. CLIConfig (command-line overrides)
2. UserConfig (user settings file)
3. ParamConfig (expert defaults)
"""

from pathlib import Path
from typing import Union, Optional
from imputepipe.schemas.param import ParamConfig, ReferencePanelConfig
from imputepipe.schemas.user import UserConfig
from imputepipe.schemas.cli import CLIConfig
from imputepipe.schemas.internal import InternalConfig


# Folder roles derived from the working directory when not set explicitly
DEFAULT_FOLDER_NAMES = {
    "chromosome_dir": "GWAS_BY_CHR",
    "scheduler_log_dir": "SLURM_IMPUTE_LOG",
    "phasing_log_dir": "SHAPEIT_IMPUTE_LOG",
    "segment_dir": "imputeFiles",
    "output_dir": "BIN_FOLDER",
}


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Deep merge multiple dictionaries.

    Later dictionaries override earlier ones. Nested dictionaries are
    merged recursively; other values are replaced.

    Parameters
    ----------
    base : dict
        Base dictionary (lowest priority)
    *overrides : dict
        Override dictionaries (higher priority, left to right)

    Returns
    -------
    dict
        Merged dictionary

    Examples
    --------
    >>> base = {"a": 1, "b": {"c": 2, "d": 3}}
    >>> override = {"b": {"d": 4, "e": 5}, "f": 6}
    >>> deep_merge(base, override)
    {'a': 1, 'b': {'c': 2, 'd': 4, 'e': 5}, 'f': 6}
    """
    result = base.copy()

    for override in overrides:
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value

    return result


def _resolve_folders(folders: dict) -> dict:
    """Fill unset folder roles from the working directory and normalize paths."""
    working = folders.get("working_dir") or "."
    working_dir = Path(working).expanduser().resolve()

    resolved = {"working_dir": str(working_dir)}
    for role, default_name in DEFAULT_FOLDER_NAMES.items():
        value = folders.get(role)
        path = Path(value).expanduser() if value else working_dir / default_name
        if not path.is_absolute():
            path = working_dir / path
        resolved[role] = str(path)

    source = folders.get("source_dir")
    resolved["source_dir"] = str(Path(source).expanduser()) if source else str(working_dir)
    return resolved


def _as_model(model, value):
    """Accept a model instance, a plain dict, or nothing (all defaults)."""
    if isinstance(value, model):
        return value
    return model.model_validate(value or {})


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Resolve final runtime configuration from param, user, and CLI configs.

    This is the SINGLE ENTRYPOINT for configuration resolution. It validates
    and merges configs in the correct precedence order, derives any folder
    role left unset from the working directory, then returns an immutable
    InternalConfig for runtime use.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Expert configuration with complete defaults. Required.
    user_cfg : dict or UserConfig, optional
        User configuration with overrides (e.g. a settings.json payload).
    cli_cfg : dict or CLIConfig, optional
        Command-line overrides.

    Returns
    -------
    InternalConfig
        Fully validated, immutable runtime configuration

    Raises
    ------
    ValueError
        If no dataset prefix is configured at any layer, or if any config
        fails Pydantic validation (``ValidationError`` is a ``ValueError``).

    Examples
    --------
    >>> config = resolve_config(ParamConfig(), {"prefix": "COHORT", "folder": {"FILESFOLDER": "/scratch/run"}})
    >>> config.folders.chromosome_dir
    '/scratch/run/GWAS_BY_CHR'
    """
    param = _as_model(ParamConfig, param_cfg)
    user = _as_model(UserConfig, user_cfg)
    cli = _as_model(CLIConfig, cli_cfg)

    # Deep merge: param < user < cli
    merged = deep_merge(param.model_dump(), user.to_internal_overrides(), cli.to_internal_overrides())

    if not merged.get("prefix"):
        raise ValueError("prefix is required (set 'prefix' in settings or pass --prefix)")

    merged["folders"] = _resolve_folders(merged["folders"])

    panel = merged["reference_panel"]
    if not panel.get("panel_dir"):
        panel["panel_dir"] = str(Path(merged["folders"]["working_dir"]) / "reference")
    # Templates overridden by the user still need their {chrom} placeholder
    ReferencePanelConfig.model_validate(panel)

    # Validate and freeze as InternalConfig
    return InternalConfig.model_validate(merged)
