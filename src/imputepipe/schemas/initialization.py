"""Complete runtime initialization for the imputation pipeline.

This module handles ALL initialization responsibilities:
- Loading the user settings file (JSON settings or Python CONFIG dict)
- Configuration resolution (CLI > User > Param)
- Run ID generation
- Configuration persistence with run ID
- Returns fully ready InternalConfig for the orchestrator
"""

import importlib.util
import json
import uuid
from pathlib import Path
from datetime import datetime, timezone

from imputepipe.schemas.resolve import resolve_config
from imputepipe.schemas.param import ParamConfig
from imputepipe.schemas.user import UserConfig
from imputepipe.schemas.cli import CLIConfig
from imputepipe.schemas.internal import InternalConfig


def load_user_config_dict(config_path: str) -> dict:
    """Load the raw user config dict before Pydantic validation.

    ``.json`` files are read as settings documents. Any other file is
    executed as a Python module and its first ``CONFIG*`` dict is returned.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If no CONFIG dict is found, or the JSON document is not an object.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    if path.suffix.lower() == ".json":
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a JSON object")
        return data

    spec = importlib.util.spec_from_file_location("config_module", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load config module from {path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    # Find CONFIG dict
    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ValueError(f"No CONFIG dict found in {path}")


def generate_run_id() -> str:
    """Return a sortable, unique run identifier (UTC timestamp + short hex)."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}_{uuid.uuid4().hex[:6]}"


def persist_runtime_config(config: InternalConfig, directory: Path) -> Path:
    """Persist final runtime configuration for reproducibility and debugging."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    config_file = directory / f"runtime_config_{config.run_id}.json"

    config_dict = config.model_dump()
    config_dict["created_at"] = datetime.now(timezone.utc).isoformat()

    with open(config_file, 'w') as f:
        json.dump(config_dict, f, indent=2, default=str)

    return config_file


def init_runtime_config(config_path: str, cli_args: dict | None = None) -> InternalConfig:
    """Complete runtime initialization - single entry point for the run CLI.

    1. Load user settings from ``config_path``
    2. Resolve configuration (CLI > User > Param)
    3. Attach a freshly generated run ID

    Parameters
    ----------
    config_path : str
        Path to a settings JSON file or a Python file with a CONFIG dict.
    cli_args : dict, optional
        CLIConfig-compatible overrides. None values are ignored.

    Returns
    -------
    InternalConfig
        Fully validated, immutable runtime configuration with ``run_id`` set.
    """
    user_cfg = UserConfig.model_validate(load_user_config_dict(config_path))

    cli_dict = {k: v for k, v in (cli_args or {}).items() if v is not None}
    cli_cfg = CLIConfig.model_validate(cli_dict)

    resolved = resolve_config(ParamConfig(), user_cfg, cli_cfg)
    return resolved.model_copy(update={"run_id": generate_run_id()})


__all__ = [
    'load_user_config_dict',
    'generate_run_id',
    'persist_runtime_config',
    'init_runtime_config',
]
