"""Pydantic configuration schemas for the imputation pipeline.

This module provides strictly typed configuration models. All configuration
validation, coercion, and normalization happens at schema validation time
via Pydantic.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, accepts settings.json)
CLIConfig : class
    Command-line operational overrides
"""

from imputepipe.schemas.resolve import resolve_config
from imputepipe.schemas.internal import InternalConfig
from imputepipe.schemas.param import ParamConfig
from imputepipe.schemas.user import UserConfig
from imputepipe.schemas.cli import CLIConfig

__all__ = [
    'resolve_config',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
    'CLIConfig',
]
