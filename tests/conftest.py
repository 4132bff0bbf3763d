"""Root-level pytest fixtures for the imputation pipeline test suite.

Provides shared configuration fixtures following the Pydantic-based
architecture. Tests build configs through these fixtures instead of raw dicts.
"""

import pytest
from pathlib import Path
import tempfile
import shutil

from imputepipe.core.layout import RunLayout
from imputepipe.schemas import ParamConfig, UserConfig, resolve_config


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d).resolve()
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def working_dir(temp_dir):
    """Working root (FILESFOLDER) of the test run."""
    d = temp_dir / "run"
    d.mkdir()
    return d


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults.

    Use this as the base for all test configs. Override specific values
    through ``make_config``.
    """
    return ParamConfig()


@pytest.fixture
def make_config(param_config, working_dir):
    """Factory fixture for creating custom test configs.

    Returns a callable that accepts settings.json-style keys. The prefix
    defaults to ``TEST`` and the working root to ``working_dir``.

    Examples
    --------
    >>> def test_custom_limit(make_config):
    ...     config = make_config(MAX_PENDING=5)
    ...     assert config.backpressure.max_pending == 5
    """
    def _make(**user_overrides):
        """Create InternalConfig with user overrides."""
        user_overrides.setdefault("prefix", "TEST")
        user_overrides.setdefault("folder", {"FILESFOLDER": str(working_dir)})
        user = UserConfig.model_validate(user_overrides)
        return resolve_config(param_config, user, None)

    return _make


@pytest.fixture
def internal_config(make_config):
    """Fully validated runtime configuration (defaults, prefix TEST).

    Use this when tests don't care about specific config values and just
    need a valid InternalConfig to pass to constructors.
    """
    return make_config()


@pytest.fixture
def run_layout(internal_config):
    """RunLayout of ``internal_config``."""
    return RunLayout.from_config(internal_config)
