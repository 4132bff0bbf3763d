import json

import pytest

from imputepipe.schemas.user import UserConfig
from imputepipe.schemas.initialization import init_runtime_config, load_user_config_dict

pytestmark = [pytest.mark.unit, pytest.mark.schemas]


SETTINGS = {
    "prefix": "COHORT",
    "ref": "1000GP_Phase3",
    "folder": {
        "FILESFOLDER": "/scratch/impute/",
        "GWAS_BY_CHR": "/scratch/impute/GWAS_BY_CHR/",
        "SLURM_IMPUTE_LOG": "/scratch/impute/SLURM_IMPUTE_LOG/",
        "SHAPEIT_IMPUTE_LOG": "/scratch/impute/SHAPEIT_IMPUTE_LOG/",
        "BIN_FOLDER": "/scratch/impute/BIN/",
    },
}


def test_settings_json_layout_is_accepted():
    user = UserConfig.model_validate(SETTINGS)

    assert user.prefix == "COHORT"
    assert user.reference == "1000GP_Phase3"
    assert user.folder.working_dir == "/scratch/impute/"
    assert user.folder.chromosome_dir == "/scratch/impute/GWAS_BY_CHR/"
    assert user.folder.output_dir == "/scratch/impute/BIN/"


def test_empty_and_null_folders_are_unset():
    user = UserConfig.model_validate({"folder": {"SOURCE_DATA": "", "BIN_FOLDER": "null"}})

    assert user.folder.source_dir is None
    assert user.folder.output_dir is None


def test_unknown_keys_are_ignored():
    raw = {"prefix": "COHORT", "UNKNOWN_LEGACY": 12345, "folder": {"EXTRA": "/x"}}
    user = UserConfig.model_validate(raw)

    assert user.prefix == "COHORT"
    # Unknown key should not become an attribute nor raise
    assert not hasattr(user, "UNKNOWN_LEGACY")


def test_init_runtime_config_from_json(temp_dir):
    settings = dict(SETTINGS, folder={"FILESFOLDER": str(temp_dir)})
    path = temp_dir / "settings.json"
    path.write_text(json.dumps(settings))

    config = init_runtime_config(str(path), {"prefix": None, "account": "lab"})

    assert config.prefix == "COHORT"
    assert config.scheduler.account == "lab"
    assert config.run_id is not None


def test_load_python_config(temp_dir):
    path = temp_dir / "user_config.py"
    path.write_text('CONFIG = {"prefix": "COHORT", "MAX_PENDING": 7}\n')

    assert load_user_config_dict(str(path)) == {"prefix": "COHORT", "MAX_PENDING": 7}


def test_load_missing_config(temp_dir):
    with pytest.raises(FileNotFoundError):
        load_user_config_dict(str(temp_dir / "missing.json"))


def test_json_must_be_object(temp_dir):
    path = temp_dir / "settings.json"
    path.write_text("[1, 2]")

    with pytest.raises(ValueError, match="JSON object"):
        load_user_config_dict(str(path))
