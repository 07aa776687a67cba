import os
import sys

import pytest
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import CONFIG_ENV, DEFAULTS, YamlConfig, load_config
from settings_schema import validate_config


def test_missing_file_gives_defaults(tmp_path):
    assert YamlConfig(str(tmp_path / "absent.yaml")).load() == DEFAULTS


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "fitlog.yaml"
    path.write_text(yaml.safe_dump({"db_path": "data/log.db", "storage_layout": "snapshot"}))
    config = load_config(str(path))
    assert config["db_path"] == "data/log.db"
    assert config["storage_layout"] == "snapshot"
    assert config["backup_limit"] == 5


def test_environment_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text(yaml.safe_dump({"backup_limit": 9, "log_level": "debug"}))
    monkeypatch.setenv(CONFIG_ENV, str(path))
    config = YamlConfig().load()
    assert config["backup_limit"] == 9
    assert config["log_level"] == "DEBUG"


def test_save_round_trip(tmp_path):
    cfg = YamlConfig(str(tmp_path / "fitlog.yaml"))
    cfg.save({"backup_limit": 3})
    assert cfg.load()["backup_limit"] == 3
    with open(cfg.path, encoding="utf-8") as f:
        assert yaml.safe_load(f)["storage_layout"] == "collections"


@pytest.mark.parametrize(
    "data",
    [
        {"storage_layout": "cloud"},
        {"backup_limit": 0},
        {"log_level": "LOUD"},
        {"db_path": ""},
    ],
)
def test_invalid_values(data):
    with pytest.raises(ValueError):
        validate_config({**DEFAULTS, **data})


def test_non_mapping_file(tmp_path):
    path = tmp_path / "fitlog.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config(str(path))
