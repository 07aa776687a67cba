import logging
import os
import yaml

from settings_schema import validate_config

APP_VERSION = "1.0.0"
CONFIG_ENV = "FITLOG_CONFIG"

DEFAULTS = {
    "db_path": "workout.db",
    "storage_layout": "collections",
    "backup_limit": 5,
    "log_level": "INFO",
}


class YamlConfig:
    """Load and save application configuration in a YAML file."""

    def __init__(self, path: str | None = None) -> None:
        self.path = path or os.environ.get(CONFIG_ENV, "fitlog.yaml")

    def load(self) -> dict:
        """Return defaults overlaid with the file's values, validated."""
        data = dict(DEFAULTS)
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"{self.path}: configuration must be a mapping")
            data.update(loaded)
        return validate_config(data)

    def save(self, data: dict) -> None:
        out = validate_config({**DEFAULTS, **data})
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)


def load_config(path: str | None = None) -> dict:
    return YamlConfig(path).load()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
