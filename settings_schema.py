from typing import Literal

from pydantic import BaseModel, Field, ValidationError


class ConfigSchema(BaseModel):
    db_path: str = Field(default="workout.db", min_length=1)
    storage_layout: Literal["collections", "snapshot"] = "collections"
    backup_limit: int = Field(default=5, ge=1)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


def validate_config(data: dict) -> dict:
    """Validate ``data`` and return it with defaults filled in."""
    if isinstance(data.get("log_level"), str):
        data = {**data, "log_level": data["log_level"].upper()}
    try:
        return ConfigSchema(**data).model_dump()
    except ValidationError as e:
        raise ValueError(str(e))
