"""Upload store configuration.

Loads settings from a single YAML file, ``upload_store.settings.yaml``:

    storage:
      root: ./uploads          # relative to the settings file's directory
      create_root: true
      name_strategy: uuid      # uuid | time
      file_mode: 0o644
    binding:
      attribute: file
    logging:
      level: info

The storage root is resolved to an absolute path at load time; the store then
checks that it exists and is writable when it is constructed.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("upload_store.settings.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_path(raw: Union[str, Path], base_dir: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class StorageSettings(BaseModel):
    root:          str                    = "uploads"
    create_root:   bool                   = True
    name_strategy: Literal["uuid", "time"] = "uuid"
    file_mode:     int                    = 0o644

    @field_validator("file_mode", mode="before")
    @classmethod
    def parse_octal_mode(cls, value: Any) -> Any:
        """Accept "644" / "0o644" strings as octal permission bits."""
        if isinstance(value, str):
            return int(value.removeprefix("0o"), 8)
        return value

    @field_validator("file_mode")
    @classmethod
    def check_mode_range(cls, value: int) -> int:
        if not 0 <= value <= 0o777:
            raise ValueError(f"file_mode must be between 0 and 0o777, got {oct(value)}")
        return value


class BindingSettings(BaseModel):
    attribute: str = Field("file", min_length=1)


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def check_level(cls, value: str) -> str:
        if not isinstance(getattr(logging, value.upper(), None), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AppSettings(BaseModel):
    storage: StorageSettings = Field(default_factory=StorageSettings)
    binding: BindingSettings = Field(default_factory=BindingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(settings_path: Optional[Union[str, Path]] = None) -> AppSettings:
    """Load settings from YAML into an *AppSettings* object.

    A relative ``storage.root`` resolves against the directory holding the
    settings file, or against the working directory when no file is found.
    """
    path = Path(settings_path) if settings_path else SETTINGS_FILE
    settings_data = _load_yaml(path)

    settings = AppSettings(**settings_data)
    base_dir = path.parent if path.exists() else Path.cwd()
    settings.storage.root = str(_resolve_path(settings.storage.root, base_dir))

    logger.info(
        "Settings loaded (storage.root=%s, name_strategy=%s, attribute=%s)",
        settings.storage.root,
        settings.storage.name_strategy,
        settings.binding.attribute,
    )
    return settings


@lru_cache
def get_settings() -> AppSettings:
    """Get cached settings loaded from the default settings file."""
    return load_settings()
