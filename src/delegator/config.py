"""
Configuration for the delegator.

Defaults < ``<data_dir>/config.toml`` < ``DELEGATOR_*`` environment variables.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, Field

from delegator.errors import ConfigurationError

DEFAULT_DATA_DIR = Path.home() / ".delegator"

EventLogKind = Literal["journal", "command", "none"]


class DelegatorConfig(BaseModel):
    """Runtime settings for the engine, store and event logger."""

    data_dir: Path = DEFAULT_DATA_DIR
    busy_timeout: float = Field(default=30.0, gt=0)  # seconds to wait for the write lock
    min_score: float | None = None  # None: any running maximum qualifies
    enforce_capacity: bool = False  # True: agents at capacity are never selected
    event_log: EventLogKind = "journal"
    event_command: str = str(Path.home() / "memory-system.sh")
    top_performers: int = Field(default=5, ge=1)

    @classmethod
    def from_env(cls, **overrides: Any) -> "DelegatorConfig":
        """Load configuration from environment variables."""
        values: dict[str, Any] = {}
        env_map = {
            "DELEGATOR_DATA_DIR": "data_dir",
            "DELEGATOR_BUSY_TIMEOUT": "busy_timeout",
            "DELEGATOR_MIN_SCORE": "min_score",
            "DELEGATOR_ENFORCE_CAPACITY": "enforce_capacity",
            "DELEGATOR_EVENT_LOG": "event_log",
            "DELEGATOR_EVENT_COMMAND": "event_command",
            "DELEGATOR_TOP_PERFORMERS": "top_performers",
        }
        for env_name, field_name in env_map.items():
            raw = os.getenv(env_name)
            if raw is not None and raw != "":
                values[field_name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def load(cls, data_dir: Path | None = None) -> "DelegatorConfig":
        """Merge defaults, ``config.toml`` from the data dir, and the environment."""
        env_dir = os.getenv("DELEGATOR_DATA_DIR")
        base_dir = data_dir or (Path(env_dir) if env_dir else DEFAULT_DATA_DIR)

        file_values: dict[str, Any] = {}
        config_file = base_dir / "config.toml"
        if config_file.exists():
            try:
                with config_file.open("rb") as f:
                    file_values = tomllib.load(f).get("delegator", {})
            except tomllib.TOMLDecodeError as exc:
                raise ConfigurationError(f"Invalid config file {config_file}: {exc}") from exc
            if not isinstance(file_values, dict):
                raise ConfigurationError(f"[delegator] in {config_file} must be a table")

        try:
            env_values = cls.from_env().model_dump(exclude_unset=True)
            merged = {**file_values, **env_values, "data_dir": base_dir}
            return cls(**merged)
        except pydantic.ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc
