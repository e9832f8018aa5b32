"""Settings for a backport run, loaded from YAML and validated with pydantic."""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Any, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .tools.diff import DEFAULT_CONTEXT
from .tools.patch import DEFAULT_FUZZ_WINDOW

DEFAULT_CONFIG_NAME = ".format-staged.yaml"


class ConfigError(ValueError):
    """Raised when the settings file cannot be read or is invalid."""


class BackportSettings(BaseModel):
    """Tunable knobs of the backport engine and the CLI."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    context_lines: int = Field(default=DEFAULT_CONTEXT, ge=0)
    fuzz_window: int = Field(default=DEFAULT_FUZZ_WINDOW, ge=0)
    update_worktree: bool = False
    verbose: bool = False
    jobs: int = Field(default=1, ge=1)
    command: List[str] = Field(default_factory=list)

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> Any:
        if isinstance(value, str):
            return shlex.split(value)
        return value

    def merged(self, **overrides: Any) -> "BackportSettings":
        """Return a copy with every non-``None`` override applied and validated."""
        updates = {key: value for key, value in overrides.items() if value is not None}
        if not updates:
            return self
        try:
            return BackportSettings.model_validate({**self.model_dump(), **updates})
        except ValidationError as error:
            raise ConfigError(str(error)) from error


def load_settings(config_path: Path | str | None, repo_root: Path | str) -> BackportSettings:
    """Load settings from ``config_path`` or the default file in ``repo_root``.

    A missing default file yields the built-in defaults; an explicitly named
    file must exist.
    """

    if config_path is None:
        candidate = Path(repo_root) / DEFAULT_CONFIG_NAME
        if not candidate.exists():
            return BackportSettings()
    else:
        candidate = Path(config_path)
        if not candidate.is_absolute():
            candidate = (Path.cwd() / candidate).resolve()
        if not candidate.exists():
            raise ConfigError(f"Config file not found: {candidate}")

    try:
        with candidate.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {candidate}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Unable to read config {candidate}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    try:
        return BackportSettings.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {candidate}: {error}") from error


__all__ = ["BackportSettings", "ConfigError", "DEFAULT_CONFIG_NAME", "load_settings"]
