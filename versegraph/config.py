"""Load versegraph configuration from TOML (e.g. versegraph.toml).

Config file is looked up in order:
  1. Explicit path passed to load_config()
  2. Path in the VERSEGRAPH_CONFIG env var (if set)
  3. versegraph.toml in the current working directory

If no file is found, built-in defaults are used. Example file:

    [fetch]
    timeout_ms = 10000
    include_notes = true

    [sync]
    batch_size = 10
    max_consecutive_failures = 3
    backoff_seconds = 60
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

from versegraph.exceptions import ConfigError

CONFIG_ENV_VAR = "VERSEGRAPH_CONFIG"
CONFIG_FILENAME = "versegraph.toml"

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_SYNC_BATCH_SIZE = 10
DEFAULT_MAX_CONSECUTIVE_FAILURES = 3
DEFAULT_BACKOFF_SECONDS = 60.0


class FetchConfig(BaseModel, frozen=True):
    """Settings for the fetch orchestrator and expansion engine."""

    timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        gt=0,
        description="Watchdog timeout for one load or expand operation.",
    )
    include_notes: bool = Field(
        default=False,
        description="Whether expanding a verse also pulls in its notes.",
    )
    create_missing_verses: bool = Field(
        default=False,
        description="Whether load_references creates verses missing from the store.",
    )
    default_translation: str = Field(default="KJV", min_length=1)
    sync_after_load: bool = Field(
        default=False,
        description="Schedule a background sync pass after each successful load.",
    )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class SyncConfig(BaseModel, frozen=True):
    """Settings for the background sync service."""

    batch_size: int = Field(
        default=DEFAULT_SYNC_BATCH_SIZE,
        ge=1,
        description="Maximum pushes per entity class per pass.",
    )
    max_consecutive_failures: int = Field(
        default=DEFAULT_MAX_CONSECUTIVE_FAILURES,
        ge=1,
        description="Failed passes in a row before sync enters backoff.",
    )
    backoff_seconds: float = Field(
        default=DEFAULT_BACKOFF_SECONDS,
        ge=0.0,
        description="How long sync attempts are refused once in backoff.",
    )


class VerseGraphConfig(BaseModel, frozen=True):
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


def _default_config_paths() -> list[Path]:
    """Return paths to check for versegraph.toml (first existing wins)."""
    paths: list[Path] = []
    if os.environ.get(CONFIG_ENV_VAR):
        paths.append(Path(os.environ[CONFIG_ENV_VAR]))
    paths.append(Path.cwd() / CONFIG_FILENAME)
    return paths


def load_config(path: Path | str | None = None) -> VerseGraphConfig:
    """Load configuration from a TOML file.

    Args:
        path: Explicit config file. When given it must exist.

    Raises:
        ConfigError: if the file can't be read or isn't valid TOML.
        pydantic.ValidationError: if a value is out of range.
    """
    if path is not None:
        candidates = [Path(path)]
        if not candidates[0].is_file():
            raise ConfigError(f"Config file not found: {path}")
    else:
        candidates = _default_config_paths()

    for candidate in candidates:
        if not candidate.is_file():
            continue
        try:
            with open(candidate, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {candidate}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {candidate}: {e}") from e
        return VerseGraphConfig(
            fetch=FetchConfig(**data.get("fetch", {})),
            sync=SyncConfig(**data.get("sync", {})),
        )
    return VerseGraphConfig()
