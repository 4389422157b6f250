"""
Radish Config Loader

Reads radish.yaml into typed settings. A missing file is fine (the
built-in conservative policy applies); a file that exists but cannot
be parsed or validated raises ConfigError.

Example radish.yaml:

    session:
      timeout: 3600
      checkpoint_interval: 300
      agent: claude
    guardrails:
      allowed_paths: ["src/**", "tests/**"]
      forbidden_paths: [".env", "secrets/**"]
      forbidden_commands: ["rm -rf /", "DROP TABLE"]
    limits:
      max_files_changed: 50
      max_lines_changed: 2000
      max_cost_usd: 10.00
    on_violation: stop
    telemetry:
      enabled: false
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from radish.governance.policy import (
    DEFAULT_FORBIDDEN_COMMANDS,
    DEFAULT_FORBIDDEN_PATHS,
    DEFAULT_MAX_COST_USD,
    DEFAULT_MAX_FILES_CHANGED,
    DEFAULT_MAX_LINES_CHANGED,
    Policy,
)

CONFIG_FILENAMES = ("radish.yaml", ".radish/radish.yaml")
TELEMETRY_ENV = "RADISH_TELEMETRY"


class ConfigError(Exception):
    """Config source exists but is malformed."""


class SessionSettings(BaseModel):
    timeout: float = Field(default=3600, gt=0)
    checkpoint_interval: float = Field(default=300, gt=0)
    agent: str = "claude"


class GuardrailSettings(BaseModel):
    allowed_paths: list[str] = Field(default_factory=list)
    forbidden_paths: list[str] = Field(default_factory=lambda: list(DEFAULT_FORBIDDEN_PATHS))
    forbidden_commands: list[str] = Field(default_factory=lambda: list(DEFAULT_FORBIDDEN_COMMANDS))


class LimitSettings(BaseModel):
    max_files_changed: int = Field(default=DEFAULT_MAX_FILES_CHANGED, ge=0)
    max_lines_changed: int = Field(default=DEFAULT_MAX_LINES_CHANGED, ge=0)
    max_cost_usd: Decimal = Field(default=DEFAULT_MAX_COST_USD, ge=0)


class TelemetrySettings(BaseModel):
    enabled: bool = False
    endpoint: str | None = None
    timeout: float = Field(default=5.0, gt=0)


class LoggingSettings(BaseModel):
    sessions_dir: str = ".radish/sessions"


class RadishConfig(BaseModel):
    session: SessionSettings = Field(default_factory=SessionSettings)
    guardrails: GuardrailSettings = Field(default_factory=GuardrailSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    # Policy maps unrecognized values to "stop"
    on_violation: Any = "stop"
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    source: Path | None = Field(default=None, exclude=True)

    def policy(self) -> Policy:
        """Build the immutable session policy. Raises ConfigError on bad globs."""
        try:
            return Policy(
                allowed_paths=self.guardrails.allowed_paths,
                forbidden_paths=self.guardrails.forbidden_paths,
                forbidden_commands=self.guardrails.forbidden_commands,
                max_files_changed=self.limits.max_files_changed,
                max_lines_changed=self.limits.max_lines_changed,
                max_cost_usd=self.limits.max_cost_usd,
                on_violation=self.on_violation,
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid guardrails: {e}") from e

    @property
    def telemetry_enabled(self) -> bool:
        """Config toggle, overridden by RADISH_TELEMETRY when set."""
        env = os.environ.get(TELEMETRY_ENV)
        if env is not None:
            return env.strip().lower() in ("1", "true", "yes", "on")
        return self.telemetry.enabled


def find_config(repo_path: Path) -> Path | None:
    for name in CONFIG_FILENAMES:
        candidate = repo_path / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path | None = None, repo_path: Path | None = None) -> RadishConfig:
    """
    Load radish.yaml.

    With no explicit path, looks for radish.yaml then .radish/radish.yaml
    under `repo_path` (default: cwd). Missing → defaults.
    """
    if path is None:
        path = find_config((repo_path or Path.cwd()).resolve())
        if path is None:
            logger.warning("[CONFIG] No radish.yaml found, using conservative defaults")
            return RadishConfig()
    elif not path.exists():
        logger.warning(f"[CONFIG] Config file not found: {path}, using defaults")
        return RadishConfig()

    try:
        raw: Any = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(raw).__name__}")

    try:
        config = RadishConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e

    config.source = path
    # Validate globs now rather than at session start
    config.policy()
    logger.info(f"[CONFIG] Loaded config from {path}")
    return config


def load_config_or_defaults(path: Path | None = None, repo_path: Path | None = None) -> RadishConfig:
    """Like load_config, but a broken config degrades to defaults with a warning."""
    try:
        return load_config(path, repo_path)
    except ConfigError as e:
        logger.warning(f"[CONFIG] {e}")
        logger.warning("[CONFIG] Falling back to conservative defaults")
        return RadishConfig()
