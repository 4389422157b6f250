"""
Radish Policy — the blast radius an agent is allowed to touch.

Immutable once built. Forbidden globs always beat allowed globs.
"""

from __future__ import annotations

import fnmatch
import re
from decimal import Decimal
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator


class OnViolation(str, Enum):
    STOP = "stop"
    WARN = "warn"
    CHECKPOINT_AND_CONTINUE = "checkpoint_and_continue"


DEFAULT_FORBIDDEN_PATHS = (
    ".env",
    ".env.*",
    "*.pem",
    "*.key",
    "secrets/**",
    "credentials/**",
)

DEFAULT_FORBIDDEN_COMMANDS = (
    "rm -rf /",
    "rm -rf ~",
    "rm -rf *",
    "DROP DATABASE",
    "DROP TABLE",
    "TRUNCATE",
    "mkfs",
)

DEFAULT_MAX_FILES_CHANGED = 50
DEFAULT_MAX_LINES_CHANGED = 2000
DEFAULT_MAX_COST_USD = Decimal("10")


def validate_glob(pattern: str) -> str:
    """Reject globs that are empty or have an unterminated character class."""
    if not isinstance(pattern, str) or not pattern.strip():
        raise ValueError("glob must be a non-empty string")
    if "\x00" in pattern:
        raise ValueError(f"glob contains a NUL byte: {pattern!r}")

    depth = 0
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        # Inside an open class '[' is just a member
        if ch == "[" and not depth:
            depth = 1
            # A ']' directly after '[' or '[!' is a literal member
            if pattern[i + 1:i + 2] == "!":
                i += 1
            if pattern[i + 1:i + 2] == "]":
                i += 1
        elif ch == "]" and depth:
            depth = 0
        i += 1
    if depth:
        raise ValueError(f"unterminated character class in glob: {pattern!r}")

    try:
        re.compile(fnmatch.translate(pattern))
    except re.error as e:
        raise ValueError(f"invalid glob {pattern!r}: {e}") from e
    return pattern


def glob_matches(pattern: str, path: str) -> bool:
    """
    Case-sensitive glob match against a repo-relative POSIX path.

    `*` crosses directory separators, so `secrets/**` covers every
    nested file. Globs without a `/` are also tried against the
    basename, the way .gitignore treats them.
    """
    normalized = PurePosixPath(path.replace("\\", "/")).as_posix()
    if fnmatch.fnmatchcase(normalized, pattern):
        return True
    if "/" not in pattern:
        return fnmatch.fnmatchcase(PurePosixPath(normalized).name, pattern)
    return False


class Policy(BaseModel):
    """
    Declarative guardrails for one session.

    A path is forbidden when it matches any forbidden glob, or when
    allowed globs are configured and the path matches none of them.
    """

    model_config = ConfigDict(frozen=True)

    allowed_paths: frozenset[str] = frozenset()
    forbidden_paths: frozenset[str] = frozenset(DEFAULT_FORBIDDEN_PATHS)
    forbidden_commands: frozenset[str] = frozenset(DEFAULT_FORBIDDEN_COMMANDS)
    max_files_changed: int = Field(default=DEFAULT_MAX_FILES_CHANGED, ge=0)
    max_lines_changed: int = Field(default=DEFAULT_MAX_LINES_CHANGED, ge=0)
    max_cost_usd: Decimal = Field(default=DEFAULT_MAX_COST_USD, ge=0)
    on_violation: OnViolation = OnViolation.STOP

    @field_validator("allowed_paths", "forbidden_paths", mode="before")
    @classmethod
    def _check_globs(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(validate_glob(p) for p in value)

    @field_validator("forbidden_commands", mode="before")
    @classmethod
    def _check_commands(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        commands = frozenset(value)
        if any(not isinstance(c, str) or not c for c in commands):
            raise ValueError("forbidden commands must be non-empty strings")
        return commands

    @field_validator("on_violation", mode="before")
    @classmethod
    def _default_action(cls, value: Any) -> Any:
        if value is None:
            return OnViolation.STOP
        if isinstance(value, OnViolation):
            return value
        try:
            return OnViolation(str(value).strip().lower())
        except ValueError:
            logger.warning(f"[POLICY] Unrecognized on_violation {value!r}, using 'stop'")
            return OnViolation.STOP

    @classmethod
    def defaults(cls) -> "Policy":
        """Conservative built-in policy used when no config exists."""
        return cls()

    def matches_forbidden(self, path: str) -> bool:
        if any(glob_matches(p, path) for p in self.forbidden_paths):
            return True
        if self.allowed_paths:
            return not any(glob_matches(p, path) for p in self.allowed_paths)
        return False

    def matches_forbidden_command(self, text: str) -> bool:
        return any(cmd in text for cmd in self.forbidden_commands)

    def forbidden_commands_in(self, text: str) -> list[str]:
        """Forbidden substrings contained in `text`, in stable (sorted) order."""
        return [cmd for cmd in sorted(self.forbidden_commands) if cmd in text]
