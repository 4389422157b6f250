"""
Thin git runner shared by the checkpoint manager and change inspector.

Every call is bounded by a timeout and every failure surfaces as a
CheckpointError so callers have one thing to catch.
"""

from __future__ import annotations

import subprocess
from functools import cached_property
from pathlib import Path
from typing import Iterable

from loguru import logger

# Tree every history starts from: `git hash-object -t tree /dev/null`
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

GIT_TIMEOUT = 60


class CheckpointError(Exception):
    """A version-control operation failed."""


class GitRepo:
    """
    A git working tree, addressed from any directory inside it.

    `exclude` lists paths (absolute, or relative to the repo root) that
    radish itself writes to; they are left out of every status, diff,
    add and clean.
    """

    def __init__(self, path: Path, exclude: Iterable[Path | str] = ()):
        self.path = Path(path).resolve()
        self._exclude = tuple(exclude)

    @cached_property
    def is_repository(self) -> bool:
        try:
            result = self._run_cmd(["git", "rev-parse", "--is-inside-work-tree"], check=False)
        except CheckpointError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    @cached_property
    def toplevel(self) -> Path:
        return Path(self.git("rev-parse", "--show-toplevel").strip())

    def head(self) -> str | None:
        """Current HEAD sha, or None when the repository has no commits."""
        result = self._run_cmd(["git", "rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def resolve(self, revision: str) -> str:
        """Resolve a revision to a full commit sha."""
        result = self._run_cmd(
            ["git", "rev-parse", "--verify", "--quiet", f"{revision}^{{commit}}"],
            check=False,
        )
        if result.returncode != 0 or not result.stdout.strip():
            raise CheckpointError(f"Unknown revision: {revision}")
        return result.stdout.strip()

    @property
    def excluded(self) -> list[str]:
        """Excluded paths relative to the repo root."""
        rel: list[str] = []
        for entry in self._exclude:
            p = Path(entry)
            if p.is_absolute():
                try:
                    p = p.resolve().relative_to(self.toplevel)
                except ValueError:
                    continue
            rel.append(p.as_posix())
        return rel

    def pathspec(self) -> list[str]:
        """Whole-tree pathspec minus excluded paths."""
        return ["--", ":(top)", *(f":(top,exclude){p}" for p in self.excluded)]

    def identity_args(self) -> list[str]:
        """Fallback committer identity, only when git has none configured."""
        args = ["-c", "commit.gpgsign=false"]
        result = self._run_cmd(["git", "config", "user.email"], check=False)
        if result.returncode != 0 or not result.stdout.strip():
            args += ["-c", "user.name=radish", "-c", "user.email=radish@localhost"]
        return args

    def git(self, *args: str, check: bool = True) -> str:
        """Run a git command in the working tree and return stdout."""
        return self._run_cmd(["git", *args], check=check).stdout

    def _run_cmd(self, cmd: list[str], check: bool = True) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                cmd,
                cwd=self.path,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
            )
        except FileNotFoundError as e:
            raise CheckpointError(f"git not available: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise CheckpointError(f"Command timed out after {GIT_TIMEOUT}s: {' '.join(cmd)}") from e

        if check and result.returncode != 0:
            logger.debug(f"[GIT] {' '.join(cmd)} failed: {result.stderr.strip()}")
            raise CheckpointError(
                f"Command failed: {' '.join(cmd)}\n"
                f"stderr: {result.stderr}\n"
                f"stdout: {result.stdout}"
            )
        return result
