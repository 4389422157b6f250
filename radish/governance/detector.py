"""
Radish Violation Detector

Checks one monitoring cycle's state against the policy:
  1. forbidden paths
  2. forbidden commands (each matched command reported once per session)
  3. potential secrets in changed files
  4. file / line limits since the session's base revision

Report order follows check order. The only memory carried between
cycles is the set of already-reported commands, which callers pass in
and get back explicitly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from radish.governance.policy import Policy
from radish.workspace.changes import ChangeAction, ChangeSet

# Secret scan reads at most this much of each file
MAX_SCAN_BYTES = 1024 * 1024

SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"""(?i)password\s*=\s*['"][^'"]+['"]"""),
    re.compile(r"""(?i)api_key\s*=\s*['"][^'"]+['"]"""),
    re.compile(r"""(?i)secret\s*=\s*['"][^'"]+['"]"""),
    re.compile(r"AWS_SECRET"),
    re.compile(r"PRIVATE_KEY"),
    re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |PGP )?PRIVATE KEY"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bghp_[A-Za-z0-9]{36}\b"),
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{22,}\b"),
    re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{20,}"),
    re.compile(r"\bxox[abprs]-[A-Za-z0-9-]{10,}"),
)


class ViolationKind(str, Enum):
    FORBIDDEN_PATH = "FORBIDDEN_PATH"
    FORBIDDEN_COMMAND = "FORBIDDEN_COMMAND"
    POTENTIAL_SECRET = "POTENTIAL_SECRET"
    FILE_LIMIT = "FILE_LIMIT"
    LINE_LIMIT = "LINE_LIMIT"


class Violation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ViolationKind
    detail: str
    file: str | None = None
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict[str, str | None]:
        return {
            "kind": self.kind.value,
            "message": self.detail,
            "file": self.file,
            "timestamp": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class DetectionResult:
    violations: list[Violation] = field(default_factory=list)
    reported_commands: frozenset[str] = frozenset()

    @property
    def clean(self) -> bool:
        return not self.violations

    def check_results(self) -> dict[str, bool]:
        """Which of the four checks fired this cycle."""
        kinds = {v.kind for v in self.violations}
        return {
            "forbidden_paths": ViolationKind.FORBIDDEN_PATH in kinds,
            "forbidden_commands": ViolationKind.FORBIDDEN_COMMAND in kinds,
            "secrets": ViolationKind.POTENTIAL_SECRET in kinds,
            "file_limits": bool(kinds & {ViolationKind.FILE_LIMIT, ViolationKind.LINE_LIMIT}),
        }


class ViolationDetector:
    """
    Evaluates a Policy against changes, the command log and file contents.

    Usage:
        detector = ViolationDetector(policy, repo_root)
        result = detector.evaluate(cycle_changes, totals, command_lines, reported)
        reported = result.reported_commands
    """

    def __init__(self, policy: Policy, root: Path):
        self.policy = policy
        self.root = Path(root)

    def evaluate(
        self,
        changes: ChangeSet,
        totals: ChangeSet,
        command_lines: Iterable[str],
        reported_commands: frozenset[str] = frozenset(),
    ) -> DetectionResult:
        violations: list[Violation] = []
        violations += self.check_forbidden_paths(changes)
        command_violations, reported = self.check_forbidden_commands(command_lines, reported_commands)
        violations += command_violations
        violations += self.check_secrets(changes)
        violations += self.check_limits(totals)

        for v in violations:
            logger.warning(f"[DETECTOR] {v.kind.value}: {v.detail}" + (f" ({v.file})" if v.file else ""))
        return DetectionResult(violations=violations, reported_commands=reported)

    def check_forbidden_paths(self, changes: ChangeSet) -> list[Violation]:
        return [
            Violation(
                kind=ViolationKind.FORBIDDEN_PATH,
                detail="Modified forbidden file",
                file=path,
            )
            for path in changes.paths
            if self.policy.matches_forbidden(path)
        ]

    def check_forbidden_commands(
        self,
        command_lines: Iterable[str],
        reported_commands: frozenset[str],
    ) -> tuple[list[Violation], frozenset[str]]:
        reported = set(reported_commands)
        violations: list[Violation] = []
        for line in command_lines:
            for cmd in self.policy.forbidden_commands_in(line):
                if cmd in reported:
                    continue
                reported.add(cmd)
                violations.append(Violation(
                    kind=ViolationKind.FORBIDDEN_COMMAND,
                    detail=f"Attempted forbidden command: {cmd}",
                ))
        return violations, frozenset(reported)

    def check_secrets(self, changes: ChangeSet) -> list[Violation]:
        violations = []
        for change in changes.files:
            if change.action == ChangeAction.DELETED:
                continue
            text = self._read(change.path)
            if text is None:
                continue
            for pattern in SECRET_PATTERNS:
                if pattern.search(text):
                    violations.append(Violation(
                        kind=ViolationKind.POTENTIAL_SECRET,
                        detail="Possible secret in file",
                        file=change.path,
                    ))
                    break
        return violations

    def check_limits(self, totals: ChangeSet) -> list[Violation]:
        violations = []
        files, lines = totals.files_changed, totals.lines_changed
        if files > self.policy.max_files_changed:
            violations.append(Violation(
                kind=ViolationKind.FILE_LIMIT,
                detail=f"Too many files changed: {files} (max: {self.policy.max_files_changed})",
            ))
        if lines > self.policy.max_lines_changed:
            violations.append(Violation(
                kind=ViolationKind.LINE_LIMIT,
                detail=f"Too many lines changed: {lines} (max: {self.policy.max_lines_changed})",
            ))
        return violations

    def _read(self, rel_path: str) -> str | None:
        full = self.root / rel_path
        if not full.is_file():
            return None
        try:
            with open(full, "rb") as f:
                data = f.read(MAX_SCAN_BYTES)
        except OSError as e:
            logger.debug(f"[DETECTOR] Could not read {rel_path}: {e}")
            return None
        return data.decode("utf-8", errors="ignore")
