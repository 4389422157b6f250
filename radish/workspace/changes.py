"""
Radish Change Inspector — what changed between two points in history.

Read-only. File count and line count come from two separate git
queries (name-status and numstat) so neither depends on how git
formats a human-readable summary line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from radish.workspace.git import EMPTY_TREE, GitRepo

# Bytes sniffed to decide whether an untracked file is binary
_BINARY_SNIFF = 8000


class ChangeAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


_STATUS_ACTIONS = {
    "A": ChangeAction.CREATED,
    "D": ChangeAction.DELETED,
}


class ChangeRecord(BaseModel):
    """One file touched between two checkpoints, as written to the ledger."""

    model_config = ConfigDict(frozen=True)

    path: str
    action: ChangeAction
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict[str, str]:
        return {
            "file": self.path,
            "action": self.action.value,
            "timestamp": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class FileChange:
    path: str
    action: ChangeAction
    insertions: int = 0
    deletions: int = 0

    @property
    def lines(self) -> int:
        return self.insertions + self.deletions


@dataclass(frozen=True)
class ChangeSet:
    """Changed files in diff order, plus the two aggregate counters."""

    from_ref: str
    to_ref: str | None = None
    files: tuple[FileChange, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> "ChangeSet":
        return cls(from_ref=EMPTY_TREE)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    @property
    def files_changed(self) -> int:
        return len(self.files)

    @property
    def lines_changed(self) -> int:
        return sum(f.lines for f in self.files)

    def records(self, observed_at: datetime | None = None) -> list[ChangeRecord]:
        ts = observed_at or datetime.now(timezone.utc)
        return [ChangeRecord(path=f.path, action=f.action, observed_at=ts) for f in self.files]


class ChangeInspector:
    """
    Diffs a git working tree.

    `from_ref=None` (or a repo with no commits) means the empty tree.
    `to_ref=None` means the working tree, untracked files included.
    """

    def __init__(self, repo: GitRepo):
        self.repo = repo

    def inspect(self, from_ref: str | None = None, to_ref: str | None = None) -> ChangeSet:
        base = from_ref or EMPTY_TREE
        if self.repo.head() is None:
            base = EMPTY_TREE

        revs = [base] if to_ref is None else [base, to_ref]
        pathspec = self.repo.pathspec()

        actions = self._name_status(
            self.repo.git("diff", "--no-renames", "--name-status", "-z", *revs, *pathspec)
        )
        counts = self._numstat(
            self.repo.git("diff", "--no-renames", "--numstat", "-z", *revs, *pathspec)
        )

        files: dict[str, FileChange] = {}
        for path, action in actions.items():
            ins, dels = counts.get(path, (0, 0))
            files[path] = FileChange(path=path, action=action, insertions=ins, deletions=dels)

        if to_ref is None:
            for path in self._untracked(pathspec):
                if path not in files:
                    files[path] = FileChange(
                        path=path,
                        action=ChangeAction.CREATED,
                        insertions=self._count_lines(path),
                    )

        change_set = ChangeSet(from_ref=base, to_ref=to_ref, files=tuple(files.values()))
        logger.debug(
            f"[INSPECT] {base[:8]}..{(to_ref or 'worktree')[:8]}: "
            f"{change_set.files_changed} files, {change_set.lines_changed} lines"
        )
        return change_set

    @staticmethod
    def _name_status(output: str) -> dict[str, ChangeAction]:
        tokens = [t for t in output.split("\0") if t]
        actions: dict[str, ChangeAction] = {}
        for status, path in zip(tokens[0::2], tokens[1::2]):
            actions.setdefault(path, _STATUS_ACTIONS.get(status[:1], ChangeAction.MODIFIED))
        return actions

    @staticmethod
    def _numstat(output: str) -> dict[str, tuple[int, int]]:
        counts: dict[str, tuple[int, int]] = {}
        for record in output.split("\0"):
            parts = record.split("\t", 2)
            if len(parts) != 3:
                continue
            ins, dels, path = parts
            # Binary files report "-" for both columns
            counts[path] = (
                int(ins) if ins.isdigit() else 0,
                int(dels) if dels.isdigit() else 0,
            )
        return counts

    def _untracked(self, pathspec: list[str]) -> list[str]:
        output = self.repo.git(
            "ls-files", "--others", "--exclude-standard", "--full-name", "-z", *pathspec
        )
        return [p for p in output.split("\0") if p]

    def _count_lines(self, rel_path: str) -> int:
        full = self.repo.toplevel / rel_path
        try:
            data = full.read_bytes()
        except OSError:
            return 0
        if b"\0" in data[:_BINARY_SNIFF]:
            return 0
        lines = data.count(b"\n")
        if data and not data.endswith(b"\n"):
            lines += 1
        return lines
