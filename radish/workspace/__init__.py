"""
Radish Checkpoints

Snapshots the agent's working tree as git commits so every
monitoring cycle leaves a point the operator can roll back to.
Checkpoints form a linear chain on the current branch, rooted
at the session's base revision.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from radish.workspace.changes import ChangeAction, ChangeInspector, ChangeRecord, ChangeSet, FileChange
from radish.workspace.git import EMPTY_TREE, CheckpointError, GitRepo

__all__ = [
    "EMPTY_TREE",
    "ChangeAction",
    "ChangeInspector",
    "ChangeRecord",
    "ChangeSet",
    "Checkpoint",
    "CheckpointError",
    "CheckpointManager",
    "CheckpointTrigger",
    "FileChange",
    "GitRepo",
]


class CheckpointTrigger(str, Enum):
    MANUAL = "manual"
    PERIODIC = "periodic"
    FINAL = "final"


class Checkpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    revision_id: str
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    trigger: CheckpointTrigger = CheckpointTrigger.MANUAL

    def to_record(self) -> dict[str, str]:
        return {
            "revision": self.revision_id,
            "message": self.message,
            "trigger": self.trigger.value,
            "timestamp": self.created_at.isoformat(),
        }


class CheckpointManager:
    """
    Creates and rolls back git checkpoints for one session.

    Lifecycle:
        manager = CheckpointManager(GitRepo(path), session_id)
        manager.checkpoint("Session start")
        # ... agent works ...
        manager.checkpoint("Periodic checkpoint", CheckpointTrigger.PERIODIC)
        manager.rollback(revision)   # operator only
    """

    def __init__(self, repo: GitRepo, session_id: str):
        self.repo = repo
        self.session_id = session_id
        self._chain: list[Checkpoint] = []

    @property
    def available(self) -> bool:
        return self.repo.is_repository

    @property
    def checkpoints(self) -> tuple[Checkpoint, ...]:
        return tuple(self._chain)

    @property
    def last_revision(self) -> str | None:
        """Revision of the newest checkpoint, falling back to HEAD."""
        if self._chain:
            return self._chain[-1].revision_id
        if not self.available:
            return None
        return self.repo.head()

    def head(self) -> str | None:
        if not self.available:
            return None
        return self.repo.head()

    def checkpoint(
        self,
        message: str = "Auto-checkpoint",
        trigger: CheckpointTrigger = CheckpointTrigger.MANUAL,
    ) -> Checkpoint | None:
        """
        Commit every pending change in the working tree.

        Returns None when there is nothing to commit.
        Raises CheckpointError when git refuses (no repo, lock held, ...).
        """
        if not self.available:
            raise CheckpointError(f"Not a git repository: {self.repo.path}")

        pathspec = self.repo.pathspec()
        pending = self.repo.git("status", "--porcelain", "--untracked-files=all", *pathspec)
        if not pending.strip():
            logger.info("[CHECKPOINT] No changes to checkpoint")
            return None

        commit_message = f"[radish] {message} ({self.session_id}) [{trigger.value}]"
        self.repo.git("add", "-A", *pathspec)
        self.repo.git(*self.repo.identity_args(), "commit", "--no-verify", "--quiet", "-m", commit_message)

        sha = self.repo.head()
        if sha is None:
            raise CheckpointError("Commit succeeded but HEAD is unresolvable")

        cp = Checkpoint(revision_id=sha, message=message, trigger=trigger)
        self._chain.append(cp)
        logger.info(f"[CHECKPOINT] {sha[:8]} — {message}")
        return cp

    def rollback(self, revision_id: str) -> str:
        """
        Reset the working tree to `revision_id`, discarding later work.

        Destructive. Never called by the session itself.
        """
        if not self.available:
            raise CheckpointError(f"Not a git repository: {self.repo.path}")

        sha = self.repo.resolve(revision_id)
        self.repo.git("reset", "--hard", "--quiet", sha)
        clean_args = ["clean", "-fd", "--quiet"]
        for path in self.repo.excluded:
            clean_args += ["-e", path]
        self.repo.git(*clean_args)

        for i, cp in enumerate(self._chain):
            if cp.revision_id == sha:
                del self._chain[i + 1:]
                break
        else:
            self._chain.clear()

        logger.warning(f"[CHECKPOINT] Rolled back to {sha[:8]}")
        return sha
