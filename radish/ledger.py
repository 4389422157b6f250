"""
Radish Audit Ledger — Append-Only Session Record

Every session writes its own ledger under <sessions_dir>/<session_id>/:
  - metadata.json     written once at session start
  - events.json       every event in recording order
  - changes.json      [{file, action, timestamp}]
  - violations.json   [{kind, message, file, timestamp}]
  - checkpoints.json  [{revision, message, trigger, timestamp}]

Events are never edited or removed. flush() can run at any time
(external tooling tails the files mid-session) and replaces each file
atomically, so a reader never sees a half-written ledger.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from radish.governance import Violation
from radish.workspace import Checkpoint, ChangeRecord

FINALIZED = "session_finalized"


class SessionMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    started_at: datetime
    task: str
    agent: str
    timeout: float
    checkpoint_interval: float
    working_directory: str
    base_revision: str | None = None
    git_branch: str | None = None


class LedgerEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    seq: int
    type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)


class LedgerError(Exception):
    pass


class AuditLedger:
    """
    Append-only record of one session.

    Safe to append from the monitoring thread and the lifecycle driver.
    """

    METADATA_FILE = "metadata.json"
    EVENTS_FILE = "events.json"
    CHANGES_FILE = "changes.json"
    VIOLATIONS_FILE = "violations.json"
    CHECKPOINTS_FILE = "checkpoints.json"

    def __init__(self, session_dir: Path, session_id: str):
        self.session_dir = Path(session_dir)
        self.session_id = session_id
        self.metadata: SessionMetadata | None = None
        self._events: list[LedgerEvent] = []
        self._changes: list[ChangeRecord] = []
        self._violations: list[Violation] = []
        self._checkpoints: list[Checkpoint] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def write_metadata(self, metadata: SessionMetadata) -> None:
        """Write the session metadata record. Allowed exactly once."""
        with self._lock:
            if self.metadata is not None:
                raise LedgerError(f"Metadata already written for {self.session_id}")
            self.metadata = metadata
            self.session_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write_json(self.session_dir / self.METADATA_FILE, metadata.model_dump(mode="json"))

    def record_change(self, change: ChangeRecord) -> None:
        with self._lock:
            self._changes.append(change)
            self._append("change", change.model_dump(mode="json"))

    def record_violation(self, violation: Violation) -> None:
        with self._lock:
            self._violations.append(violation)
            self._append("violation", violation.model_dump(mode="json"))

    def record_checkpoint(self, checkpoint: Checkpoint) -> None:
        with self._lock:
            self._checkpoints.append(checkpoint)
            self._append("checkpoint", checkpoint.model_dump(mode="json"))

    def record_command(self, command: str) -> None:
        with self._lock:
            self._append("command", {"command": command})

    def record_event(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Free-form lifecycle event (status transitions, warnings)."""
        with self._lock:
            self._append(event_type, data or {})

    def record_finalized(self, status: str) -> None:
        with self._lock:
            self._append(FINALIZED, {"status": status})

    def _append(self, event_type: str, data: dict[str, Any]) -> None:
        event = LedgerEvent(seq=len(self._events), type=event_type, data=data)
        self._events.append(event)
        logger.debug(f"[LEDGER] {event_type}: {data}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def events(self) -> list[LedgerEvent]:
        with self._lock:
            return list(self._events)

    @property
    def changes(self) -> list[ChangeRecord]:
        with self._lock:
            return list(self._changes)

    @property
    def violations(self) -> list[Violation]:
        with self._lock:
            return list(self._violations)

    @property
    def checkpoints(self) -> list[Checkpoint]:
        with self._lock:
            return list(self._checkpoints)

    @property
    def finalize_count(self) -> int:
        return sum(1 for e in self.events if e.type == FINALIZED)

    @property
    def final_status(self) -> str | None:
        for event in reversed(self.events):
            if event.type == FINALIZED:
                return event.data.get("status")
        return None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Atomically rewrite every ledger file from the in-memory record."""
        with self._lock:
            events = [e.model_dump(mode="json") for e in self._events]
            changes = [c.to_record() for c in self._changes]
            violations = [v.to_record() for v in self._violations]
            checkpoints = [c.to_record() for c in self._checkpoints]

        self.session_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write_json(self.session_dir / self.EVENTS_FILE, events)
        _atomic_write_json(self.session_dir / self.CHANGES_FILE, changes)
        _atomic_write_json(self.session_dir / self.VIOLATIONS_FILE, violations)
        _atomic_write_json(self.session_dir / self.CHECKPOINTS_FILE, checkpoints)
        logger.debug(f"[LEDGER] Flushed {len(events)} events to {self.session_dir}")

    @classmethod
    def load(cls, session_dir: Path) -> "AuditLedger":
        """Rebuild a ledger from a flushed session directory (read-only use)."""
        session_dir = Path(session_dir)
        events_file = session_dir / cls.EVENTS_FILE
        if not events_file.exists():
            raise LedgerError(f"No ledger found in {session_dir}")

        metadata = None
        metadata_file = session_dir / cls.METADATA_FILE
        if metadata_file.exists():
            metadata = SessionMetadata.model_validate_json(metadata_file.read_text())

        ledger = cls(session_dir, metadata.session_id if metadata else session_dir.name)
        ledger.metadata = metadata

        for raw in json.loads(events_file.read_text()):
            event = LedgerEvent.model_validate(raw)
            ledger._events.append(event)
            if event.type == "change":
                ledger._changes.append(ChangeRecord.model_validate(event.data))
            elif event.type == "violation":
                ledger._violations.append(Violation.model_validate(event.data))
            elif event.type == "checkpoint":
                ledger._checkpoints.append(Checkpoint.model_validate(event.data))
        return ledger


def atomic_write_text(path: Path, text: str) -> None:
    """Write to a temp file in the same directory, then rename over `path`."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _atomic_write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, indent=2) + "\n")
