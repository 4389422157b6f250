"""
Radish Command Log

Append-only text stream of the commands an agent executed, one per
line. Agent hooks append to it (they find it via RADISH_COMMAND_LOG);
the violation detector only ever reads it.
"""

from __future__ import annotations

import threading
from pathlib import Path


class CommandLog:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._offset = 0

    def touch(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    def append(self, command: str) -> None:
        """Append one command. Embedded newlines are flattened to spaces."""
        line = " ".join(command.splitlines()).strip()
        if not line:
            return
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read(self) -> list[str]:
        """Every complete line in the log."""
        if not self.path.exists():
            return []
        text = self.path.read_text(encoding="utf-8", errors="replace")
        return [ln for ln in text.splitlines() if ln.strip()]

    def read_new(self) -> list[str]:
        """Complete lines appended since the previous read_new() call."""
        if not self.path.exists():
            return []
        with self._lock:
            with open(self.path, "rb") as f:
                f.seek(self._offset)
                chunk = f.read()
            # Leave a trailing partial line for the next call
            end = chunk.rfind(b"\n")
            if end < 0:
                return []
            self._offset += end + 1
        text = chunk[:end + 1].decode("utf-8", errors="replace")
        return [ln for ln in text.splitlines() if ln.strip()]
