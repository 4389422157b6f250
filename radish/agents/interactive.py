"""
Operator-driven agent.

Radish keeps guarding the working tree while a human runs the
agent in another terminal. Pressing Enter ends the session normally;
closing stdin leaves it running until timeout or Ctrl+C.
"""

from __future__ import annotations

import sys
import threading
from typing import TextIO

from loguru import logger
from rich.console import Console
from rich.panel import Panel

from radish.agents import AgentAdapter, AgentContext
from radish.cancel import CancelToken

# Exit code reported when the operator's session is cut short
TERMINATED = -15


class InteractiveAgent(AgentAdapter):
    def __init__(self, kind: str = "claude", stream: TextIO | None = None, console: Console | None = None):
        self.kind = kind
        self.stream = stream
        self.console = console or Console()
        self._returncode: int | None = None
        self._lock = threading.Lock()

    def start(self, token: CancelToken, context: AgentContext) -> None:
        self.console.print(Panel(
            f"[bold]Radish guardrails active.[/] Session: {context.session_id}\n"
            f"Checkpoints every {context.checkpoint_interval:g}s | Timeout: {context.timeout:g}s\n\n"
            f"Run your {self.kind} session now in [bold]{context.working_dir}[/].\n"
            f"Press [bold]Enter[/] to end the session, Ctrl+C to abort.",
            title="🌱 RADISH",
            border_style="green",
        ))
        logger.info(f"[AGENT] Waiting for operator ({self.kind})")
        threading.Thread(target=self._wait_for_operator, name="radish-operator", daemon=True).start()

    def _wait_for_operator(self) -> None:
        stream = self.stream or sys.stdin
        try:
            line = stream.readline()
        except (OSError, ValueError):
            return
        if line == "":
            # EOF: nobody is at the keyboard
            return
        self._finish(0)

    def _finish(self, code: int) -> None:
        with self._lock:
            if self._returncode is None:
                self._returncode = code

    def poll(self) -> int | None:
        return self._returncode

    def terminate(self) -> None:
        self._finish(TERMINATED)
