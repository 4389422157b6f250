"""Run the coding agent as a child process in the session's working tree."""

from __future__ import annotations

import os
import subprocess
import threading

from loguru import logger

from radish.agents import AgentAdapter, AgentAdapterError, AgentContext
from radish.cancel import CancelToken


class ProcessAgent(AgentAdapter):
    """
    Subprocess-backed agent.

    Output goes straight to the terminal. The session id, task and
    command-log path are exported so agent hooks can report the
    commands they run.
    """

    def __init__(self, argv: list[str], kind: str = "command", grace_period: float = 5.0):
        self.argv = list(argv)
        self.kind = kind
        self.grace_period = grace_period
        self._proc: subprocess.Popen | None = None
        self._lock = threading.Lock()

    def start(self, token: CancelToken, context: AgentContext) -> None:
        argv = [part.replace("{task}", context.task) for part in self.argv]
        env = {**os.environ, **context.env()}
        try:
            self._proc = subprocess.Popen(argv, cwd=context.working_dir, env=env)
        except OSError as e:
            raise AgentAdapterError(f"Could not start agent {argv[0]!r}: {e}") from e

        logger.info(f"[AGENT] Started {self.kind} (pid {self._proc.pid}): {' '.join(argv)}")
        threading.Thread(target=self._watch, args=(token,), name="radish-agent-watch", daemon=True).start()

    def _watch(self, token: CancelToken) -> None:
        token.wait()
        if self.poll() is None:
            logger.info(f"[AGENT] Cancelled ({token.reason}), terminating {self.kind}")
            self.terminate()

    def poll(self) -> int | None:
        if self._proc is None:
            return None
        return self._proc.poll()

    def terminate(self) -> None:
        with self._lock:
            proc = self._proc
            if proc is None or proc.poll() is not None:
                return
            proc.terminate()
            try:
                proc.wait(timeout=self.grace_period)
            except subprocess.TimeoutExpired:
                logger.warning(f"[AGENT] {self.kind} ignored SIGTERM, killing")
                proc.kill()
                proc.wait(timeout=self.grace_period)
