"""
Radish Agent Adapters

Radish never drives the coding agent itself. An adapter only has to
start it, report whether it is still running, and stop it on demand.

    adapter = build_agent("claude", command="claude -p '{task}'")
    adapter.start(token, context)
    while adapter.poll() is None: ...
    adapter.terminate()
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from radish.cancel import CancelToken

AGENT_KINDS = ("claude", "cursor", "aider", "command")


class AgentAdapterError(Exception):
    """The agent could not be started or died unexpectedly."""


@dataclass
class AgentContext:
    """What an adapter needs to know about the session it runs in."""

    session_id: str
    task: str
    working_dir: Path
    command_log: Path
    timeout: float
    checkpoint_interval: float

    def env(self) -> dict[str, str]:
        return {
            "RADISH_SESSION_ID": self.session_id,
            "RADISH_COMMAND_LOG": str(self.command_log),
            "RADISH_TASK": self.task,
        }


class AgentAdapter(ABC):
    kind: str = "agent"

    @abstractmethod
    def start(self, token: CancelToken, context: AgentContext) -> None:
        """Launch the agent. Raises AgentAdapterError if it cannot start."""

    @abstractmethod
    def poll(self) -> int | None:
        """Exit code once finished, None while running."""

    @abstractmethod
    def terminate(self) -> None:
        """Stop the agent. Safe to call more than once."""


def build_agent(
    kind: str,
    command: str | None = None,
    stream: TextIO | None = None,
) -> AgentAdapter:
    """
    Pick an adapter for an agent kind.

    With `command`, the agent runs as a subprocess; `{task}` in the
    command is replaced by the task text. Without one, the operator
    drives the agent by hand and ends the session with Enter.
    """
    from radish.agents.interactive import InteractiveAgent
    from radish.agents.process import ProcessAgent

    if kind not in AGENT_KINDS:
        raise AgentAdapterError(f"Unknown agent: {kind} (expected one of {', '.join(AGENT_KINDS)})")

    if command:
        argv = shlex.split(command)
        if not argv:
            raise AgentAdapterError("Empty agent command")
        return ProcessAgent(argv, kind=kind)

    if kind == "command":
        raise AgentAdapterError("Agent 'command' requires an agent command")
    return InteractiveAgent(kind=kind, stream=stream)
