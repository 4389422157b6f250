"""Shared fixtures for radish tests."""

from __future__ import annotations

import subprocess
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from radish.agents import AgentAdapter, AgentContext
from radish.cancel import CancelToken
from radish.config_loader import RadishConfig


def git(repo: Path, *args: str) -> str:
    """Run git in `repo` and return stdout."""
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout


def write(repo: Path, rel: str, text: str) -> Path:
    path = repo / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def _init_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "config", "user.name", "Radish Test")
    git(path, "config", "user.email", "test@radish.local")
    git(path, "config", "commit.gpgsign", "false")
    return path


class FakeAgent(AgentAdapter):
    """
    Scriptable agent adapter.

    `on_start` runs synchronously inside start() with the session's
    AgentContext; `exit_code` set up front makes the agent finish at once.
    """

    kind = "fake"

    def __init__(
        self,
        on_start: Callable[[AgentContext], None] | None = None,
        exit_code: int | None = None,
        finish_after: float | None = None,
    ):
        self.on_start = on_start
        self.finish_after = finish_after
        self.context: AgentContext | None = None
        self.token: CancelToken | None = None
        self.terminated = 0
        self._code = exit_code
        self._lock = threading.Lock()

    def start(self, token: CancelToken, context: AgentContext) -> None:
        self.token = token
        self.context = context
        if self.on_start:
            self.on_start(context)
        if self.finish_after is not None:
            timer = threading.Timer(self.finish_after, self.finish)
            timer.daemon = True
            timer.start()

    def finish(self, code: int = 0) -> None:
        with self._lock:
            if self._code is None:
                self._code = code

    def poll(self) -> int | None:
        with self._lock:
            return self._code

    def terminate(self) -> None:
        with self._lock:
            self.terminated += 1
            if self._code is None:
                self._code = -15


@pytest.fixture(autouse=True)
def no_telemetry_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's RADISH_TELEMETRY from leaking into tests."""
    monkeypatch.delenv("RADISH_TELEMETRY", raising=False)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A git repo with one commit containing README.md."""
    repo = _init_repo(tmp_path / "repo")
    write(repo, "README.md", "# demo\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def empty_repo(tmp_path: Path) -> Path:
    """A freshly initialized git repo with no commits."""
    return _init_repo(tmp_path / "empty")


@pytest.fixture
def make_agent() -> Callable[..., FakeAgent]:
    return FakeAgent


@pytest.fixture
def make_config() -> Callable[..., RadishConfig]:
    """Fast session settings: short interval, generous timeout."""

    def _make(timeout: float = 10.0, interval: float = 0.05, **overrides) -> RadishConfig:
        data = {
            "session": {"timeout": timeout, "checkpoint_interval": interval},
            **overrides,
        }
        return RadishConfig.model_validate(data)

    return _make
