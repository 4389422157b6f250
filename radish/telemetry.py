"""
Radish Telemetry — best-effort session events

One POST per monitoring cycle and one at session end. Sent from a
daemon thread so the monitor never waits on the network, never
retried, and every failure is swallowed at debug level. When
disabled, send() returns before touching a thread or a socket.
"""

from __future__ import annotations

import threading
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, Field


class TelemetryEvent(BaseModel):
    session_id: str
    event_type: str
    task: str = ""
    agent: str = ""
    timeout_seconds: float = 0
    check_results: dict[str, bool] = Field(default_factory=dict)
    violations: list[dict[str, Any]] = Field(default_factory=list)


class Telemetry:
    def __init__(self, endpoint: str | None, enabled: bool = True, timeout: float = 5.0):
        self.endpoint = endpoint
        self.enabled = bool(enabled and endpoint)
        self.timeout = timeout
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    @classmethod
    def disabled(cls) -> "Telemetry":
        return cls(endpoint=None, enabled=False)

    def send(self, event: TelemetryEvent) -> None:
        if not self.enabled:
            return
        payload = event.model_dump(mode="json")
        thread = threading.Thread(
            target=self._post, args=(payload,), name="radish-telemetry", daemon=True
        )
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = httpx.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            logger.debug(f"[TELEMETRY] Sent {payload['event_type']} for {payload['session_id']}")
        except httpx.HTTPError as e:
            logger.debug(f"[TELEMETRY] Dropped {payload['event_type']}: {e}")

    def drain(self, timeout: float = 2.0) -> None:
        """Give in-flight sends up to `timeout` seconds each to finish."""
        with self._lock:
            pending = list(self._threads)
        for thread in pending:
            thread.join(timeout)
