"""Cooperative cancellation shared by the session, its monitor and the agent adapter."""

from __future__ import annotations

import threading


class CancelToken:
    """
    One-shot cancellation signal.

    The first call to cancel() wins; its reason is kept. Everything
    that can block (the monitor's interval sleep, the agent watcher)
    waits on the token instead of sleeping, so cancellation is seen
    immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or `timeout` elapses. True if cancelled."""
        return self._event.wait(timeout)
