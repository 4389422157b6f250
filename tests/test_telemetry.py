"""Tests for best-effort telemetry."""

from __future__ import annotations

import httpx
import pytest

from radish.telemetry import Telemetry, TelemetryEvent


class Recorder:
    def __init__(self, error: Exception | None = None):
        self.calls: list[dict] = []
        self.error = error

    def __call__(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return httpx.Response(201, request=httpx.Request("POST", url))


def event() -> TelemetryEvent:
    return TelemetryEvent(
        session_id="session-1",
        event_type="checkpoint",
        task="Add tests",
        agent="claude",
        timeout_seconds=60,
        check_results={"forbidden_paths": False},
    )


class TestTelemetry:
    def test_disabled_never_posts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        recorder = Recorder()
        monkeypatch.setattr("radish.telemetry.httpx.post", recorder)
        for telemetry in (
            Telemetry.disabled(),
            Telemetry(endpoint="https://collector.example/events", enabled=False),
            Telemetry(endpoint=None, enabled=True),
        ):
            assert telemetry.enabled is False
            telemetry.send(event())
            telemetry.drain()
        assert recorder.calls == []

    def test_enabled_posts_payload(self, monkeypatch: pytest.MonkeyPatch) -> None:
        recorder = Recorder()
        monkeypatch.setattr("radish.telemetry.httpx.post", recorder)
        telemetry = Telemetry(endpoint="https://collector.example/events", timeout=1.5)

        telemetry.send(event())
        telemetry.drain()

        assert len(recorder.calls) == 1
        call = recorder.calls[0]
        assert call["url"] == "https://collector.example/events"
        assert call["timeout"] == 1.5
        assert call["json"]["session_id"] == "session-1"
        assert call["json"]["check_results"] == {"forbidden_paths": False}

    def test_network_errors_are_dropped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        recorder = Recorder(error=httpx.ConnectError("unreachable"))
        monkeypatch.setattr("radish.telemetry.httpx.post", recorder)
        telemetry = Telemetry(endpoint="https://collector.example/events")

        telemetry.send(event())
        telemetry.drain()

        assert len(recorder.calls) == 1
