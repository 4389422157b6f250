"""Tests for radish.yaml loading."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from radish.config_loader import (
    ConfigError,
    RadishConfig,
    find_config,
    load_config,
    load_config_or_defaults,
)
from radish.governance import OnViolation


class TestLoadConfig:
    """File discovery, parsing and validation."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(repo_path=tmp_path)
        assert config.source is None
        assert config.session.timeout == 3600
        assert config.policy().on_violation is OnViolation.STOP

    def test_explicit_missing_path_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "nope.yaml")
        assert config == RadishConfig()

    def test_full_config(self, tmp_path: Path) -> None:
        path = tmp_path / "radish.yaml"
        path.write_text(
            "session:\n"
            "  timeout: 600\n"
            "  checkpoint_interval: 30\n"
            "  agent: aider\n"
            "guardrails:\n"
            "  allowed_paths: ['src/**']\n"
            "  forbidden_paths: ['.env']\n"
            "  forbidden_commands: ['DROP TABLE']\n"
            "limits:\n"
            "  max_files_changed: 5\n"
            "  max_lines_changed: 100\n"
            "  max_cost_usd: 2.50\n"
            "on_violation: warn\n"
        )
        config = load_config(repo_path=tmp_path)
        assert config.source == path
        assert config.session.agent == "aider"

        policy = config.policy()
        assert policy.allowed_paths == frozenset({"src/**"})
        assert policy.forbidden_commands == frozenset({"DROP TABLE"})
        assert policy.max_files_changed == 5
        assert policy.max_cost_usd == Decimal("2.50")
        assert policy.on_violation is OnViolation.WARN

    def test_dot_radish_location(self, tmp_path: Path) -> None:
        (tmp_path / ".radish").mkdir()
        (tmp_path / ".radish" / "radish.yaml").write_text("on_violation: warn\n")
        assert find_config(tmp_path) == tmp_path / ".radish" / "radish.yaml"

    def test_root_file_wins(self, tmp_path: Path) -> None:
        (tmp_path / ".radish").mkdir()
        (tmp_path / ".radish" / "radish.yaml").write_text("{}\n")
        (tmp_path / "radish.yaml").write_text("{}\n")
        assert find_config(tmp_path) == tmp_path / "radish.yaml"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        (tmp_path / "radish.yaml").write_text("")
        config = load_config(repo_path=tmp_path)
        assert config.guardrails.forbidden_paths == RadishConfig().guardrails.forbidden_paths

    def test_unknown_action_maps_to_stop(self, tmp_path: Path) -> None:
        (tmp_path / "radish.yaml").write_text("on_violation: explode\n")
        assert load_config(repo_path=tmp_path).policy().on_violation is OnViolation.STOP

    @pytest.mark.parametrize("text", [
        "session: [unclosed\n",
        "- just\n- a list\n",
        "limits:\n  max_files_changed: -3\n",
        "session:\n  timeout: 0\n",
        "guardrails:\n  forbidden_paths: ['secrets/[x']\n",
    ])
    def test_malformed_config_raises(self, tmp_path: Path, text: str) -> None:
        (tmp_path / "radish.yaml").write_text(text)
        with pytest.raises(ConfigError):
            load_config(repo_path=tmp_path)

    def test_or_defaults_degrades(self, tmp_path: Path) -> None:
        (tmp_path / "radish.yaml").write_text("limits:\n  max_files_changed: -3\n")
        config = load_config_or_defaults(repo_path=tmp_path)
        assert config.limits.max_files_changed == 50


class TestTelemetryToggle:
    """RADISH_TELEMETRY overrides the file setting."""

    def test_off_by_default(self) -> None:
        assert RadishConfig().telemetry_enabled is False

    def test_env_enables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RADISH_TELEMETRY", "true")
        assert RadishConfig().telemetry_enabled is True

    def test_env_disables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RADISH_TELEMETRY", "false")
        config = RadishConfig.model_validate({"telemetry": {"enabled": True}})
        assert config.telemetry_enabled is False
