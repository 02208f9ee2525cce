from pathlib import Path

import pytest
from typer.testing import CliRunner

from tether.cli import app
from tether.config import Settings, load_settings


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TETHER_DISCORD_TOKEN", "env-token-value")
    monkeypatch.setenv("TETHER_MAX_MESSAGE_LENGTH", "1500")

    settings = Settings()

    assert settings.discord_token == "env-token-value"
    assert settings.max_message_length == 1500
    assert settings.cleanup_delay_seconds == 300


def test_load_settings_reads_workspace_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TETHER_MODEL", raising=False)
    monkeypatch.delenv("TETHER_BASE_DIRECTORY", raising=False)
    (tmp_path / ".env").write_text("TETHER_MODEL=opus\n")

    settings = load_settings(tmp_path)

    assert settings.model == "opus"
    assert settings.resolve_workspace() == tmp_path.resolve()


def test_check_command_reports_missing_token(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TETHER_DISCORD_TOKEN", raising=False)

    result = CliRunner().invoke(app, ["check", "--workspace", str(tmp_path)])

    assert result.exit_code == 1


def test_check_command_accepts_valid_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TETHER_DISCORD_TOKEN", "env-token-value")

    result = CliRunner().invoke(app, ["check", "--workspace", str(tmp_path)])

    assert result.exit_code == 0
    assert "ok: workspace=" in result.output
