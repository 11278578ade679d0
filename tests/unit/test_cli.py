"""
Unit tests for CLI commands.
"""

from pathlib import Path

import yaml
from typer.testing import CliRunner

from botrelay import __version__
from botrelay.cli.app import app


def _write_config(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


def test_version(cli_runner: CliRunner) -> None:
    """Test --version flag."""
    result = cli_runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_help(cli_runner: CliRunner) -> None:
    """Test --help flag."""
    result = cli_runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "botrelay" in result.stdout
    assert "run" in result.stdout
    assert "config" in result.stdout
    assert "platforms" in result.stdout


class TestConfigShow:
    """Tests for `botrelay config show`."""

    def test_tokens_are_masked(self, cli_runner: CliRunner, monkeypatch) -> None:
        monkeypatch.setenv("BOTRELAY_PLATFORMS_TELEGRAM_BOT_TOKEN", "123:supersecret")

        result = cli_runner.invoke(app, ["config", "show", "platforms.telegram"])

        assert result.exit_code == 0
        assert "****" in result.stdout
        assert "supersecret" not in result.stdout

    def test_show_secrets(self, cli_runner: CliRunner, monkeypatch) -> None:
        monkeypatch.setenv("BOTRELAY_PLATFORMS_TELEGRAM_BOT_TOKEN", "123:supersecret")

        result = cli_runner.invoke(
            app, ["config", "show", "platforms.telegram", "--show-secrets"]
        )

        assert result.exit_code == 0
        assert "supersecret" in result.stdout

    def test_section(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["config", "show", "agent"])

        assert result.exit_code == 0
        assert "max_rounds" in result.stdout

    def test_unknown_section(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["config", "show", "nonexistent"])

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_sources(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["config", "show", "--sources"])

        assert result.exit_code == 0
        assert "Configuration Sources" in result.stdout
        assert "not found" in result.stdout

    def test_json(self, cli_runner: CliRunner, monkeypatch) -> None:
        monkeypatch.setenv("BOTRELAY_PLATFORMS_DISCORD_BOT_TOKEN", "discord-secret")

        result = cli_runner.invoke(app, ["config", "show", "platforms.discord", "--json"])

        assert result.exit_code == 0
        assert '"bot_token": "****"' in result.stdout
        assert "discord-secret" not in result.stdout

    def test_invalid_config_file(self, cli_runner: CliRunner, temp_dir: Path) -> None:
        path = _write_config(temp_dir / "bad.yaml", {"agent": {"max_rounds": 0}})

        result = cli_runner.invoke(app, ["config", "show", "--config", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.stdout


class TestPlatformsCommands:
    """Tests for `botrelay platforms`."""

    def test_list(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["platforms", "list"])

        assert result.exit_code == 0
        assert "Telegram" in result.stdout
        assert "Discord" in result.stdout
        assert "WhatsApp" in result.stdout
        assert "Disabled" in result.stdout

    def test_list_missing_credentials(self, cli_runner: CliRunner, monkeypatch) -> None:
        monkeypatch.setenv("BOTRELAY_PLATFORMS_DISCORD_ENABLE", "true")

        result = cli_runner.invoke(app, ["platforms", "list"])

        assert result.exit_code == 0
        assert "Enabled" in result.stdout
        assert "Missing credentials" in result.stdout

    def test_status_without_platforms(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["platforms", "status"])

        assert result.exit_code == 0
        assert "No platforms enabled" in result.stdout

    def test_status_shows_capabilities(self, cli_runner: CliRunner, temp_dir: Path) -> None:
        path = _write_config(
            temp_dir / "botrelay.yaml",
            {"platforms": {"telegram": {"enable": True, "bot_token": "123:abc"}}},
        )

        result = cli_runner.invoke(app, ["platforms", "status", "--config", str(path)])

        assert result.exit_code == 0
        assert "Platform Status" in result.stdout
        assert "telegram" in result.stdout
        assert "MarkdownV2" in result.stdout
        assert "4096" in result.stdout
        assert "1 platform(s) enabled" in result.stdout


class TestRunCommand:
    """Tests for `botrelay run` argument handling."""

    def test_no_platforms_enabled(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["run"])

        assert result.exit_code == 1
        assert "No platforms enabled" in result.stdout

    def test_unknown_platform(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["run", "--platform", "irc"])

        assert result.exit_code == 1
        assert "Unknown platform 'irc'" in result.stdout

    def test_platform_not_enabled(self, cli_runner: CliRunner, temp_dir: Path) -> None:
        path = _write_config(
            temp_dir / "botrelay.yaml",
            {"platforms": {"telegram": {"enable": True, "bot_token": "123:abc"}}},
        )

        result = cli_runner.invoke(
            app, ["run", "--platform", "discord", "--config", str(path)]
        )

        assert result.exit_code == 1
        assert "Platform 'discord' is not enabled" in result.stdout
