"""
Pytest configuration and fixtures for botrelay tests.
"""

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from typer.testing import CliRunner


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def mock_botrelay_home(
    temp_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Point BOTRELAY_HOME at a temp dir and hide BOTRELAY_* overrides."""
    import os

    for key in list(os.environ):
        if key.startswith("BOTRELAY_"):
            monkeypatch.delenv(key)

    botrelay_home = temp_dir / ".botrelay"
    botrelay_home.mkdir()
    monkeypatch.setenv("BOTRELAY_HOME", str(botrelay_home))

    yield botrelay_home


@pytest.fixture
def sample_config() -> dict:
    """Provide a sample configuration dictionary."""
    return {
        "platforms": {
            "telegram": {
                "enable": True,
                "bot_token": "${TEST_TELEGRAM_TOKEN}",
                "allowed_users": ["111"],
            },
            "discord": {"enable": False},
        },
        "agent": {
            "model": "openai/gpt-4o-mini",
            "max_rounds": 3,
        },
        "memory": {
            "history": {"limit": 10},
            "working_memory": {"scope": "conversation"},
        },
        "audit": {"enable": False},
    }
