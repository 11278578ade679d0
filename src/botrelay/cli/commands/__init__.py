"""CLI command modules."""

from botrelay.cli.commands import config, platforms, run

__all__ = ["config", "platforms", "run"]
