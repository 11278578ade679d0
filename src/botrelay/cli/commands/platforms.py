"""
botrelay platforms - Inspect messaging platforms.

Usage:
    botrelay platforms list
    botrelay platforms status [--check]
"""

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from botrelay.cli.output import console, print_error, print_success, print_warning
from botrelay.config import Config, ConfigurationError, load_config
from botrelay.orchestrator import create_adapters
from botrelay.platforms.protocol import PlatformAdapter

app = typer.Typer(
    name="platforms",
    help="Inspect messaging platform adapters.",
)

PLATFORM_INFO = [
    ("telegram", "Telegram", "Long Polling"),
    ("discord", "Discord", "Gateway WebSocket"),
    ("whatsapp", "WhatsApp", "Cloud API Webhook"),
]


def _credentials_present(config: Config, name: str) -> bool:
    platform_config = getattr(config.platforms, name)
    if name == "whatsapp":
        return bool(platform_config.phone_number_id and platform_config.access_token)
    return bool(platform_config.bot_token)


def _load(config_file: Optional[Path]) -> Config:
    try:
        return load_config(config_file)
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)


async def _check_adapters(adapters: list[PlatformAdapter]) -> dict[str, str]:
    results = {}
    for adapter in adapters:
        name = adapter.platform_type.value
        try:
            await adapter.start()
            healthy = await adapter.health_check()
            results[name] = "[green]✓ Healthy[/green]" if healthy else "[red]✗ Unhealthy[/red]"
        except Exception as e:
            results[name] = f"[red]✗ {e}[/red]"
        finally:
            await adapter.stop()
    return results


@app.command("list")
def list_platforms(
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Additional config file."),
    ] = None,
) -> None:
    """List available platforms and their configuration status."""
    config = _load(config_file)

    table = Table(title="Available Platforms")
    table.add_column("Platform", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Mode", style="dim")
    table.add_column("Configuration", style="dim")

    for key, name, mode in PLATFORM_INFO:
        if getattr(config.platforms, key).enable:
            status = "[green]Enabled[/green]"
            if _credentials_present(config, key):
                config_status = "[green]✓ Configured[/green]"
            else:
                config_status = "[yellow]⚠ Missing credentials[/yellow]"
        else:
            status = "[dim]Disabled[/dim]"
            config_status = "[dim]Not enabled[/dim]"

        table.add_row(name, status, mode, config_status)

    console.print(table)
    console.print("\n[dim]Configuration: ~/.botrelay/config.yaml[/dim]")


@app.command()
def status(
    check: Annotated[
        bool,
        typer.Option("--check", help="Connect to each platform and run a health check."),
    ] = False,
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Additional config file."),
    ] = None,
) -> None:
    """Show enabled platforms, their capabilities and (optionally) health."""
    config = _load(config_file)

    adapters = create_adapters(config)
    if not adapters:
        print_warning("No platforms enabled")
        console.print("[dim]See: botrelay platforms list[/dim]")
        return

    health = asyncio.run(_check_adapters(adapters)) if check else {}

    table = Table(title="Platform Status")
    table.add_column("Platform", style="cyan")
    table.add_column("Formatting")
    table.add_column("Max length")
    table.add_column("Typing")
    if check:
        table.add_column("Health", style="bold")

    for adapter in adapters:
        capabilities = adapter.capabilities
        row = [
            adapter.platform_type.value,
            capabilities.markdown_flavor or ("markdown" if capabilities.supports_markdown else "plain"),
            str(capabilities.max_message_length or "-"),
            "yes" if capabilities.supports_typing_indicator else "no",
        ]
        if check:
            row.append(health.get(adapter.platform_type.value, "-"))
        table.add_row(*row)

    console.print(table)
    print_success(f"{len(adapters)} platform(s) enabled")
