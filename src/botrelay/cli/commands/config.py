"""
botrelay config - Configuration inspection commands.

Usage:
    botrelay config show
    botrelay config show agent
    botrelay config show --json
    botrelay config show --sources
"""

import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from botrelay.cli.output import console, print_error
from botrelay.config import ConfigurationError, get_config_sources, load_config
from botrelay.config.merger import get_nested_value

app = typer.Typer(
    name="config",
    help="Configuration inspection.",
)

SECRET_KEYS = ("bot_token", "access_token")


def mask_secrets(value: Any) -> Any:
    """Replace credential values with a fixed mask."""
    if isinstance(value, dict):
        return {
            k: ("****" if k in SECRET_KEYS and v else mask_secrets(v)) for k, v in value.items()
        }
    if isinstance(value, list):
        return [mask_secrets(v) for v in value]
    return value


@app.command()
def show(
    section: Annotated[
        Optional[str],
        typer.Argument(
            help="Config section to show (e.g., 'agent', 'memory.history').",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON.",
        ),
    ] = False,
    sources: Annotated[
        bool,
        typer.Option(
            "--sources",
            help="Show configuration source files.",
        ),
    ] = False,
    show_secrets: Annotated[
        bool,
        typer.Option(
            "--show-secrets",
            help="Do not mask tokens.",
        ),
    ] = False,
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Additional config file."),
    ] = None,
) -> None:
    """Show the effective (merged) configuration."""
    if sources:
        table = Table(title="Configuration Sources")
        table.add_column("Source", style="cyan")
        table.add_column("Path", style="green")
        table.add_column("Status")

        for source_name, source_path in get_config_sources(config_file).items():
            if source_path:
                table.add_row(source_name, str(source_path), "[green]loaded[/green]")
            else:
                table.add_row(source_name, "-", "[dim]not found[/dim]")

        console.print(table)
        return

    try:
        config = load_config(config_file)
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    config_dict: Any = config.model_dump(mode="json")
    if section:
        config_dict = get_nested_value(config_dict, section)
        if config_dict is None:
            print_error(f"Section '{section}' not found in configuration.")
            raise typer.Exit(1)

    if not show_secrets:
        config_dict = mask_secrets(config_dict)

    if json_output:
        console.print_json(json.dumps(config_dict, default=str))
        return

    output = yaml.dump(
        config_dict,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )
    syntax = Syntax(output, "yaml", theme="monokai")
    if section:
        console.print(Panel(syntax, title=f"[cyan]{section}[/cyan]"))
    else:
        console.print(syntax)
