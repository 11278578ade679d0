"""
Main Typer application for botrelay CLI.

This module defines the root CLI application and registers all command groups.
"""

from typing import Annotated

import typer

from botrelay import __version__
from botrelay.cli.commands import config, platforms, run
from botrelay.cli.output import print_info

# Create the main Typer app
app = typer.Typer(
    name="botrelay",
    help="Chat bot gateway relaying Telegram, Discord and WhatsApp to an LLM agent.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        print_info(f"botrelay version [green]{__version__}[/green]")
        raise typer.Exit()


# noinspection PyUnusedLocal
@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    [bold blue]botrelay[/bold blue] - multi-platform bot gateway

    Receives messages from chat platforms, answers them with a language
    model agent and delivers the replies back to the chat.

    Use [bold]botrelay run[/bold] to start the gateway.
    """


# Register command groups
app.add_typer(run.app, name="run")
app.add_typer(config.app, name="config")
app.add_typer(platforms.app, name="platforms")


if __name__ == "__main__":
    app()
