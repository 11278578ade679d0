"""
botrelay run - Start the gateway.

Usage:
    botrelay run
    botrelay run --platform telegram
    botrelay run --config ./botrelay.yaml --log-level DEBUG
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Annotated, Optional

import typer

from botrelay.cli.output import console, print_error, print_success, print_warning, setup_logging
from botrelay.config import Config, ConfigurationError, load_config
from botrelay.orchestrator import BotOrchestrator, create_adapters
from botrelay.platforms.protocol import PlatformAdapter
from botrelay.state import GatewayState

app = typer.Typer(
    name="run",
    help="Start the bot gateway.",
    invoke_without_command=True,
)

logger = logging.getLogger(__name__)

PLATFORM_NAMES = ("telegram", "discord", "whatsapp")


async def serve(
    config: Config,
    adapters: list[PlatformAdapter],
    stop_event: Optional[asyncio.Event] = None,
) -> bool:
    """Run the gateway until the stop event is set (SIGINT/SIGTERM by default).

    Args:
        config: Loaded configuration
        adapters: Adapters to register
        stop_event: Event that ends the run

    Returns:
        False if no adapter could be started
    """
    state = await GatewayState.create(config)
    orchestrator = BotOrchestrator(state)
    for adapter in adapters:
        orchestrator.register_adapter(adapter)

    started = await orchestrator.start()
    if not started:
        await orchestrator.stop()
        return False

    print_success(f"Gateway started with {len(started)} platform(s)")
    for name in started:
        console.print(f"  [cyan]•[/cyan] {name}")
    console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
                logger.debug(f"Signal handler for {sig.name} not supported")

    try:
        await stop_event.wait()
    finally:
        console.print("\n[yellow]Stopping gateway, draining conversations...[/yellow]")
        drained = await orchestrator.stop()
        if drained:
            print_success("Gateway stopped")
        else:
            print_warning("Gateway stopped; some conversations were cancelled")
    return True


# noinspection PyUnusedLocal
@app.callback(invoke_without_command=True)
def run_gateway(
    ctx: typer.Context,
    platform: Annotated[
        Optional[str],
        typer.Option(
            "--platform",
            "-p",
            help="Start only this platform (telegram, discord, whatsapp).",
        ),
    ] = None,
    config_file: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Additional config file merged over ~/.botrelay/config.yaml.",
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option(
            "--log-level",
            "-l",
            help="Log level (DEBUG, INFO, WARNING, ERROR).",
        ),
    ] = None,
) -> None:
    """Start the gateway and relay messages until Ctrl+C."""
    if platform and platform not in PLATFORM_NAMES:
        print_error(f"Unknown platform '{platform}'. Choose from: {', '.join(PLATFORM_NAMES)}")
        raise typer.Exit(1)

    try:
        config = load_config(config_file)
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    setup_logging(log_level or config.general.log_level)

    adapters = create_adapters(config, platform_filter=platform)
    if not adapters:
        if platform:
            print_error(f"Platform '{platform}' is not enabled")
        else:
            print_error("No platforms enabled. Set platforms.<name>.enable: true in your config.")
        console.print("[dim]See: botrelay platforms list[/dim]")
        raise typer.Exit(1)

    try:
        ok = asyncio.run(serve(config, adapters))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped by user[/yellow]")
        return

    if not ok:
        print_error("No adapter could be started; check credentials and logs")
        raise typer.Exit(1)
