"""Command-line interface for the buffer drain coordinator."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import click
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging
from safir.sentry import initialize_sentry

from . import __version__
from .config import Config
from .constants import (
    CONFIGURATION_PATH,
    CONFIGURATION_PATH_ENV_VAR,
    ROOT_LOGGER,
)
from .factory import Factory

__all__ = [
    "help",
    "main",
    "reconcile",
    "run",
]


def _load_config(config_file: Path) -> Config:
    """Load the configuration and configure logging from it."""
    config = Config.from_file(config_file)
    configure_logging(
        name=ROOT_LOGGER, profile=config.profile, log_level=config.log_level
    )
    return config


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config-file",
    "-c",
    type=click.Path(path_type=Path, dir_okay=False),
    envvar=CONFIGURATION_PATH_ENV_VAR,
    default=CONFIGURATION_PATH,
    show_default=True,
    help="Path to the configuration file",
)
@click.version_option(message="%(version)s")
@click.pass_context
def main(ctx: click.Context, config_file: Path) -> None:
    """Command-line interface for bufferdrain."""
    ctx.obj = config_file


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command()
@click.pass_obj
@run_with_asyncio
async def reconcile(config_file: Path) -> None:
    """Run a single drain pass and report what it did.

    Exits with a non-zero status if any volume failed.
    """
    config = _load_config(config_file)
    initialize_sentry(release=__version__)
    await initialize_kubernetes()
    async with Factory.standalone(config) as factory:
        result = await factory.drain_coordinator.reconcile()
    for volume in result.volumes:
        line = f"{volume.volume}: {volume.action.value}"
        if volume.error:
            line += f" ({volume.error!s})"
        click.echo(line)
    if error := result.error:
        raise click.ClickException(str(error))


@main.command()
@click.pass_obj
@run_with_asyncio
async def run(config_file: Path) -> None:
    """Run drain passes periodically until terminated."""
    config = _load_config(config_file)
    initialize_sentry(release=__version__)
    await initialize_kubernetes()
    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stopped.set)
    async with Factory.standalone(config) as factory:
        await factory.start_background_services()
        await stopped.wait()
