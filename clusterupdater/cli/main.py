"""clusterupdater command-line interface.

Commands:
    clusterupdater run [--force] [-v...]   Run the update controller until terminated.
    clusterupdater version                 Print version and exit.

``run`` starts from the ``CLUSTERUPDATER_*`` environment configuration and
applies any flags given on the command line on top of it.
"""

from __future__ import annotations

import asyncio
import dataclasses

import click

from clusterupdater import __version__
from clusterupdater.config import clamp_metrics_port, load_config
from clusterupdater.models.config import LogConfig, UpdaterConfig
from clusterupdater.observability.logging import level_for_verbosity


def _build_config(
    force: bool,
    verbosity: int,
    poll_timeout: int | None,
    interval: float | None,
    metrics_port: int | None,
) -> UpdaterConfig:
    """Load the environment config and overlay command-line flags."""
    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    if force:
        config = dataclasses.replace(config, force=True)
    if verbosity:
        config = dataclasses.replace(config, log=LogConfig(level=level_for_verbosity(verbosity)))

    loop = config.loop
    if poll_timeout is not None:
        loop = dataclasses.replace(loop, poll_timeout_seconds=poll_timeout)
    if interval is not None:
        loop = dataclasses.replace(loop, min_interval_seconds=interval)
    config = dataclasses.replace(config, loop=loop)

    if metrics_port is not None:
        config = dataclasses.replace(
            config, metrics=dataclasses.replace(config.metrics, port=clamp_metrics_port(metrics_port))
        )
    return config


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
def cli() -> None:
    """clusterupdater - automatically progress OpenShift cluster upgrades."""


@cli.command("version")
def cmd_version() -> None:
    """Print the clusterupdater version and exit."""
    click.echo(f"clusterupdater {__version__}")


@cli.command("run")
@click.option("--force", is_flag=True, default=False, help="Forcefully apply available updates.")
@click.option(
    "-v",
    "verbosity",
    count=True,
    help="Verbosity level (can be set multiple times): -v info, -vv debug, -vvv trace.",
)
@click.option(
    "--poll-timeout",
    type=click.IntRange(1, 300, clamp=True),
    default=None,
    metavar="SECONDS",
    help="Server-side timeout of each cache refresh watch.",
)
@click.option(
    "--interval",
    type=click.FloatRange(0.1, 300.0, clamp=True),
    default=None,
    metavar="SECONDS",
    help="Minimum delay between the starts of two reconciliation cycles.",
)
@click.option(
    "--metrics-port",
    type=int,
    default=None,
    metavar="PORT",
    help="Serve Prometheus metrics on PORT (0 disables).",
)
def cmd_run(
    force: bool,
    verbosity: int,
    poll_timeout: int | None,
    interval: float | None,
    metrics_port: int | None,
) -> None:
    """Watch the ClusterVersion and request the newest available update."""
    from clusterupdater.app import main

    config = _build_config(force, verbosity, poll_timeout, interval, metrics_port)
    asyncio.run(main(config))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
