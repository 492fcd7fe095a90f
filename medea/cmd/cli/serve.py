"""
Serve commands for the Medea CLI.

This module provides the commands that start the two Medea services in the
foreground. Command-line options override the loaded configuration, which is
validated before anything is started.

Commands:
- scout: Start the capacity query service
- balancer: Start the submission entry point
"""

import typer
from rich import print
from typing import Optional

from medea.errors import ConfigError, PersistenceError
from medea.utils.config import Config
from medea.utils.misc import service_url
from medea.server.scout import ScoutServer
from medea.server.balancer import BalancerServer

serve_app = typer.Typer(no_args_is_help=True)


def _validated(config: Config) -> Config:
    try:
        return config.validate()
    except ConfigError as e:
        print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


@serve_app.command("scout")
def serve_scout(
    ctx: typer.Context,
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on"),
    prometheus_url: Optional[str] = typer.Option(None, "--prometheus-url", help="Prometheus base URL"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for reproducible cluster selection"),
) -> None:
    """
    Start the scout (capacity query) service.

    :param port: Port number for the scout to listen on.
    :param prometheus_url: Prometheus server exposing kube_resourcequota.
    :param seed: Seed for the random cluster choice.
    """
    config: Config = ctx.obj
    if port is not None:
        config.scout.port = port
    if prometheus_url:
        config.scout.prometheus_url = prometheus_url
    if seed is not None:
        config.scout.seed = seed
    _validated(config)

    server = ScoutServer(config)
    print(
        f"[bold cyan]Medea scout started[/bold cyan] "
        f"(url={service_url(config.scout.port)}, prometheus={config.scout.prometheus_url})"
    )
    server.start()


@serve_app.command("balancer")
def serve_balancer(
    ctx: typer.Context,
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on"),
    scout_url: Optional[str] = typer.Option(None, "--scout-url", help="Scout service base URL"),
    db: Optional[str] = typer.Option(None, "--db", help="Routing table database file"),
) -> None:
    """
    Start the balancer (submission entry point).

    The routing table is created if it does not exist. The balancer refuses
    to start if the database cannot be opened.

    :param port: Port number for the balancer to listen on.
    :param scout_url: Base URL of the scout service.
    :param db: Path of the routing table database.
    """
    config: Config = ctx.obj
    if port is not None:
        config.balancer.port = port
    if scout_url:
        config.balancer.scout_url = scout_url
    if db:
        config.store.path = db
    _validated(config)

    try:
        server = BalancerServer(config)
    except PersistenceError as e:
        print(f"[red]Cannot open routing table:[/red] {e}")
        raise typer.Exit(1)

    print(
        f"[bold cyan]Medea balancer started[/bold cyan] "
        f"(url={service_url(config.balancer.port)}, scout={config.balancer.scout_url}, db={config.store.db_path})"
    )
    server.start()
