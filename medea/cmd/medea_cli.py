"""
Medea command line entry point.

The root callback assembles the configuration once (defaults, config file,
environment) and keeps it on the typer context, where every subcommand reads
it from ctx.obj. A --config override is kept in ctx.meta["config_file"].
"""

import typer
from rich import print
from pathlib import Path
from typing import Optional

from medea.errors import ConfigError
from medea.utils.config import load_config
from medea.utils.logging import setup_logging, get_logger
from medea.cmd.cli import serve_app, config_app, routes_app, calc, doctor_app

log = get_logger("cli")

app = typer.Typer(no_args_is_help=True, help="Medea: resource-aware workflow placement across clusters")

@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Write logs to file"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
):
    try:
        config = load_config(config_file)
    except ConfigError as e:
        print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    if log_file:
        config.logging.file = str(log_file)
    if verbose:
        config.logging.level = "DEBUG"
        config.logging.verbose = True

    try:
        setup_logging(
            level=config.logging.level,
            log_file=Path(config.logging.file) if config.logging.file else None,
            verbose=config.logging.verbose,
            max_bytes=config.logging.max_bytes,
            backup_count=config.logging.backup_count,
        )
    except ValueError as e:
        print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    log.debug(f"Configuration loaded (scout={config.balancer.scout_url}, db={config.store.db_path})")
    ctx.obj = config
    ctx.meta["config_file"] = config_file

app.add_typer(serve_app, name="serve", help="Start the scout or balancer service")
app.add_typer(config_app, name="config", help="Configuration management")
app.add_typer(routes_app, name="routes", help="Inspect the routing table")
app.add_typer(doctor_app, name="doctor", help="Check connectivity and configuration")
app.command("calc", help="Compute the resources a submission requests")(calc)

def main():
    app()

if __name__ == "__main__":
    main()
