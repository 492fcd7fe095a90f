"""
Configuration commands for the Medea CLI.

`show` and `check` work on the effective configuration (defaults, config
file and MEDEA_* environment overrides merged), which is exactly what the
services would start with. `init` and `path` deal with the file itself.
"""

import yaml
import typer
from rich import print
from pathlib import Path
from typing import Optional

from medea.errors import ConfigError
from medea.utils.config import Config, CONFIG_FILE

SECTIONS = ("logging", "scout", "balancer", "store")


def _config_file(ctx: typer.Context) -> Path:
    return ctx.meta.get("config_file") or CONFIG_FILE


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    section: Optional[str] = typer.Option(None, "--section", "-s", help=f"Only one of: {', '.join(SECTIONS)}"),
) -> None:
    """
    Print the effective configuration as YAML.
    """
    data = ctx.obj.to_dict()
    if section:
        if section not in SECTIONS:
            raise typer.BadParameter(f"unknown section '{section}'", param_hint="--section")
        data = {section: data[section]}

    print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


@config_app.command("init")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing config"),
) -> None:
    """
    Write a config file holding the default values.
    """
    path = _config_file(ctx)
    if path.exists() and not force:
        print(f"[yellow]Config already exists:[/yellow] {path} (use --force to overwrite)")
        return

    Config().save(path)
    print(f"[green]✓ Wrote default config:[/green] {path}")


@config_app.command("path")
def config_path(ctx: typer.Context) -> None:
    """Print where the config file is read from."""
    typer.echo(str(_config_file(ctx)))


@config_app.command("check")
def config_check(ctx: typer.Context) -> None:
    """
    Validate the effective configuration without starting anything.
    """
    config: Config = ctx.obj
    try:
        config.validate()
    except ConfigError as e:
        print(f"[red]✗ Invalid configuration:[/red] {e}")
        raise typer.Exit(1)
    print("[green]✓ Configuration is valid[/green]")
