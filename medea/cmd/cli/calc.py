"""
Offline resource calculation for the Medea CLI.

Runs the same calculation the balancer applies to submitOptions.parameters,
so operators can check what a submission will ask the scout for.
"""

import typer
from rich import print
from typing import List

from medea.errors import ValidationError
from medea.core.resources import calculate_resources, parse_parameters


def calc(
    params: List[str] = typer.Argument(..., help="Submission parameters, e.g. executor_num=2 driver_memory_limit=1g"),
) -> None:
    """
    Compute the CPU cores and RAM gigabytes a submission requests.
    """
    try:
        requirement = calculate_resources(params)
    except ValidationError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    ignored = len(params) - len(parse_parameters(params))
    print(f"[cyan]CPU:[/cyan] {requirement.cpu:g} cores")
    print(f"[cyan]RAM:[/cyan] {requirement.ram:g} GB")
    if ignored:
        print(f"[yellow]{ignored} parameter(s) ignored (malformed or repeated)[/yellow]")
