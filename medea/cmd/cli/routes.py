"""
Routing table commands for the Medea CLI.

These commands read the balancer's routing database directly, so they work
whether or not the balancer is running. They never modify it, and a
database the balancer has not created yet reads as an empty table.

Commands:
- list: Show routing records, newest first
- resolve: Show the cluster that owns a workflow
"""

import typer
from datetime import datetime
from rich import print
from rich.table import Table
from rich.console import Console
from typing import Optional

from medea.errors import PersistenceError, RoutingNotFound
from medea.utils.config import Config
from medea.state.store import RoutingTable

console = Console()

routes_app = typer.Typer(no_args_is_help=True)


def _table(config: Config) -> Optional[RoutingTable]:
    if not config.store.db_path.exists():
        return None
    return RoutingTable(config.store.db_path, timeout=config.store.timeout)


@routes_app.command("list")
def routes_list(
    ctx: typer.Context,
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Only this namespace"),
    workflow: Optional[str] = typer.Option(None, "--workflow", "-w", help="Only this workflow name"),
    limit: int = typer.Option(50, "--limit", "-l", min=1, help="Maximum records to show"),
) -> None:
    """
    List routing records, newest first.
    """
    config: Config = ctx.obj
    try:
        table = _table(config)
        records = table.list_records(namespace=namespace, workflow_name=workflow, limit=limit) if table is not None else []
    except PersistenceError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not records:
        print("[yellow]No routing records[/yellow]")
        return

    table = Table(title="Routing table")
    table.add_column("ID", justify="right")
    table.add_column("Workflow", style="cyan")
    table.add_column("Template")
    table.add_column("Namespace")
    table.add_column("Cluster", style="green")
    table.add_column("Created")

    for record in records:
        created = datetime.fromtimestamp(record.created_at).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(
            str(record.id),
            record.workflow_name,
            record.workflow_template,
            record.namespace,
            record.cluster,
            created,
        )

    console.print(table)


@routes_app.command("resolve")
def routes_resolve(
    ctx: typer.Context,
    workflow: str = typer.Argument(..., help="Workflow name assigned by the cluster"),
    namespace: str = typer.Option(..., "--namespace", "-n", help="Namespace of the workflow"),
) -> None:
    """
    Show the cluster that lifecycle requests for a workflow are sent to.
    """
    config: Config = ctx.obj
    try:
        table = _table(config)
        if table is None:
            raise RoutingNotFound(f"Workflow '{workflow}' not found in namespace '{namespace}'")
        cluster = table.resolve(workflow, namespace)
    except RoutingNotFound as e:
        print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)
    except PersistenceError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    print(cluster)
