"""
Doctor command for Medea CLI.

This module provides diagnostic commands for checking that the balancer and
the scout can reach everything they depend on. It helps operators quickly
identify configuration and connectivity problems.

Checks performed:
- Configuration validity
- Routing table database
- Port availability for both services
- Scout service status
- Prometheus reachability

The capacity subcommand prints the free CPU and RAM each cluster reports for
a namespace, which is what placement decisions are made from.
"""

import socket
import requests
from dataclasses import dataclass
from typing import Optional, List

import typer
from rich import print
from rich.table import Table
from rich.panel import Panel
from rich.console import Console

from medea.errors import ConfigError, PersistenceError, UpstreamError
from medea.utils.config import Config
from medea.utils.misc import join_url
from medea.state.store import RoutingTable
from medea.scout.prober import CapacityProber

console = Console()

doctor_app = typer.Typer(no_args_is_help=False, invoke_without_command=True)


@dataclass
class DiagnosticResult:
    """Outcome of one doctor check; fix is only shown when it failed."""

    name: str
    passed: bool
    message: str
    details: Optional[str] = None
    fix: Optional[str] = None

    def render(self, verbose: bool = False) -> str:
        mark = "[green]✓[/green]" if self.passed else "[red]✗[/red]"
        lines = [f"{mark} [bold]{self.name}[/bold]: {self.message}"]
        if verbose and self.details:
            lines.append(f"  [dim]{self.details}[/dim]")
        if self.fix and not self.passed:
            lines.append(f"  [yellow]Fix:[/yellow] {self.fix}")
        return "\n".join(lines)


def check_config(config: Config) -> DiagnosticResult:
    """Check that the configuration passes validation."""
    try:
        config.validate()
    except ConfigError as e:
        return DiagnosticResult(
            name="Configuration",
            passed=False,
            message=str(e),
            fix="Edit the config file (medea config path) or the MEDEA_* environment variables"
        )
    return DiagnosticResult(name="Configuration", passed=True, message="Valid")


def check_routing_db(config: Config) -> DiagnosticResult:
    """Check that the routing table can be opened and read."""
    table = RoutingTable(config.store.db_path, timeout=config.store.timeout)
    try:
        table.init_db()
        count = table.count()
    except PersistenceError as e:
        return DiagnosticResult(
            name="Routing Table",
            passed=False,
            message=f"Database error: {e}",
            fix=f"Check permissions on {config.store.db_path.parent}"
        )
    return DiagnosticResult(
        name="Routing Table",
        passed=True,
        message=f"{count} routing record(s)",
        details=str(config.store.db_path)
    )


def check_port(name: str, port: int) -> DiagnosticResult:
    """Report whether a service port is free or already serving."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(1)
            in_use = sock.connect_ex(("localhost", port)) == 0
    except OSError as e:
        return DiagnosticResult(
            name=f"{name} port {port}",
            passed=False,
            message=f"Error checking port: {e}"
        )

    if in_use:
        return DiagnosticResult(
            name=f"{name} port {port}",
            passed=True,
            message=f"Port {port} is in use (service running or port taken)",
            fix=f"If {name.lower()} is not running, pick another port: medea serve {name.lower()} --port <other_port>"
        )
    return DiagnosticResult(
        name=f"{name} port {port}",
        passed=True,
        message=f"Port {port} is available"
    )


def check_scout(config: Config) -> DiagnosticResult:
    """Check that the scout service answers on its status endpoint."""
    url = join_url(config.balancer.scout_url, "/status")
    try:
        r = requests.get(url, timeout=5)
    except requests.exceptions.RequestException as e:
        return DiagnosticResult(
            name="Scout Service",
            passed=False,
            message=f"Not reachable at {config.balancer.scout_url}",
            details=str(e),
            fix="Start it with: medea serve scout"
        )
    if r.status_code != 200:
        return DiagnosticResult(
            name="Scout Service",
            passed=False,
            message=f"Scout unhealthy (status {r.status_code})"
        )
    try:
        counts = r.json().get("requests", {})
    except ValueError:
        return DiagnosticResult(
            name="Scout Service",
            passed=False,
            message=f"Unexpected status answer from {config.balancer.scout_url}",
            details=r.text[:200],
            fix="Check that balancer.scout_url points at a Medea scout"
        )
    return DiagnosticResult(
        name="Scout Service",
        passed=True,
        message=f"Running at {config.balancer.scout_url}",
        details=f"{counts.get('requests', 0)} requests, {counts.get('placed', 0)} placed"
    )


def check_prometheus(config: Config) -> DiagnosticResult:
    """Check that Prometheus answers a trivial instant query."""
    url = join_url(config.scout.prometheus_url, "/api/v1/query")
    try:
        r = requests.get(url, params={"query": "1"}, timeout=config.scout.query_timeout)
        ok = r.status_code == 200 and r.json().get("status") == "success"
    except (requests.exceptions.RequestException, ValueError) as e:
        return DiagnosticResult(
            name="Prometheus",
            passed=False,
            message=f"Not reachable at {config.scout.prometheus_url}",
            details=str(e),
            fix="Set PROMETHEUS_URL or scout.prometheus_url"
        )
    if not ok:
        return DiagnosticResult(
            name="Prometheus",
            passed=False,
            message=f"Query failed (status {r.status_code})"
        )
    return DiagnosticResult(
        name="Prometheus",
        passed=True,
        message=f"Reachable at {config.scout.prometheus_url}"
    )


@doctor_app.callback(invoke_without_command=True)
def doctor(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed output"),
) -> None:
    """
    Run connectivity and configuration diagnostics.
    """
    if ctx.invoked_subcommand is not None:
        return

    config: Config = ctx.obj
    print(Panel.fit("[bold cyan]Medea Diagnostics[/bold cyan]"))

    stages = (
        ("configuration", lambda: [check_config(config)]),
        ("routing table", lambda: [check_routing_db(config)]),
        ("ports", lambda: [check_port("Scout", config.scout.port),
                           check_port("Balancer", config.balancer.port)]),
        ("scout service", lambda: [check_scout(config)]),
        ("Prometheus", lambda: [check_prometheus(config)]),
    )
    results: List[DiagnosticResult] = []
    for label, run in stages:
        with console.status(f"[bold green]Checking {label}..."):
            results.extend(run())

    print()
    for result in results:
        print(result.render(verbose))

    failed = [r for r in results if not r.passed]
    print()
    if failed:
        print(f"[bold yellow]{len(results) - len(failed)} passed, {len(failed)} failed[/bold yellow]")
        raise typer.Exit(1)
    print(f"[bold green]All {len(results)} checks passed![/bold green]")


@doctor_app.command("capacity")
def doctor_capacity(
    ctx: typer.Context,
    namespace: str = typer.Option(..., "--namespace", "-n", help="Namespace whose quota is inspected"),
) -> None:
    """Show the free CPU and RAM every cluster reports for a namespace."""
    config: Config = ctx.obj
    prober = CapacityProber(config.scout.prometheus_url, timeout=config.scout.query_timeout)

    try:
        cpu, ram = prober.snapshot(namespace)
    except UpstreamError as e:
        print(f"[red]Cannot query Prometheus:[/red] {e}")
        raise typer.Exit(1)

    clusters = sorted(set(cpu) | set(ram))
    if not clusters:
        print(f"[yellow]No cluster reports a quota for namespace '{namespace}'[/yellow]")
        return

    table = Table(title=f"Free capacity in {namespace}")
    table.add_column("Cluster", style="cyan")
    table.add_column("CPU (cores)", justify="right")
    table.add_column("RAM (GB)", justify="right")

    for cluster in clusters:
        # A cluster missing from one snapshot can never be selected
        free_cpu = f"{cpu[cluster]:.2f}" if cluster in cpu else "[red]unknown[/red]"
        free_ram = f"{ram[cluster]:.2f}" if cluster in ram else "[red]unknown[/red]"
        table.add_row(cluster, free_cpu, free_ram)

    console.print(table)
