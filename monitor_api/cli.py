import asyncio
import time

import typer
from rich.console import Console
from rich.table import Table

from monitor_api.config import settings
from monitor_api.core.exceptions import MonitorError

console = Console()
cli_app = typer.Typer(name="monitor-admin", help="Monitor services administrative CLI")


def _run_async(coro):
    """Run async code from sync CLI context."""
    return asyncio.run(coro)


def _print_report(report) -> None:
    console.print(f"\n[bold]{report.client_id}[/bold] — last {report.period_days} day(s)")
    console.print(f"  Generated:    {report.generated_at:%Y-%m-%d %H:%M:%S} UTC")
    console.print(f"  Downtime:     {report.total_downtime_formatted} ({report.total_downtime_seconds}s)")
    console.print(f"  Availability: {report.availability}%\n")

    table = Table(title="Services")
    table.add_column("Service", style="cyan")
    table.add_column("Address")
    table.add_column("Downtime", style="red")
    table.add_column("Incidents")
    table.add_column("Active", style="yellow")

    for svc in report.services:
        active = sum(1 for i in svc.incidents if i.is_active)
        table.add_row(
            svc.service_name,
            svc.ip_address,
            svc.total_downtime_formatted,
            str(svc.incident_count),
            str(active) if active else "—",
        )
    console.print(table)


@cli_app.command("list-clients")
def list_clients():
    """List configured clients and their service counts."""
    from monitor_api.services.tenants import TenantRegistry

    registry = TenantRegistry(settings.monitor_clients_dir)
    ids = registry.list_tenant_ids()
    if not ids:
        console.print("[dim]No clients configured.[/dim]")
        return

    table = Table(title="Clients")
    table.add_column("Client", style="cyan")
    table.add_column("Name")
    table.add_column("Services", style="green")
    for client_id in ids:
        config = registry.get_config(client_id)
        table.add_row(client_id, config.client_name if config else "", str(len(registry.service_map(client_id))))
    console.print(table)


@cli_app.command("recompute")
def recompute(
    client_id: str = typer.Argument(help="Client to recalculate"),
    days: int = typer.Option(30, "--days", help="Lookback window in days (1-90)"),
):
    """Recalculate a client's downtime report now and store it."""
    async def _recompute():
        from monitor_api.main import build_http_client, build_services

        http_client = build_http_client()
        try:
            services = build_services(http_client)
            return await services["aggregator"].recompute(client_id, days)
        finally:
            await http_client.aclose()

    try:
        report = _run_async(_recompute())
    except MonitorError as e:
        console.print(f"[bold red]{e.message}[/bold red]")
        raise typer.Exit(code=1)

    _print_report(report)


@cli_app.command("show-report")
def show_report(client_id: str = typer.Argument(help="Client whose stored report to show")):
    """Show the last stored report without querying Zabbix."""
    from monitor_api.services.snapshot_store import SnapshotStore

    report = _run_async(SnapshotStore(settings.monitor_clients_dir).get(client_id))
    if report is None:
        console.print(f"[yellow]No report available yet for '{client_id}'.[/yellow]")
        raise typer.Exit(code=1)
    _print_report(report)


@cli_app.command("prune-journal")
def prune_journal(
    client_id: str = typer.Argument(help="Client whose incident journal to prune"),
    retention_days: int = typer.Option(
        settings.monitor_journal_retention_days, "--retention-days", help="Keep entries newer than this"
    ),
):
    """Drop journal entries for removed services and entries past retention."""
    from monitor_api.services.journal import IncidentJournal
    from monitor_api.services.tenants import TenantRegistry

    registry = TenantRegistry(settings.monitor_clients_dir)
    if not registry.exists(client_id):
        console.print(f"[bold red]Client '{client_id}' not found.[/bold red]")
        raise typer.Exit(code=1)
    client_id = registry.canonical_id(client_id)
    journal = IncidentJournal(settings.monitor_clients_dir)

    async def _prune():
        removed = 0
        services = registry.service_map(client_id)
        if services:
            removed += await journal.prune_removed_services(client_id, set(services))
        threshold = int(time.time()) - retention_days * 86400
        removed += await journal.prune_older_than(client_id, threshold)
        return removed

    removed = _run_async(_prune())
    console.print(f"[green]Removed {removed} journal line(s) for '{client_id}'.[/green]")


if __name__ == "__main__":
    cli_app()
