"""
Harvest CLI Commands
====================

CLI commands for running the equine harvesting pipeline and managing sources.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.adapters import get_adapter_info, list_adapters
from equine_agent.ingestion.jobs import (
    JobStatus,
    enqueue_harvest,
    get_job_status,
    run_harvest_sync,
)
from equine_agent.ingestion.registry import get_default_registry

console = Console()
harvest_app = typer.Typer(help="Harvest pipeline commands")
sources_app = typer.Typer(help="Source management commands")
jobs_app = typer.Typer(help="Job management commands")

harvest_app.add_typer(sources_app, name="sources")
harvest_app.add_typer(jobs_app, name="jobs")


def _parse_params(pairs: list[str] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{pair}'", param_hint="--param")
        params[key.strip()] = value.strip()
    return params


def _parse_kinds(kinds: list[str] | None) -> list[str] | None:
    if not kinds:
        return None
    parsed = []
    for kind in kinds:
        try:
            parsed.append(RecordKind.parse(kind).value)
        except ValueError:
            valid = ", ".join(k.value for k in RecordKind)
            raise typer.BadParameter(f"Unknown kind '{kind}' (expected one of: {valid})", param_hint="--kind")
    return parsed


@harvest_app.command("run")
def run_harvest(
    sources: Optional[list[str]] = typer.Option(
        None, "--source", "-s", help="Source to harvest (repeatable; all enabled when omitted)"
    ),
    kinds: Optional[list[str]] = typer.Option(
        None, "--kind", "-k", help="Record kind: animals, results, events or rankings (repeatable)"
    ),
    params: Optional[list[str]] = typer.Option(
        None, "--param", "-p", help="Request parameter as key=value (repeatable)"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Overall deadline in seconds"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the full report as JSON"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Run the harvesting pipeline.

    Examples:
        equine-agent harvest run --source FEI --kind rankings -p year=2024 --sync
        equine-agent harvest run -s USEF -s ShowGroundsLive -k results
    """
    registry = get_default_registry()
    for name in sources or []:
        if registry.get_source(name) is None:
            rprint(f"[red]Error:[/red] Source '{name}' not found")
            rprint("\nAvailable sources:")
            for s in registry.list_sources():
                status = "[green]enabled[/green]" if s.enabled else "[yellow]disabled[/yellow]"
                rprint(f"  • {s.name} ({status})")
            raise typer.Exit(1)

    selected_kinds = _parse_kinds(kinds)
    request_params = _parse_params(params)

    label = ", ".join(sources) if sources else "all enabled sources"
    rprint(f"\n[bold]Starting harvest for:[/bold] {label}")
    if selected_kinds:
        rprint(f"  Kinds: {', '.join(selected_kinds)}")
    if request_params:
        rprint(f"  Params: {request_params}")

    if sync:
        rprint("\n[dim]Running synchronously...[/dim]\n")

        with console.status("[bold blue]Harvesting...[/bold blue]"):
            result = asyncio.run(
                run_harvest_sync(sources or None, selected_kinds, request_params, timeout)
            )

        _display_job_result(result.to_dict())

        if output is not None and result.report is not None:
            output.write_text(json.dumps(result.report, indent=2))
            rprint(f"\nReport written to {output}")

        if result.status == JobStatus.FAILED:
            raise typer.Exit(1)
    else:
        rprint("\n[dim]Enqueueing job for async processing...[/dim]")

        try:
            job_id = asyncio.run(
                enqueue_harvest(sources or None, selected_kinds, request_params, timeout)
            )
            rprint("\n[green]Job enqueued successfully![/green]")
            rprint(f"Job ID: [bold]{job_id}[/bold]")
            rprint("\nCheck status with:")
            rprint(f"  equine-agent harvest jobs status {job_id}")
        except Exception as e:
            rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
            rprint("\nMake sure Redis is running, or pass --sync")
            raise typer.Exit(1)


@harvest_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the harvest worker.

    The worker processes queued harvest jobs from Redis.

    Examples:
        equine-agent harvest worker
        equine-agent harvest worker --burst
    """
    from arq import run_worker

    from equine_agent.ingestion.jobs import WorkerSettings

    rprint("[bold]Starting harvest worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)


# Sources subcommands


@sources_app.command("list")
def list_sources(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Show all sources including disabled"),
) -> None:
    """
    List configured sources.

    Examples:
        equine-agent harvest sources list
        equine-agent harvest sources list --all
    """
    registry = get_default_registry()
    sources = registry.list_sources() if all_sources else registry.list_enabled_sources()

    if not sources:
        rprint("[yellow]No sources configured[/yellow]")
        rprint("\nAdd sources to config/sources.yaml")
        return

    table = Table(title="Harvest Sources")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Adapter")
    table.add_column("Kinds")
    table.add_column("Status")
    table.add_column("Rate Limit")

    for source in sources:
        if source.requires_auth:
            status = "[magenta]auth required[/magenta]"
        elif source.enabled:
            status = "[green]enabled[/green]"
        else:
            status = "[yellow]disabled[/yellow]"
        rate = f"{source.rate_limit.requests_per_minute}/min"
        kinds = ", ".join(k.value for k in source.kinds)
        table.add_row(source.name, source.source_type.value, source.adapter, kinds, status, rate)

    console.print(table)


@sources_app.command("show")
def show_source(
    name: str = typer.Argument(..., help="Source name"),
) -> None:
    """
    Show detailed information about a source.

    Examples:
        equine-agent harvest sources show FEI
    """
    registry = get_default_registry()
    source = registry.get_source(name)

    if source is None:
        rprint(f"[red]Error:[/red] Source '{name}' not found")
        raise typer.Exit(1)

    status = "[green]enabled[/green]" if source.enabled else "[yellow]disabled[/yellow]"

    rprint(f"\n[bold]Source: {source.name}[/bold]")
    rprint(f"  Status: {status}")
    rprint(f"  Type: {source.source_type.value}")
    rprint(f"  Adapter: {source.adapter}")
    if source.country:
        rprint(f"  Country: {source.country}")
    if source.description:
        rprint(f"  Description: {source.description}")
    if source.requires_auth:
        rprint("  [magenta]Requires authentication (skipped by harvests)[/magenta]")

    rprint("\n[bold]Rate Limiting:[/bold]")
    rprint(f"  Requests/minute: {source.rate_limit.requests_per_minute}")
    rprint(f"  Request timeout: {source.request_timeout}s")

    for kind, urls in source.endpoints.items():
        rprint(f"\n[bold]Endpoints ({kind.value}):[/bold]")
        for url in urls:
            rprint(f"  • {url}")

    if source.default_params:
        rprint("\n[bold]Default Params:[/bold]")
        for key, value in source.default_params.items():
            rprint(f"  • {key}={value}")

    adapter_info = get_adapter_info(source.adapter)
    if adapter_info:
        rprint("\n[bold]Adapter Info:[/bold]")
        rprint(f"  Name: {adapter_info['name']}")
        rprint(f"  Version: {adapter_info['version']}")
        rprint(f"  Class: {adapter_info['class']}")


@sources_app.command("enable")
def enable_source(
    name: str = typer.Argument(..., help="Source name"),
) -> None:
    """
    Enable a source.

    Note: This only affects the in-memory registry.
    To persist, edit config/sources.yaml.
    """
    registry = get_default_registry()

    if registry.enable_source(name):
        rprint(f"[green]Source '{name}' enabled[/green]")
        rprint("\n[dim]Note: Edit config/sources.yaml to persist this change[/dim]")
    else:
        rprint(f"[red]Error:[/red] Source '{name}' not found")
        raise typer.Exit(1)


@sources_app.command("disable")
def disable_source(
    name: str = typer.Argument(..., help="Source name"),
) -> None:
    """
    Disable a source.

    Note: This only affects the in-memory registry.
    To persist, edit config/sources.yaml.
    """
    registry = get_default_registry()

    if registry.disable_source(name):
        rprint(f"[yellow]Source '{name}' disabled[/yellow]")
        rprint("\n[dim]Note: Edit config/sources.yaml to persist this change[/dim]")
    else:
        rprint(f"[red]Error:[/red] Source '{name}' not found")
        raise typer.Exit(1)


@sources_app.command("adapters")
def list_source_adapters() -> None:
    """List available adapters."""
    adapters = list_adapters()

    if not adapters:
        rprint("[yellow]No adapters registered[/yellow]")
        return

    table = Table(title="Available Adapters")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Class")
    table.add_column("Kinds")

    for adapter_name in adapters:
        info = get_adapter_info(adapter_name)
        if info:
            table.add_row(info["name"], info["version"], info["class"], info["kinds"])

    console.print(table)


# Jobs subcommands


@jobs_app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID to check"),
) -> None:
    """
    Check the status of a harvest job.

    Examples:
        equine-agent harvest jobs status abc123
    """
    try:
        result = asyncio.run(get_job_status(job_id))
    except Exception as e:
        rprint(f"[red]Error:[/red] Failed to get job status: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)

    if result is None:
        rprint(f"[yellow]Job '{job_id}' not found[/yellow]")
        raise typer.Exit(1)

    rprint(f"\n[bold]Job: {job_id}[/bold]")
    rprint(f"  Status: {result.get('status', 'unknown')}")

    if result.get("result"):
        _display_job_result(result["result"])


def _display_job_result(result: dict) -> None:
    """Display job result in a formatted table."""
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "partial": "yellow",
        "running": "blue",
        "pending": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    rprint(f"  Sources: {', '.join(result.get('sources') or []) or 'N/A'}")

    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    counts = result.get("counts") or {}
    table = Table(title="Records")
    table.add_column("Kind", style="bold")
    table.add_column("Count", justify="right")
    for kind in RecordKind:
        table.add_row(kind.value, str(counts.get(kind.value, 0)))
    console.print(table)

    actions = result.get("identity_actions") or {}
    if actions:
        rprint("\n[bold]Identity Resolution:[/bold]")
        for action, count in sorted(actions.items()):
            rprint(f"  {action}: {count}")

    report = result.get("report") or {}
    excluded = report.get("excluded") or []
    if excluded:
        rprint(f"\n[bold]Excluded rows ({len(excluded)}):[/bold]")
        for row in excluded[:10]:
            rprint(f"  • {row['source']} row {row['row_index']}: {row['animal_name']} ({row['reason']})")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")
