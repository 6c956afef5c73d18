"""Rich output formatting for the fleet CLI.

All functions write to the :class:`rich.console.Console` they are given;
the CLI passes its stdout console, and never calls them in ``--json`` mode.
"""

from __future__ import annotations

from typing import Any

from fleet_engine.models import ActionResult, BuildOutcome, BuildRecord, CutoverResult, HealthResult
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "PENDING": "dim",
    "BUILDING": "yellow",
    "TESTING": "cyan",
    "READY": "green",
    "DEPLOYED": "bold green",
    "FAILED": "red",
    "DEPRECATED": "dim red",
}


def _coloured_status(status: str) -> str:
    """Return a Rich markup string with the status colour-coded."""
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def _flag(value: bool | None, yes: str = "yes", no: str = "no") -> str:
    if value is None:
        return "[dim]-[/dim]"
    return f"[green]{yes}[/green]" if value else f"[red]{no}[/red]"


def _when(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else "-"


# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------


def display_build_outcomes(console: Console, outcomes: list[BuildOutcome]) -> None:
    """Render one row per finished build with a success/failure summary."""
    table = Table(title="Build Results", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Instance", style="bold")
    table.add_column("Build ID", style="dim")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Output / Error")

    failed = 0
    for outcome in outcomes:
        if not outcome.succeeded:
            failed += 1
        detail = outcome.osrm_output_path or "-"
        if outcome.error_message:
            detail = f"[red]{outcome.error_message}[/red]"
        duration = f"{outcome.duration_seconds:.1f}s"
        table.add_row(
            outcome.instance_name,
            outcome.build_id[:12],
            _coloured_status(outcome.status.value),
            duration,
            detail,
        )

    console.print(table)
    console.print(
        f"\n[bold]Total:[/bold] {len(outcomes)}  [green]Succeeded:[/green] {len(outcomes) - failed}  "
        f"[red]Failed:[/red] {failed}"
    )


def display_history(console: Console, records: list[BuildRecord]) -> None:
    """Render build records newest first."""
    if not records:
        console.print("[dim]No builds recorded.[/dim]")
        return

    table = Table(title="Build History", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Build ID", style="dim")
    table.add_column("Instance", style="bold")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Completed")
    table.add_column("Segments", justify="right")
    table.add_column("Error")

    for record in records:
        table.add_row(
            record.build_id[:12],
            record.instance_name,
            _coloured_status(record.status.value),
            _when(record.created_at),
            _when(record.completed_at),
            str(record.total_segments),
            record.error_message or "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


def display_fleet_status(console: Console, rows: list[dict[str, Any]]) -> None:
    """Render role, port, process and health state per instance."""
    table = Table(title="OSRM Fleet", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Instance", style="bold")
    table.add_column("Profile")
    table.add_column("Role")
    table.add_column("Port", justify="right")
    table.add_column("Running")
    table.add_column("PIDs")
    table.add_column("Data")
    table.add_column("Building")
    table.add_column("Healthy")

    for row in rows:
        role = row.get("role", "?")
        role_text = f"[bold cyan]{role}[/bold cyan]" if role == "active" else f"[dim]{role}[/dim]"
        table.add_row(
            row["name"],
            row.get("profile", "?"),
            role_text,
            str(row.get("port", "?")),
            _flag(row.get("running")),
            ", ".join(str(p) for p in row.get("pids", [])) or "-",
            _flag(row.get("has_artifact"), "built", "missing"),
            "[yellow]yes[/yellow]" if row.get("building") else "no",
            _flag(row.get("healthy")),
        )
    console.print(table)


def display_action(console: Console, result: ActionResult) -> None:
    colour = "green" if result.success else "red"
    line = f"[{colour}]{result.action} {result.instance_name}[/{colour}]"
    if result.message:
        line += f": {result.message}"
    console.print(line)


def display_health(console: Console, results: list[HealthResult]) -> None:
    table = Table(title="Route Health", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Instance", style="bold")
    table.add_column("Healthy")
    table.add_column("Latency", justify="right")
    table.add_column("Message")
    for result in results:
        latency = f"{result.response_time_ms:.0f} ms" if result.response_time_ms is not None else "-"
        table.add_row(result.instance_name, _flag(result.healthy), latency, result.message)
    console.print(table)


# ---------------------------------------------------------------------------
# Cutover
# ---------------------------------------------------------------------------


def display_cutover_results(console: Console, results: list[CutoverResult]) -> None:
    """Render one panel per profile describing the swap outcome."""
    for result in results:
        lines = [
            f"[bold]Previous active:[/bold] {result.previous_active or '-'}",
            f"[bold]New active:[/bold]      {result.new_active or '-'}",
        ]
        if result.build_id:
            lines.append(f"[bold]Build:[/bold]           {result.build_id[:12]}")
        if result.success:
            lines.append(f"[bold]Downtime:[/bold]        {result.downtime_seconds:.2f}s")
        if result.error:
            lines.append(f"[red]{result.error}[/red]")
        if result.restored is not None:
            lines.append(f"[bold]Old active serving:[/bold] {'yes' if result.restored else '[red]NO[/red]'}")
        lines.extend(f"[yellow]{w}[/yellow]" for w in result.warnings)

        console.print(
            Panel(
                "\n".join(lines),
                title=f"Cutover: {result.profile}",
                border_style="green" if result.success else "red",
            )
        )
