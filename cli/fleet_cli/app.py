"""osrm-fleet -- Typer-based operator interface.

Builds routing data, starts and stops instances, and swaps each profile
onto its standby.  Result summaries go to *stdout* via Rich, or as JSON
with ``--json``; errors and log records go to *stderr* so pipelines can
compose cleanly.  Exit code 0 means every requested operation succeeded,
1 means at least one build, health check or cutover reported failure,
and 3 means the request was rejected or errored.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from fleet_engine.config import load_settings
from fleet_engine.errors import FleetError
from fleet_engine.orchestrator import FleetOrchestrator
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.logging import RichHandler
from sqlalchemy.exc import SQLAlchemyError

from fleet_cli.display import (
    display_action,
    display_build_outcomes,
    display_cutover_results,
    display_fleet_status,
    display_health,
    display_history,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="osrm-fleet",
    help="OSRM fleet orchestrator - build, serve and cut over routing instances",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Global options applied to every command."""
    global _json_output  # noqa: PLW0603
    _json_output = json_mode
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=verbose)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_orchestrator() -> FleetOrchestrator:
    return FleetOrchestrator(load_settings())


def _run(operation: Callable[[FleetOrchestrator], Awaitable[T]]) -> T:
    """Start an orchestrator, run *operation* on it, and shut it down.

    Rejections and infrastructure errors are reported on the console and
    turned into exit code 3.
    """

    async def _main() -> T:
        orchestrator = _make_orchestrator()
        try:
            await orchestrator.startup()
            return await operation(orchestrator)
        finally:
            await orchestrator.shutdown()

    try:
        return asyncio.run(_main())
    except FleetError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc
    except (SQLAlchemyError, ValidationError) as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(code=3) from exc


def _emit_json(payload: Any) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [p.model_dump(mode="json") if isinstance(p, BaseModel) else p for p in payload]
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# build
# ---------------------------------------------------------------------------


@app.command()
def build(
    instance: str | None = typer.Argument(None, help="Instance name or id; every instance when omitted."),
) -> None:
    """Build routing data for one instance (or all) and wait for the result."""

    async def _op(orch: FleetOrchestrator):
        if instance is None:
            return await orch.build_all()
        return [await orch.build(instance)]

    outcomes = _run(_op)
    if _json_output:
        _emit_json(outcomes)
    else:
        display_build_outcomes(console, outcomes)
    if not all(o.succeeded for o in outcomes):
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# start / stop / restart
# ---------------------------------------------------------------------------


def _action(name: str, instance: str) -> None:
    result = _run(lambda orch: getattr(orch.lifecycle, name)(instance))
    if _json_output:
        _emit_json(result)
    else:
        display_action(console, result)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def start(instance: str = typer.Argument(..., help="Instance name or id.")) -> None:
    """Start osrm-routed for an instance from its built data."""
    _action("start", instance)


@app.command()
def stop(instance: str = typer.Argument(..., help="Instance name or id.")) -> None:
    """Stop whatever is listening on the instance port."""
    _action("stop", instance)


@app.command()
def restart(
    profile: str | None = typer.Option(None, "--profile", "-p", help="Swap only this profile."),
    instance: str | None = typer.Option(None, "--instance", "-i", help="Plain stop/start of one instance."),
) -> None:
    """Health-gated swap onto the standby instance of each profile.

    With ``--instance`` the instance is simply stopped and started again,
    with no role change.
    """
    if profile is not None and instance is not None:
        err_console.print("[red]--profile and --instance are mutually exclusive.[/red]")
        raise typer.Exit(code=3)
    if instance is not None:
        _action("restart", instance)
        return

    results = _run(lambda orch: orch.rolling_restart(profile))
    if _json_output:
        _emit_json(results)
    else:
        display_cutover_results(console, results)
    if not all(r.success for r in results):
        raise typer.Exit(code=1)


@app.command()
def rebuild(instance: str = typer.Argument(..., help="Instance name or id.")) -> None:
    """Stop an instance, rebuild its data from scratch, and start it again."""
    _action("rebuild", instance)


@app.command()
def deploy(profile: str = typer.Argument(..., help="Profile whose standby is built and promoted.")) -> None:
    """Build the standby of a profile, then swap it in if it proves healthy."""
    result = _run(lambda orch: orch.deploy(profile))
    if _json_output:
        _emit_json(result)
    else:
        display_cutover_results(console, [result])
    if not result.success:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# status / health / history
# ---------------------------------------------------------------------------


@app.command()
def status(
    health: bool = typer.Option(True, "--health/--no-health", help="Probe running instances."),
) -> None:
    """Show role, port, process and route health for every instance."""
    rows = _run(lambda orch: orch.fleet_status(include_health=health))
    if _json_output:
        _emit_json(rows)
    else:
        display_fleet_status(console, rows)


@app.command("health")
def health_cmd(
    instance: str | None = typer.Argument(None, help="Instance name or id; every instance when omitted."),
) -> None:
    """Run the route probe against one instance (or all)."""

    async def _op(orch: FleetOrchestrator):
        names = [instance] if instance is not None else orch.registry.names
        return [await orch.lifecycle.health_check(name) for name in names]

    results = _run(_op)
    if _json_output:
        _emit_json(results)
    else:
        display_health(console, results)
    if not all(r.healthy for r in results):
        raise typer.Exit(code=1)


@app.command()
def history(
    instance: str | None = typer.Argument(None, help="Filter by instance name or id."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=500, help="Maximum records to show."),
) -> None:
    """Show build records newest first."""
    records = _run(lambda orch: orch.history(instance, limit=limit))
    if _json_output:
        _emit_json(records)
    else:
        display_history(console, records)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address (default FLEET_API_HOST)."),
    port: int | None = typer.Option(None, "--port", help="Bind port (default FLEET_API_PORT)."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes."),
) -> None:
    """Run the HTTP control plane with uvicorn."""
    import uvicorn
    from fleet_api.config import load_api_settings

    settings = load_api_settings()
    uvicorn.run(
        "fleet_api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="debug" if settings.debug else "info",
    )
