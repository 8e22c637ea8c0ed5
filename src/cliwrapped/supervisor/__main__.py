# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Daemon control CLI.

Usage:
    python -m cliwrapped.supervisor start [--storage-path DIR] [--socket-path SOCK]
    python -m cliwrapped.supervisor stop [--wait SECONDS]
    python -m cliwrapped.supervisor status [--json]
    python -m cliwrapped.supervisor import-history [FILE ...]
    python -m cliwrapped.supervisor hook zsh command=... started=... ...

``start`` runs the daemon in the foreground until SIGTERM/SIGINT; shell
profiles launch it in the background. ``hook`` is what the shell snippets
call after every command and always exits 0 so a missing daemon never
breaks the prompt.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from cliwrapped import __version__
from cliwrapped.config.settings import DaemonConfig
from cliwrapped.supervisor.models import ServiceState, ServiceStatus

logger = logging.getLogger(__name__)

# =============================================================================
# Console Setup
# =============================================================================

console = Console()
error_console = Console(stderr=True)

_STATE_STYLES = {
    ServiceState.RUNNING: "green",
    ServiceState.STARTING: "yellow",
    ServiceState.DRAINING: "yellow",
    ServiceState.STOPPED: "dim",
    ServiceState.FAILED: "red",
}


def _load_config(ctx: click.Context) -> DaemonConfig:
    overrides: dict[str, Any] = ctx.obj or {}
    try:
        return DaemonConfig(**overrides)
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e


# =============================================================================
# CLI Group
# =============================================================================


@click.group()
@click.option(
    "--storage-path",
    type=click.Path(file_okay=False, path_type=Path),
    help="Storage directory (default: CLIWRAPPED_STORAGE_PATH).",
)
@click.option(
    "--socket-path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Ingestion socket path (default: CLIWRAPPED_SOCKET_PATH).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.version_option(__version__, prog_name="cli-wrapped")
@click.pass_context
def cli(
    ctx: click.Context,
    storage_path: Path | None,
    socket_path: Path | None,
    verbose: bool,
) -> None:
    """cli-wrapped daemon control."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    overrides: dict[str, Any] = {}
    if storage_path is not None:
        overrides["storage_path"] = storage_path
    if socket_path is not None:
        overrides["socket_path"] = socket_path
    ctx.obj = overrides


# =============================================================================
# Start / Stop
# =============================================================================


@cli.command("start")
@click.pass_context
def cmd_start(ctx: click.Context) -> None:
    """Run the daemon in the foreground until SIGTERM or SIGINT."""
    from cliwrapped.supervisor.service_supervisor import ServiceSupervisor

    config = _load_config(ctx)
    supervisor = ServiceSupervisor(config)

    async def _run() -> int:
        status = await supervisor.start()
        if supervisor.state is ServiceState.FAILED:
            error_console.print(
                f"[red]Daemon failed to start:[/red] {status.last_error}"
            )
            return 1
        if supervisor.state is not ServiceState.RUNNING:
            console.print(f"[yellow]Daemon already running (PID {status.pid})[/yellow]")
            return 0
        result = await supervisor.run_until_shutdown()
        if result.lost_events:
            error_console.print(
                f"[yellow]Stopped with {result.lost_events} unflushed events[/yellow]"
            )
        return 0

    try:
        code = asyncio.run(_run())
    except KeyboardInterrupt:
        code = 0
    ctx.exit(code)


@cli.command("stop")
@click.option(
    "--wait",
    "wait_seconds",
    default=10.0,
    type=float,
    show_default=True,
    help="Seconds to wait for the daemon to release its lock (0 = don't wait).",
)
@click.pass_context
def cmd_stop(ctx: click.Context, wait_seconds: float) -> None:
    """Send SIGTERM to the running daemon."""
    from cliwrapped.supervisor.instance_lock import live_holder, read_holder

    config = _load_config(ctx)
    holder = live_holder(config.lock_path, config.heartbeat_stale_seconds)
    if holder is None:
        stale = read_holder(config.lock_path)
        if stale is not None:
            console.print(f"Daemon is not running (stale lock from PID {stale.pid})")
        else:
            console.print("Daemon is not running")
        return

    try:
        os.kill(holder.pid, signal.SIGTERM)
    except ProcessLookupError:
        console.print("Daemon process not found; lock will be reclaimed on next start")
        return
    except PermissionError as e:
        raise click.ClickException(f"Cannot signal PID {holder.pid}: {e}") from e
    console.print(f"Sent SIGTERM to daemon (PID {holder.pid})")

    deadline = time.monotonic() + wait_seconds
    while wait_seconds > 0 and time.monotonic() < deadline:
        if live_holder(config.lock_path, config.heartbeat_stale_seconds) is None:
            console.print("[green]Daemon stopped[/green]")
            return
        time.sleep(0.1)
    if wait_seconds > 0:
        error_console.print(
            f"[yellow]Daemon still holds its lock after {wait_seconds}s[/yellow]"
        )
        ctx.exit(1)


# =============================================================================
# Status
# =============================================================================


def _offline_status(config: DaemonConfig) -> ServiceStatus:
    """Status from the lock file when the socket does not answer."""
    from cliwrapped.supervisor.instance_lock import live_holder

    holder = live_holder(config.lock_path, config.heartbeat_stale_seconds)
    if holder is None:
        return ServiceStatus(state=ServiceState.STOPPED)
    return ServiceStatus(
        state=ServiceState.RUNNING,
        pid=holder.pid,
        started_at=holder.started_at,
        uptime_seconds=max(
            0.0, (datetime.now(UTC) - holder.started_at).total_seconds()
        ),
        last_error="daemon holds the lock but did not answer on its socket",
    )


def _render_status(status: ServiceStatus) -> Table:
    style = _STATE_STYLES.get(status.state, "white")
    table = Table(title="cli-wrapped daemon", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("State", f"[{style}]{status.state.value}[/{style}]")
    table.add_row("PID", str(status.pid) if status.pid else "-")
    if status.started_at is not None:
        table.add_row("Started", status.started_at.isoformat(timespec="seconds"))
        table.add_row("Uptime", f"{status.uptime_seconds:.0f}s")
    if status.queue_capacity:
        table.add_row("Queue", f"{status.queue_depth}/{status.queue_capacity}")
        table.add_row("Stored events", str(status.events_stored))
        table.add_row(
            "Accepted / persisted",
            f"{status.accepted} / {status.persisted}",
        )
        table.add_row(
            "Dropped / rejected / duplicate",
            f"{status.dropped} / {status.rejected} / {status.duplicates}",
        )
    if status.lost_events:
        table.add_row("Lost on last stop", f"[yellow]{status.lost_events}[/yellow]")
    if status.health:
        flags = ", ".join(flag.value for flag in status.health)
        table.add_row("Health", f"[yellow]{flags}[/yellow]")
    if status.last_error:
        table.add_row("Last error", f"[red]{status.last_error}[/red]")
    return table


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def cmd_status(ctx: click.Context, as_json: bool) -> None:
    """Show daemon state, PID, queue depth and uptime."""
    from cliwrapped.ingestion.hook_client import HookClient

    config = _load_config(ctx)
    timeout = max(config.hook_timeout_seconds, 1.0)
    with HookClient(config.socket_path, timeout=timeout) as client:
        status = client.status()
    if status is None:
        status = _offline_status(config)

    if as_json:
        click.echo(status.model_dump_json(indent=2))
        return
    console.print(_render_status(status))


# =============================================================================
# Producers
# =============================================================================


@cli.command("import-history")
@click.argument(
    "files",
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--timeout",
    default=2.0,
    type=float,
    show_default=True,
    help="Per-event acknowledgement timeout in seconds.",
)
@click.pass_context
def cmd_import_history(
    ctx: click.Context, files: tuple[Path, ...], timeout: float
) -> None:
    """Backfill legacy history files through the running daemon.

    Defaults to ~/.cli_stats_log and ~/.zsh_history when no FILES are given.
    Re-importing a file is safe: every line keeps the same idempotency key.
    """
    from cliwrapped.events.history_import import default_history_sources, import_history
    from cliwrapped.ingestion.hook_client import HandoffOutcome, HookClient

    config = _load_config(ctx)
    sources = list(files) or default_history_sources()
    if not sources:
        console.print("[yellow]No history files found.[/yellow]")
        return

    totals: dict[HandoffOutcome, int] = dict.fromkeys(HandoffOutcome, 0)
    with HookClient(config.socket_path, timeout=timeout) as client:
        if client.ping() is None:
            raise click.ClickException("Daemon is not running; start it first")
        for path in sources:
            for event in import_history(path):
                result = client.submit(event)
                totals[result.outcome] += 1
                if result.outcome is HandoffOutcome.UNAVAILABLE:
                    raise click.ClickException(
                        f"Daemon became unavailable while importing {path}: "
                        f"{result.reason}"
                    )

    table = Table(title="History import")
    table.add_column("Outcome", style="cyan")
    table.add_column("Events", justify="right")
    for outcome, count in totals.items():
        if count:
            table.add_row(outcome.value, str(count))
    console.print(table)


@cli.command("hook", context_settings={"ignore_unknown_options": True})
@click.argument("shell")
@click.argument("assignments", nargs=-1)
@click.pass_context
def cmd_hook(ctx: click.Context, shell: str, assignments: tuple[str, ...]) -> None:
    """Submit one finished command from a shell hook (KEY=VALUE arguments).

    Never fails: the outcome is logged at debug level and the exit status
    is always 0.
    """
    from cliwrapped.ingestion.hook_client import submit_from_hook

    hook_vars: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if sep:
            hook_vars[key] = value
    try:
        config = _load_config(ctx)
    except click.ClickException as e:
        logger.debug(f"Hook skipped: {e.message}")
        return
    result = submit_from_hook(shell, hook_vars, config)
    logger.debug(f"Hook handoff {result.outcome.value}: {result.reason or ''}")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for CLI."""
    cli(prog_name="python -m cliwrapped.supervisor")


if __name__ == "__main__":
    main()
