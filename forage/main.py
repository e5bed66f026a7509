"""Forage CLI — the user interface.

Commands:
    forage init      — Create the findings dir, state dir and state file
    forage run       — One research cycle over the vault
    forage loop      — Cycles on an interval (foreground, --daemon, --stop, --kill)
    forage status    — Task counts, lock holder, state file
    forage replay    — Browser session details for a query or session id
    forage purge     — Drop state records whose note is gone
    forage rerun     — Force one query through research again
    forage version   — Show version
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from forage.config import ForageSettings, load_settings
from forage.models.schemas import RunStats
from forage.utils import setup_logging

app = typer.Typer(
    name="forage",
    help="🔎 Forage — turn research intents in your notes into findings",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {"done": "green", "failed": "red", "in_progress": "yellow", "pending": "cyan"}


@app.callback()
def _root(
    ctx: typer.Context,
    vault_dir: Optional[Path] = typer.Option(None, "--vault-dir", help="Vault root (default: $VAULT_DIR or ./vault)"),
    json_output: bool = typer.Option(False, "--json", help="JSON logs and JSON command output"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="debug | info | warning | error"),
) -> None:
    ctx.obj = {"vault_dir": vault_dir, "json": json_output, "log_level": log_level}


def _settings(ctx: typer.Context, **overrides) -> ForageSettings:
    """Resolve settings from env/.env plus the global and per-command flags."""
    opts = ctx.obj or {}
    settings = load_settings(
        vault_dir=opts.get("vault_dir"),
        log_level=opts.get("log_level"),
        log_format="json" if opts.get("json") else None,
        **overrides,
    )
    setup_logging(settings.log_level, settings.log_format)
    return settings


def _json(ctx: typer.Context) -> bool:
    return bool((ctx.obj or {}).get("json"))


def _print_stats(stats: RunStats, title: str) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Total", str(stats.total))
    table.add_row("Processed", str(stats.processed))
    table.add_row("Succeeded", f"[green]{stats.succeeded}[/]")
    table.add_row("Failed", f"[red]{stats.failed}[/]" if stats.failed else "0")
    table.add_row("Skipped", str(stats.skipped))
    table.add_row("Duration", f"{stats.duration_ms or 0} ms")
    console.print(Panel(table, title=f"[bold cyan]{title}[/]", border_style="cyan"))

    if stats.skips:
        skips = Table(title="Skipped", show_lines=False)
        skips.add_column("Query", style="white")
        skips.add_column("Note", style="dim")
        skips.add_column("Reason", style="yellow")
        for skip in stats.skips:
            skips.add_row(skip.query, skip.source_id, skip.reason)
        console.print(skips)


def _emit_stats(ctx: typer.Context, stats: RunStats, title: str) -> None:
    if _json(ctx):
        console.print_json(stats.model_dump_json())
    else:
        _print_stats(stats, title)


async def _run_cycle(settings: ForageSettings, rerun_query: str | None = None) -> RunStats:
    from forage.tasks.runner import CycleRunner

    runner = CycleRunner(settings)
    try:
        return await runner.run_once(rerun_query=rerun_query)
    finally:
        await runner.close()


# ── forage init ───────────────────────────────────────────────


@app.command()
def init(ctx: typer.Context):
    """🗂  Create the findings directory, state directory and state file."""
    from forage.vault.writer import init_workspace

    settings = _settings(ctx)
    created = init_workspace(settings)
    if _json(ctx):
        console.print_json(data={"created": [str(p) for p in created], "state_file": str(settings.state_file)})
        return
    for path in created:
        console.print(f"[green]✔[/] created {path}")
    console.print(f"[bold cyan]Workspace ready[/] — findings: {settings.findings_dir}")


# ── forage run ────────────────────────────────────────────────


@app.command()
def run(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Ignore state policy and run every task"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Extract and filter tasks only"),
    since: Optional[str] = typer.Option(None, "--since", help="Only notes modified within 7d / 12h / 30m or since an ISO date"),
):
    """🔎 Run one research cycle."""
    settings = _settings(ctx, force=force, dry_run=dry_run, since=since)
    stats = asyncio.run(_run_cycle(settings))
    _emit_stats(ctx, stats, "Run summary")


# ── forage rerun ──────────────────────────────────────────────


@app.command()
def rerun(
    ctx: typer.Context,
    query: list[str] = typer.Argument(..., help="Query to research again"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Resolve the task only"),
):
    """🔁 Research one query again, bypassing the state policy."""
    settings = _settings(ctx, force=True, dry_run=dry_run)
    stats = asyncio.run(_run_cycle(settings, rerun_query=" ".join(query)))
    _emit_stats(ctx, stats, "Rerun summary")


# ── forage loop ───────────────────────────────────────────────


@app.command()
def loop(
    ctx: typer.Context,
    interval_minutes: Optional[int] = typer.Option(None, "--interval-minutes", help="Minutes between cycles"),
    max_cycles: Optional[int] = typer.Option(None, "--max-cycles", help="Stop after N cycles"),
    daemon: bool = typer.Option(False, "--daemon", help="Run detached in the background"),
    stop: bool = typer.Option(False, "--stop", help="Stop the background loop"),
    kill: bool = typer.Option(False, "--kill", help="Stop the background loop with SIGKILL"),
    force: bool = typer.Option(False, "--force", help="Ignore state policy and run every task"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Extract and filter tasks only"),
    since: Optional[str] = typer.Option(None, "--since", help="Only notes modified within this window"),
):
    """♾  Run research cycles on an interval."""
    from forage.tasks.lock import StopOutcome, stop_daemon
    from forage.tasks.runner import CycleRunner
    from forage.tasks.worker_process import build_loop_argv, run_loop_forever, spawn_daemon

    settings = _settings(
        ctx,
        loop_interval_minutes=interval_minutes,
        loop_max_cycles=max_cycles,
        force=force,
        dry_run=dry_run,
        since=since,
    )

    if stop or kill:
        result = stop_daemon(settings.lock_file, force=kill)
        if _json(ctx):
            console.print_json(data={"outcome": result.outcome.value, "pid": result.pid})
        elif result.outcome is StopOutcome.NOT_RUNNING:
            console.print("[dim]No background loop is running.[/]")
        elif result.outcome is StopOutcome.STALE_LOCK_CLEANED:
            console.print(f"[yellow]Removed stale lock[/] (pid {result.pid} was not running)")
        elif result.outcome is StopOutcome.STOPPED:
            console.print(f"[green]✔ Stopped background loop[/] (pid {result.pid})")
        else:
            err_console.print(f"[bold red]✖[/] Failed to stop pid {result.pid}; lock kept at {settings.lock_file}")
            raise typer.Exit(1)
        return

    settings.require_vault()
    if daemon:
        argv = build_loop_argv(settings, interval_minutes=interval_minutes, max_cycles=max_cycles)
        pid = spawn_daemon(settings, argv)
        if _json(ctx):
            console.print_json(data={"pid": pid, "log_file": str(settings.daemon_log_file)})
        else:
            console.print(f"[green]✔ Background loop started[/] (pid {pid})")
            console.print(f"[dim]Logs: {settings.daemon_log_file} — stop with: forage loop --stop[/]")
        return

    cycles = run_loop_forever(settings, CycleRunner(settings), settings.loop_max_cycles)
    if cycles is not None and not _json(ctx):
        console.print(f"[bold cyan]Loop finished[/] after {cycles} cycle(s)")


# ── forage status ─────────────────────────────────────────────


@app.command()
def status(ctx: typer.Context):
    """📊 Task counts, lock holder and state file."""
    from forage.tasks.runner import show_status

    settings = _settings(ctx)
    report = show_status(settings)
    if _json(ctx):
        console.print_json(
            data={
                "total": report.total,
                **report.counts,
                "with_session": report.with_session,
                "lock_pid": report.lock_pid,
                "updated_at": report.updated_at.isoformat(),
                "state_file": str(report.state_file),
            }
        )
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Tasks", str(report.total))
    for name, count in report.counts.items():
        table.add_row(name, f"[{_STATUS_STYLE.get(name, 'white')}]{count}[/]")
    table.add_row("With session", str(report.with_session))
    table.add_row("Loop", f"[green]running (pid {report.lock_pid})[/]" if report.lock_pid else "[dim]not running[/]")
    table.add_row("Updated", report.updated_at.isoformat())
    table.add_row("State file", str(report.state_file))
    console.print(Panel(table, title="[bold cyan]Forage status[/]", border_style="cyan"))

    if report.failed:
        failed = Table(title="Failed tasks")
        failed.add_column("Query", style="white")
        failed.add_column("Attempts", style="yellow")
        failed.add_column("Next retry", style="dim")
        failed.add_column("Error", style="red")
        for record in report.failed:
            failed.add_row(
                record.query,
                str(record.attempts),
                record.next_retry_at.isoformat() if record.next_retry_at else "-",
                (record.last_error or "")[:80],
            )
        console.print(failed)


# ── forage replay ─────────────────────────────────────────────


@app.command()
def replay(
    ctx: typer.Context,
    token: list[str] = typer.Argument(..., help="Query or browser session id"),
):
    """🎞  Show browser session details for a query or session id."""
    from forage.tasks.runner import find_replay

    settings = _settings(ctx)
    record = find_replay(settings, " ".join(token))
    if record is None:
        if _json(ctx):
            console.print_json(data={"match": None})
        else:
            console.print(f"[yellow]⚠ No replay match found for[/] {' '.join(token)!r}")
        return

    details = {
        "query": record.query,
        "session_id": record.last_session_id,
        "live_view_url": record.last_live_view_url,
        "replay_url": record.last_replay_url,
        "replay_hint": record.last_replay_hint,
        "finding_path": record.finding_path,
        "last_success_at": record.last_success_at.isoformat() if record.last_success_at else None,
    }
    if _json(ctx):
        console.print_json(data=details)
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for key, value in details.items():
        table.add_row(key.replace("_", " "), value or "[dim]N/A[/]")
    console.print(Panel(table, title="[bold magenta]Replay[/]", border_style="magenta"))


# ── forage purge ──────────────────────────────────────────────


@app.command()
def purge(ctx: typer.Context):
    """🧹 Drop state records whose source note no longer exists."""
    from forage.tasks.runner import purge_workspace

    settings = _settings(ctx)
    result = purge_workspace(settings)
    if _json(ctx):
        console.print_json(data={"removed": result.removed, "kept": result.kept})
        return
    console.print(f"[green]✔ Purged {result.removed} orphaned record(s)[/], kept {result.kept}")


# ── forage version ────────────────────────────────────────────


@app.command()
def version():
    """📦 Show Forage version."""
    from forage import __version__
    console.print(f"[bold cyan]🔎 Forage[/] v{__version__}")


# ── Entry point ───────────────────────────────────────────────


def main() -> None:
    """Console script: run the app, turning unhandled errors into exit code 1."""
    try:
        app()
    except Exception as exc:
        err_console.print(f"[bold red]✖[/] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
