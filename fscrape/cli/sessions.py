"""Session commands.

Inspect stored sessions and run backup, restore and cleanup.
"""

from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer

from fscrape.cli.utils import (
    build_engine,
    display_error,
    display_success,
    display_warning,
    handle_errors,
    load_config,
    load_stored_sessions,
)
from fscrape.models.session import SessionStatus

sessions_app = typer.Typer(help="Inspect and maintain scraping sessions")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to engine config YAML")


@sessions_app.command(name="list")
@handle_errors
def sessions_list(
    status: Optional[SessionStatus] = typer.Option(
        None, "--status", "-s", help="Only show sessions with this status"
    ),
    config_path: Optional[Path] = ConfigOption,
):
    """List known sessions."""
    _, manager = _open(config_path)

    sessions = manager.get_all_sessions()
    if status is not None:
        sessions = [s for s in sessions if s.status == status]

    if not sessions:
        display_warning("No sessions found")
        return

    typer.echo(f"{len(sessions)} session(s):")
    for s in sorted(sessions, key=lambda s: s.started_at):
        total = s.progress.total_items or "?"
        typer.echo(
            f" - {s.id} [{s.status.value}] {s.source_kind.value} "
            f"{s.config.query_value or ''} {s.progress.processed_items}/{total}"
        )


@sessions_app.command(name="show")
@handle_errors
def sessions_show(
    session_id: str = typer.Argument(..., help="Session id"),
    config_path: Optional[Path] = ConfigOption,
):
    """Show one session in detail."""
    _, manager = _open(config_path)

    session = manager.get_session(session_id)
    if session is None:
        display_error(f"Session '{session_id}' not found")
        raise typer.Exit(code=1)

    typer.echo(f"Session:   {session.id}")
    typer.echo(f"Source:    {session.source_kind.value}")
    typer.echo(f"Target:    {session.config.query_value or '-'}")
    typer.echo(f"Status:    {session.status.value}")
    typer.echo(f"Started:   {session.started_at.isoformat()}")
    typer.echo(f"Updated:   {session.updated_at.isoformat()}")
    if session.completed_at:
        typer.echo(f"Completed: {session.completed_at.isoformat()}")
    typer.echo(
        f"Progress:  {session.progress.processed_items} processed, "
        f"{session.progress.failed_items} failed, "
        f"{session.progress.total_items or '?'} total"
    )
    typer.echo(
        f"Requests:  {session.metrics.request_count} "
        f"({session.metrics.rate_limit_hits} rate limited)"
    )
    if session.resume_data and session.resume_data.next_cursor:
        typer.echo(f"Cursor:    {session.resume_data.next_cursor}")
    typer.echo(f"Resumable: {'yes' if manager.can_resume(session.id) else 'no'}")

    if session.errors:
        typer.echo(f"Errors ({len(session.errors)}):")
        for entry in session.errors[-5:]:
            item = f" [{entry.item_id}]" if entry.item_id else ""
            typer.echo(f"  {entry.timestamp.isoformat()}{item}: {entry.message}")


@sessions_app.command(name="backup")
@handle_errors
def sessions_backup(
    path: Path = typer.Argument(..., help="Backup file to write"),
    config_path: Optional[Path] = ConfigOption,
):
    """Write every stored session to a backup file."""
    _, manager = _open(config_path)

    if not manager.create_backup(path):
        display_error(f"Backup to {path} failed")
        raise typer.Exit(code=1)
    display_success(f"Backed up {len(manager.get_all_sessions())} session(s) to {path}")


@sessions_app.command(name="restore")
@handle_errors
def sessions_restore(
    path: Path = typer.Argument(..., help="Backup file to restore"),
    config_path: Optional[Path] = ConfigOption,
):
    """Restore sessions from a backup file, overwriting by id."""
    if not path.exists():
        display_error(f"Backup file not found: {path}")
        raise typer.Exit(code=1)

    _, manager = _open(config_path)
    restored = manager.restore_from_backup(path)
    display_success(f"Restored {restored} session(s) from {path}")


@sessions_app.command(name="cleanup")
@handle_errors
def sessions_cleanup(
    hours: Optional[float] = typer.Option(
        None, "--hours", help="Age threshold (defaults to the configured retention)"
    ),
    config_path: Optional[Path] = ConfigOption,
):
    """Delete finished sessions older than the age threshold."""
    config = load_config(config_path)
    store, manager = build_engine(config)
    load_stored_sessions(store, manager)

    age = timedelta(hours=hours if hours is not None else config.sessions.retention_hours)
    removed = manager.cleanup(age)
    deleted = store.delete_sessions_older_than(age)
    display_success(
        f"Removed {removed} session(s) from memory, deleted {deleted} stored record(s)"
    )


def _open(config_path: Optional[Path]):
    config = load_config(config_path)
    store, manager = build_engine(config)
    load_stored_sessions(store, manager)
    return store, manager
