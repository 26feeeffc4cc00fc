"""Backup commands: ``backups``, ``rollback`` and ``sweep``."""

from __future__ import annotations

import typer
from rich.panel import Panel
from rich.table import Table

from stagepress.cli.session import console, coordinator_session


def backups_cmd() -> None:
    """List production backups, newest first."""
    with coordinator_session() as coordinator:
        backups = coordinator.list_backups()

    if not backups:
        console.print("[dim]No backups yet.[/dim]")
        return

    table = Table(title="Production backups")
    table.add_column("Backup id", style="cyan")
    table.add_column("Created (UTC)")
    table.add_column("Objects", justify="right")
    table.add_column("Reason", style="dim")
    for backup in backups:
        table.add_row(
            backup.backup_id,
            backup.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(backup.object_count),
            backup.reason,
        )
    console.print(table)


def rollback_cmd(
    backup_id: str = typer.Option(None, "--backup", "-b", help="Backup to restore (default: newest)."),
    actor: str = typer.Option(..., "--actor", "-a", help="Identity recorded in the ledger."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Restore production from a backup."""
    if not yes:
        target = backup_id or "the newest backup"
        typer.confirm(f"Replace production with {target}?", abort=True)

    with coordinator_session() as coordinator:
        result = coordinator.restore(actor, backup_id)

    subjects = ", ".join(result.affected_subjects) or "none"
    console.print(
        Panel(
            "\n".join([
                f"[bold]Restored:[/bold]        {result.backup_id}",
                f"[bold]Undo point:[/bold]      {result.pre_restore_backup_id}",
                f"[bold]Release:[/bold]         {result.release_version}",
                f"[bold]Objects:[/bold]         {len(result.restored_keys)} restored, "
                f"{len(result.removed_keys)} removed",
                f"[bold]Affected:[/bold]        {subjects}",
            ]),
            title="[bold yellow]Production rolled back[/bold yellow]",
            border_style="yellow",
        )
    )


def sweep_cmd() -> None:
    """Delete backups older than the retention window (keeps the newest)."""
    with coordinator_session() as coordinator:
        result = coordinator.sweep_backups()
    console.print(
        f"[bold green]Sweep complete:[/bold green] {len(result.deleted)} deleted, "
        f"{len(result.kept)} kept."
    )
    for backup_id in result.deleted:
        console.print(f"  [dim]- {backup_id}[/dim]")
