"""``stagepress verify-ledger`` — check the hash chain of every subject."""

from __future__ import annotations

import typer
from rich.table import Table

from stagepress.cli.session import console, coordinator_session
from stagepress.core.errors import LedgerIntegrityError


def verify_ledger_cmd(
    subject: str = typer.Argument(None, help="Only verify this subject (default: all)."),
) -> None:
    """Recompute every entry hash and check the chain links."""
    with coordinator_session() as coordinator:
        subjects = [subject] if subject else coordinator.ledger.subjects()
        failures: dict[str, str] = {}
        for name in subjects:
            try:
                coordinator.ledger.verify_chain(name)
            except LedgerIntegrityError as exc:
                failures[name] = str(exc)

    table = Table(title="Ledger verification")
    table.add_column("Subject", style="cyan")
    table.add_column("Chain")
    for name in subjects:
        if name in failures:
            table.add_row(name, f"[red]BROKEN[/red] {failures[name]}")
        else:
            table.add_row(name, "[green]valid[/green]")
    console.print(table)

    if failures:
        raise typer.Exit(code=1)
