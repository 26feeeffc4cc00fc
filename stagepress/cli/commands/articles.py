"""Article commands: ``stage``, ``promote``, ``republish``, ``reject``, ``status``,
``history`` and ``import-articles``.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.panel import Panel
from rich.table import Table

from stagepress.config import PublishConfig
from stagepress.core.article_store import SQLiteArticleStore
from stagepress.models.article import Article
from stagepress.cli.session import console, coordinator_session

_ACTOR_OPTION = typer.Option(..., "--actor", "-a", help="Identity recorded in the ledger.")


def stage_cmd(
    article_id: str = typer.Argument(..., help="Article to stage."),
    actor: str = _ACTOR_OPTION,
) -> None:
    """Render an approved article and write it to staging."""
    with coordinator_session() as coordinator:
        result = coordinator.stage(article_id, actor)
    note = " [dim](unchanged, write skipped)[/dim]" if result.skipped else ""
    console.print(f"[bold green]Staged[/bold green] {article_id}{note}")
    console.print(f"  Preview: {result.staging_url}")


def promote_cmd(
    article_id: str = typer.Argument(..., help="Article to promote."),
    actor: str = _ACTOR_OPTION,
) -> None:
    """Back up production and promote the staged article onto it."""
    with coordinator_session() as coordinator:
        result = coordinator.promote(article_id, actor)
    if result.skipped:
        console.print(
            f"[bold yellow]{article_id} is already live[/bold yellow] "
            f"(version {result.version}); nothing written."
        )
    else:
        console.print(
            Panel(
                "\n".join([
                    f"[bold]URL:[/bold]      {result.production_url}",
                    f"[bold]Version:[/bold]  {result.version}",
                    f"[bold]Release:[/bold]  {result.release_version}",
                    f"[bold]Backup:[/bold]   {result.backup_id}",
                ]),
                title=f"[bold green]Promoted {article_id}[/bold green]",
                border_style="green",
            )
        )


def republish_cmd(
    article_id: str = typer.Argument(..., help="Published article to republish."),
    actor: str = _ACTOR_OPTION,
) -> None:
    """Stage and promote a published article in one step."""
    with coordinator_session() as coordinator:
        result = coordinator.republish(article_id, actor)
    promoted = result.promoted
    state = "unchanged" if promoted.skipped else f"version {promoted.version}"
    console.print(f"[bold green]Republished[/bold green] {article_id}: {state}")
    console.print(f"  {promoted.production_url}")


def reject_cmd(
    article_id: str = typer.Argument(..., help="Unpublished article to reject."),
    actor: str = _ACTOR_OPTION,
) -> None:
    """Reject an unpublished article (terminal)."""
    with coordinator_session() as coordinator:
        coordinator.reject(article_id, actor)
    console.print(f"[bold red]Rejected[/bold red] {article_id}")


def status_cmd(
    article_id: str = typer.Argument(..., help="Article to inspect."),
) -> None:
    """Show an article's current publishing block."""
    with coordinator_session() as coordinator:
        block = coordinator.publishing_status(article_id)

    table = Table(title=f"Publishing status: {article_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Stage", block.stage.value)
    table.add_row("Version", str(block.version))
    table.add_row("Staged", f"{block.staged_at or '-'} by {block.staged_by or '-'}")
    table.add_row("Published", f"{block.published_at or '-'} by {block.published_by or '-'}")
    for environment, content_hash in sorted(block.content_hash.items()):
        table.add_row(f"Hash ({environment})", content_hash)
    table.add_row("Staging URL", block.staging_url or "-")
    table.add_row("Production URL", block.production_url or "-")
    console.print(table)


def history_cmd(
    subject: str = typer.Argument(..., help="Article id, or listing:<language>."),
) -> None:
    """Show the ledger history of an article or listing."""
    with coordinator_session() as coordinator:
        entries = coordinator.history(subject)

    if not entries:
        console.print(f"[dim]No ledger entries for {subject}.[/dim]")
        return

    table = Table(title=f"Ledger: {subject}")
    table.add_column("Time (UTC)", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Transition")
    table.add_column("Actor")
    table.add_column("Version", justify="right")
    table.add_column("Release", justify="right")
    table.add_column("Backup", style="dim")
    for entry in entries:
        action = entry.action.value + (" [dim](no-op)[/dim]" if entry.skipped else "")
        table.add_row(
            entry.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
            action,
            f"{entry.from_stage.value} -> {entry.to_stage.value}",
            entry.actor,
            str(entry.version),
            str(entry.release_version or ""),
            entry.backup_id,
        )
    console.print(table)


def import_cmd(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file of article records."),
) -> None:
    """Load canonical article records (a JSON list) into the local Article Store."""
    config = PublishConfig()
    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"[bold red]Invalid JSON in {path}:[/bold red] {exc}")
        raise typer.Exit(code=1)
    if isinstance(records, dict):
        records = [records]

    store = SQLiteArticleStore(config.article_db_path)
    imported = 0
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            console.print(f"[yellow]Skipping record {index}:[/yellow] not a JSON object")
            continue
        record.setdefault("primary_language", config.primary_language)
        try:
            article = Article.model_validate(record)
        except ValidationError as exc:
            console.print(f"[yellow]Skipping record {index}:[/yellow] {exc.errors()[0]['msg']}")
            continue
        store.save_article(article)
        imported += 1
    console.print(f"[bold green]Imported {imported} article(s)[/bold green] into {config.article_db_path}")
