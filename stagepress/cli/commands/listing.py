"""``stagepress promote-listing LANGUAGE`` — publish a language's listing page."""

from __future__ import annotations

import typer
from rich.table import Table

from stagepress.cli.session import console, coordinator_session


def promote_listing_cmd(
    language: str = typer.Argument(None, help="Language whose listing to promote."),
    all_languages: bool = typer.Option(
        False,
        "--all",
        help="Promote the listing of every configured language.",
    ),
    actor: str = typer.Option(..., "--actor", "-a", help="Identity recorded in the ledger."),
) -> None:
    """Rebuild a listing from the published articles and promote it."""
    if not all_languages and not language:
        console.print("[bold red]Give a LANGUAGE or --all.[/bold red]")
        raise typer.Exit(code=1)

    with coordinator_session() as coordinator:
        if all_languages:
            results = coordinator.promote_all_listings(actor)
        else:
            results = [coordinator.promote_listing(language, actor)]

    table = Table(title="Listing promotion")
    table.add_column("Language", style="cyan")
    table.add_column("Articles", justify="right")
    table.add_column("Result")
    table.add_column("URL")
    for result in results:
        outcome = (
            "[dim]unchanged[/dim]"
            if result.skipped
            else f"[green]release {result.release_version}[/green]"
        )
        table.add_row(result.language, str(len(result.article_ids)), outcome, result.production_url)
    console.print(table)
