"""Main Typer application — imports and registers all CLI commands.

Entry point: ``stagepress`` (configured via pyproject.toml scripts).

Configuration comes from ``STAGEPRESS_*`` environment variables and an
optional ``.env`` file; see ``stagepress.config``.
"""

from __future__ import annotations

import typer

from stagepress.cli.commands.articles import (
    history_cmd,
    import_cmd,
    promote_cmd,
    reject_cmd,
    republish_cmd,
    stage_cmd,
    status_cmd,
)
from stagepress.cli.commands.backups import backups_cmd, rollback_cmd, sweep_cmd
from stagepress.cli.commands.ledger_cmd import verify_ledger_cmd
from stagepress.cli.commands.listing import promote_listing_cmd
from stagepress.cli.session import configure_logging
from stagepress.config import PublishConfig

app = typer.Typer(
    name="stagepress",
    help="Stagepress: staged, versioned, rollback-safe article publishing.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(None, "--log-level", help="Override STAGEPRESS_LOG_LEVEL."),
) -> None:
    configure_logging(log_level or PublishConfig().log_level)


# Register subcommands
app.command(name="stage", help="Render an approved article to staging.")(stage_cmd)
app.command(name="promote", help="Promote a staged article to production.")(promote_cmd)
app.command(name="republish", help="Stage and promote a published article.")(republish_cmd)
app.command(name="reject", help="Reject an unpublished article.")(reject_cmd)
app.command(name="status", help="Show an article's publishing status.")(status_cmd)
app.command(name="history", help="Show the ledger history of an article or listing.")(history_cmd)
app.command(name="promote-listing", help="Promote a language's listing page.")(promote_listing_cmd)
app.command(name="backups", help="List production backups.")(backups_cmd)
app.command(name="rollback", help="Restore production from a backup.")(rollback_cmd)
app.command(name="sweep", help="Delete backups past the retention window.")(sweep_cmd)
app.command(name="verify-ledger", help="Verify ledger hash chains.")(verify_ledger_cmd)
app.command(name="import-articles", help="Load article records from a JSON file.")(import_cmd)


@app.command(name="serve", help="Run the administrative HTTP API.")
def serve_cmd(
    host: str = typer.Option(None, help="Bind address (default: STAGEPRESS_HOST)."),
    port: int = typer.Option(None, help="Bind port (default: STAGEPRESS_PORT)."),
) -> None:
    """Serve the FastAPI app with uvicorn."""
    import uvicorn

    config = PublishConfig()
    uvicorn.run(
        "stagepress.api.app:app",
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
