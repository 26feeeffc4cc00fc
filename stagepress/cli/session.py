"""Shared plumbing for CLI commands: console, logging, coordinator lifetime."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console

from stagepress.config import PublishConfig
from stagepress.core.coordinator import PublishCoordinator
from stagepress.core.errors import PublishError

console = Console()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@contextmanager
def coordinator_session() -> Iterator[PublishCoordinator]:
    """Build a coordinator from the current environment and close it afterwards.

    Publishing errors are printed and turned into exit code 1 (2 for
    retryable errors, so schedulers can tell "try again" from "fix it").
    """
    coordinator = PublishCoordinator.from_config(PublishConfig())
    try:
        yield coordinator
    except PublishError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=2 if exc.retryable else 1)
    finally:
        coordinator.close()
