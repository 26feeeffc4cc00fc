"""Stagepress CLI — Typer-based command-line interface.

Provides the ``stagepress`` command with subcommands for staging,
promoting and rejecting articles, promoting listings, inspecting the
ledger, and managing production backups.

All output uses Rich for formatted terminal display.
"""
