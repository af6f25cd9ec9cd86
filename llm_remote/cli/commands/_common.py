"""CLI — Helpers shared by the command groups."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.console import Console

from llm_remote.config import Settings
from llm_remote.exceptions import ConfigurationError
from llm_remote.logging import configure_logging

console = Console()


def load_settings(config_file: Path | None) -> Settings:
    """Load settings or exit with code 1 on a configuration error."""
    try:
        settings = Settings.load(config_file=config_file)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error: {exc.message}[/red]")
        raise typer.Exit(1)
    configure_logging(level="warning", format=settings.logging.format)
    return settings


def format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
