"""CLI — Configuration commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from llm_remote.cli.commands._common import load_settings
from llm_remote.exceptions import ConfigurationError
from llm_remote.security.cipher import CipherEngine

app = typer.Typer(help="Validate configuration.")
console = Console()


@app.command("check")
def check(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
) -> None:
    """Load the configuration and derive the cipher keys once."""
    settings = load_settings(config)
    try:
        CipherEngine(settings.crypto.master_password)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error: {exc.message}[/red]")
        raise typer.Exit(1)

    table = Table(title="LLM Remote Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("authorized users", ", ".join(str(u) for u in settings.auth.authorized_users))
    table.add_row("session timeout", f"{settings.auth.session_timeout_minutes} min")
    table.add_row("rate limit", f"{settings.security.rate_limit_per_minute}/min")
    table.add_row(
        "lockout",
        f"{settings.auth.lockout_threshold} attempts, "
        f"{settings.auth.lockout_base_minutes} min base, {settings.auth.lockout_max_hours} h max",
    )
    table.add_row("default work dir", settings.auth.default_work_dir)
    table.add_row("sessions file", str(settings.paths.sessions_path))
    table.add_row("audit file", str(settings.paths.audit_path))
    table.add_row(
        "snapshot encryption",
        "on" if settings.security.encrypt_session_snapshot else "[yellow]off[/yellow]",
    )
    console.print(table)
    console.print("[bold green]Configuration OK[/bold green]")
