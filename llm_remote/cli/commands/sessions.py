"""CLI — Session snapshot inspection."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from llm_remote.cli.commands._common import format_ts, load_settings
from llm_remote.security.cipher import CipherEngine
from llm_remote.security.session import SessionStore

app = typer.Typer(help="Inspect persisted sessions.")
console = Console()


@app.command("list")
def list_sessions(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
) -> None:
    """List sessions in the snapshot that are still valid.  Never writes the files."""
    settings = load_settings(config)
    cipher = (
        CipherEngine(settings.crypto.master_password)
        if settings.security.encrypt_session_snapshot
        else None
    )
    store = SessionStore(
        authorized_users=settings.auth.authorized_users,
        pin=settings.auth.pin,
        session_timeout=settings.auth.session_timeout_seconds,
        default_working_context=settings.auth.default_work_dir,
        snapshot_path=settings.paths.sessions_path,
        cipher=cipher,
        read_only=True,
    )

    users = store.authenticated_users()
    if not users:
        console.print("No active sessions.")
        return

    table = Table(title="Active Sessions")
    table.add_column("User", style="cyan")
    table.add_column("Authenticated")
    table.add_column("Last activity")
    table.add_column("Expires in", style="green")
    table.add_column("Working context")
    for user in users:
        info = store.info(user)
        if info is None:
            continue
        table.add_row(
            str(user),
            format_ts(info.authenticated_at),
            format_ts(info.last_activity_at),
            f"{info.remaining_minutes} min",
            info.working_context,
        )
    console.print(table)
