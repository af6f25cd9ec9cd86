"""CLI — Audit log inspection commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from llm_remote.cli.commands._common import load_settings
from llm_remote.exceptions import StorageError
from llm_remote.security.audit import AuditLog
from llm_remote.security.cipher import CipherEngine

app = typer.Typer(help="Read and verify the encrypted audit log.")
console = Console()

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
]


def _open_log(config: Path | None) -> AuditLog:
    settings = load_settings(config)
    cipher = CipherEngine(settings.crypto.master_password)
    return AuditLog(cipher, settings.paths.audit_path)


@app.command("query")
def query(
    user_id: int = typer.Argument(help="Principal id to look up."),
    limit: int = typer.Option(15, "--limit", "-n", min=1, help="Maximum entries."),
    config: ConfigOption = None,
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON."),
) -> None:
    """Show the most recent audit entries for a user."""
    audit = _open_log(config)
    try:
        entries = audit.query(user_id, limit=limit)
    except StorageError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps([e.to_dict() for e in entries], indent=2))
        return

    if not entries:
        console.print(f"No audit entries for user {user_id}.")
        return

    table = Table(title=f"Audit — user {user_id}")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("Data")
    for entry in entries:
        table.add_row(
            entry.timestamp,
            entry.action,
            json.dumps(entry.data, ensure_ascii=False) if entry.data else "",
        )
    console.print(table)


@app.command("verify")
def verify(config: ConfigOption = None) -> None:
    """Decrypt every line and report corrupted entries."""
    audit = _open_log(config)
    try:
        result = audit.verify()
    except StorageError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)

    console.print(f"{result.total} entries, {result.valid} valid, {result.corrupted} corrupted")
    if not result.intact:
        raise typer.Exit(1)
