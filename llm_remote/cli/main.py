"""LLM Remote CLI — Entry point.

Usage:
    llm-remote keygen
    llm-remote config check [--config FILE]
    llm-remote audit query <user_id> [--limit N]
    llm-remote audit verify
    llm-remote sessions list
"""

from __future__ import annotations

import typer
from rich.console import Console

from llm_remote.cli.commands import audit, config, sessions
from llm_remote.security.cipher import generate_master_passphrase

app = typer.Typer(
    name="llm-remote",
    help="LLM Remote — trust and access core for a chat-driven AI remote control.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

app.add_typer(config.app, name="config")
app.add_typer(audit.app, name="audit")
app.add_typer(sessions.app, name="sessions")


@app.callback()
def main_callback() -> None:
    pass


@app.command("keygen")
def keygen() -> None:
    """Generate a random master passphrase."""
    passphrase = generate_master_passphrase()
    console.print("Generated master passphrase:")
    console.print(passphrase, markup=False, highlight=False)
    console.print("\nSet it as [cyan]LLM_REMOTE_CRYPTO__MASTER_PASSWORD[/cyan] or crypto.master_password.")


if __name__ == "__main__":
    app()
