"""CLI entry point for db-session-handler.

Invoked as::

    db-session-handler [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m db_session_handler.cli.main

Commands
--------
- version      — Show version information
- init-db      — Create the sessions table
- gc           — Delete expired sessions
- generate-id  — Print a new session identifier
- show         — Print a session's payload
- delete       — Delete a session
"""
from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from db_session_handler import __version__
from db_session_handler.config import SessionStoreSettings, load_settings
from db_session_handler.convenience import SessionStore
from db_session_handler.errors import BackendError, ConfigurationError
from db_session_handler.identifiers import SessionIdGenerator

console = Console()

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(config_path: str | None, database_url: str | None) -> SessionStoreSettings:
    """Load settings from ``config_path`` (if any) and apply the URL override."""
    settings = load_settings(config_path) if config_path else SessionStoreSettings()
    if database_url:
        settings = settings.model_copy(update={"database_url": database_url})
    return settings


def _guard(action: Callable[[], T]) -> T:
    """Run ``action``, turning package errors into a message and exit status."""
    try:
        return action()
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(2)
    except BackendError as exc:
        console.print(f"[red]Storage error:[/red] {exc}")
        sys.exit(1)


def _store(ctx: click.Context) -> SessionStore:
    if "store" not in ctx.obj:
        ctx.obj["store"] = _guard(lambda: SessionStore(settings=ctx.obj["settings"]))
    return ctx.obj["store"]


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="db-session-handler")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML settings file.",
)
@click.option("--database-url", default=None, help="SQLAlchemy database URL.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    database_url: str | None,
    verbose: bool,
) -> None:
    """Database-backed session storage with row locking"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["settings"] = _guard(lambda: _make_settings(config_path, database_url))


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show version information."""

    console.print(f"[bold]db-session-handler[/bold] v{__version__}")


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


@cli.command(name="init-db")
@click.pass_context
def init_db_command(ctx: click.Context) -> None:
    """Create the sessions table if it does not exist."""
    store = _store(ctx)
    _guard(store.create_schema)
    console.print(f"[green]Table ready:[/green] {store.settings.table_name}")


# ---------------------------------------------------------------------------
# gc
# ---------------------------------------------------------------------------


@cli.command(name="gc")
@click.option(
    "--max-lifetime",
    default=None,
    type=click.IntRange(min=0),
    help="Seconds after which a session expires (default: from settings).",
)
@click.pass_context
def gc_command(ctx: click.Context, max_lifetime: int | None) -> None:
    """Delete every expired session."""
    store = _store(ctx)
    lifetime = store.settings.max_lifetime if max_lifetime is None else max_lifetime

    def run() -> None:
        with store.backend() as backend:
            backend.gc(lifetime)

    _guard(run)
    console.print(f"[green]Expired sessions removed[/green] (max lifetime {lifetime}s)")


# ---------------------------------------------------------------------------
# generate-id
# ---------------------------------------------------------------------------


@cli.command(name="generate-id")
@click.option("--length", default=None, type=int, help="Identifier length (>= 256).")
@click.pass_context
def generate_id_command(ctx: click.Context, length: int | None) -> None:
    """Print a new session identifier."""
    settings: SessionStoreSettings = ctx.obj["settings"]
    target = settings.session_id_length if length is None else length
    session_id = _guard(lambda: SessionIdGenerator().generate(target))
    click.echo(session_id)


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@cli.command(name="show")
@click.argument("session_id")
@click.option(
    "--max-lifetime",
    default=None,
    type=click.IntRange(min=0),
    help="Seconds after which a session expires (default: from settings).",
)
@click.pass_context
def show_command(ctx: click.Context, session_id: str, max_lifetime: int | None) -> None:
    """Print the payload stored for SESSION_ID."""
    store = _store(ctx)
    lifetime = store.settings.max_lifetime if max_lifetime is None else max_lifetime

    def run() -> tuple[bool, bytes]:
        with store.engine_session() as engine:
            found = engine.validate_once(session_id, lifetime)
            return found, engine.read(session_id, lifetime)

    found, payload = _guard(run)
    if not found:
        console.print(f"[yellow]Session not found or expired:[/yellow] {session_id[:16]}...")
        sys.exit(1)
    text = Text(payload.decode("utf-8", errors="replace"))
    console.print(Panel(text, title=f"Session {session_id[:16]}...", expand=False))


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------


@cli.command(name="delete")
@click.argument("session_id")
@click.pass_context
def delete_command(ctx: click.Context, session_id: str) -> None:
    """Delete the session stored under SESSION_ID."""
    store = _store(ctx)

    def run() -> None:
        with store.engine_session() as engine:
            engine.destroy(session_id)

    _guard(run)
    console.print(f"[green]Session deleted:[/green] {session_id[:16]}...")


if __name__ == "__main__":
    cli()
