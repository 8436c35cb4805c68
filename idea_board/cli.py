"""
Command Line Interface for the Idea Board.
"""

import logging
from typing import List, Optional

import structlog
import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import get_settings
from .db.base import get_engine, get_session_local, init_database
from .db.repository import BoardRepository, SqlItemRepository
from .engine import history
from .engine.errors import BoardError, HistoryMismatchError
from .engine.primitives import Thresholds

app = typer.Typer(help="Idea Board - collaborative voting with automatic stage transitions")
console = Console()


def _configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ]
    )


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Start the Idea Board API server."""
    _configure_logging()
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Starting Idea Board on http://{host}:{port}", style="bold blue"))
    uvicorn.run("idea_board.main:app", host=host, port=port, reload=reload or settings.debug)


@app.command("init-db")
def init_db():
    """Create the database tables."""
    _configure_logging()
    init_database()
    console.print(f"✅ Database ready at {get_engine().url.render_as_string(hide_password=True)}")


@app.command("create-board")
def create_board(
    name: str = typer.Argument(..., help="Board display name"),
    slug: str = typer.Argument(..., help="Unique board slug"),
    admin: List[str] = typer.Option([], "--admin", help="Admin identity (repeatable)"),
    to_discussion: Optional[int] = typer.Option(None, help="Score that promotes backlog to discussion"),
    to_production: Optional[int] = typer.Option(None, help="Score that promotes discussion to production"),
    to_backlog: Optional[int] = typer.Option(None, help="Negative score magnitude that demotes to backlog"),
):
    """Create a board, optionally overriding the default thresholds."""
    _configure_logging()
    thresholds = None
    if any(v is not None for v in (to_discussion, to_production, to_backlog)):
        defaults = Thresholds.from_settings()
        thresholds = Thresholds(
            to_discussion=to_discussion or defaults.to_discussion,
            to_production=to_production or defaults.to_production,
            to_backlog=to_backlog or defaults.to_backlog,
        )

    db = get_session_local()()
    try:
        board = BoardRepository(db).create(name, slug, thresholds=thresholds, admins=admin)
    except BoardError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(1)
    finally:
        db.close()
    console.print(f"✅ Created board [bold]{board.slug}[/bold] ({board.id})")


@app.command("history")
def show_history(
    item_id: str = typer.Argument(..., help="Item ID"),
    newest_first: bool = typer.Option(False, "--newest-first", help="Show the newest entries first"),
):
    """Show an item's history and check that it replays to the stored state."""
    db = get_session_local()()
    try:
        item = SqlItemRepository(db).get(item_id)
    finally:
        db.close()
    if item is None:
        console.print(f"❌ Item {item_id} not found")
        raise typer.Exit(1)

    entries = history.newest_first(item.history) if newest_first else history.ordered(item.history)
    table = Table(title=f"{item.title} ({item.stage.value}, score {item.score})")
    table.add_column("When", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Actor", style="green")
    table.add_column("Detail")
    for entry in entries:
        table.add_row(
            entry.timestamp.isoformat(timespec="seconds"),
            entry.type,
            entry.actor,
            entry.detail or "",
        )
    console.print(table)

    try:
        state = history.verify(item)
    except HistoryMismatchError as e:
        console.print(Panel(e.message, title="Replay mismatch", style="bold red"))
        raise typer.Exit(2)
    console.print(
        Panel(
            f"score={state.score} stage={state.stage.value}",
            title="Replay consistent",
            style="green",
        )
    )


if __name__ == "__main__":
    app()
