"""CLI commands for livequiz.

Commands:
- init-db: Create the SQLite database
- serve: Run the Web API
- materials: List a session's materials
- generate: Generate and store quiz items for a session
- push: Mark a quiz item pushed (no live audience outside the server)
"""

import asyncio
import logging
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from livequiz.config.app_config import load_app_config
from livequiz.core.context_assembler import NO_CONTENT, assemble
from livequiz.core.errors import StateConflictError
from livequiz.core.push_coordinator import PushCoordinator
from livequiz.core.quiz_generator import generate_quiz
from livequiz.db.database import init_db
from livequiz.db.materials_repository import list_materials
from livequiz.db.quiz_repository import insert_quiz_items
from livequiz.llm.client import LLMClient, LLMConfig
from livequiz.web.broadcast import BroadcastChannel

app = typer.Typer(
    name="livequiz",
    help="Material ingestion, quiz generation and live quiz push.",
    no_args_is_help=True,
)

console = Console()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def _open_db() -> None:
    config = load_app_config()
    init_db(Path(config.db_path))


def _truncate(text: str, max_len: int = 80) -> str:
    text = " ".join(text.split())
    return text if len(text) <= max_len else text[: max_len - 1] + "…"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _configure_logging(verbose)


@app.command(name="init-db")
def init_database(
    db_path: Path | None = typer.Option(None, "--db", help="Database file (overrides config)"),
) -> None:
    """Create the database and its tables."""
    path = db_path or Path(load_app_config().db_path)
    init_db(path)
    console.print(f"[green]✓ Database ready:[/green] {path}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
) -> None:
    """Run the Web API with uvicorn."""
    import uvicorn

    from livequiz.web.api import create_app

    console.print(f"[blue]Serving livequiz on http://{host}:{port}[/blue]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def materials(
    session_id: str = typer.Argument(..., help="Session ID"),
) -> None:
    """List the materials of a session and their ingestion status."""
    _open_db()
    records = list_materials(session_id)

    if not records:
        console.print(f"[yellow]No materials for session {session_id}[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Chars", justify="right")
    table.add_column("Error")

    status_colors = {"processing": "blue", "completed": "green", "timeout": "yellow"}
    for record in records:
        color = status_colors.get(record.status, "white")
        table.add_row(
            record.material_id,
            record.filename,
            f"[{color}]{record.status}[/{color}]",
            str(len(record.extracted_text or "")),
            record.error_message or "",
        )

    console.print(table)


@app.command()
def generate(
    session_id: str = typer.Argument(..., help="Session ID"),
    count: int | None = typer.Option(None, "--count", "-n", help="Number of questions"),
    provider: str | None = typer.Option(None, "--provider", help="LLM provider: lmstudio, openai"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model name (overrides config)"),
) -> None:
    """Generate quiz items from a session's materials and transcript, and store them."""
    config = load_app_config()
    init_db(Path(config.db_path))
    gen_config = config.generation

    context = assemble(session_id, max_chars=gen_config.max_context_chars)
    if context is NO_CONTENT:
        console.print(f"[red]✗ No completed materials or transcript for {session_id}[/red]")
        raise typer.Exit(code=1)

    client = LLMClient(LLMConfig.from_provider(provider or gen_config.provider, model))
    requested = count if count is not None else gen_config.default_count

    console.print(f"[blue]Generating {requested} questions for {session_id}...[/blue]")
    console.print(f"  [dim]LLM:[/dim] {client.config.provider}/{client.config.model}")
    console.print(f"  [dim]context:[/dim] {context.char_count} chars")

    result = asyncio.run(
        generate_quiz(
            client,
            context,
            count=requested,
            timeout=gen_config.timeout,
            max_count=gen_config.max_count,
        )
    )

    for warning in result.warnings:
        console.print(f"  [yellow]⚠ {warning}[/yellow]")

    if not result.success:
        console.print(f"[red]✗ {result.error_kind}: {result.message}[/red]")
        raise typer.Exit(code=1)

    records = insert_quiz_items(session_id, [item.to_dict() for item in result.items])
    console.print(f"[green]✓ {result.message}[/green] ({result.latency_ms / 1000:.1f} sec)\n")

    for i, record in enumerate(records, 1):
        console.print(f"[bold]{i}. {record.question}[/bold]  [dim]{record.quiz_id}[/dim]")
        for j, option in enumerate(record.options):
            marker = "[green]✓[/green]" if j == record.correct_index else " "
            console.print(f"   {marker} {chr(ord('A') + j)}) {_truncate(option)}")


@app.command()
def push(
    session_id: str = typer.Argument(..., help="Session ID"),
    quiz_id: str | None = typer.Option(None, "--quiz-id", "-q", help="Push this quiz item"),
    force: bool = typer.Option(False, "--force", "-f", help="Push without confirmation"),
) -> None:
    """Mark a quiz item pushed.

    Outside the server process there are no live connections, so the
    recipient count is always 0; use the HTTP endpoint during a lecture.
    """
    _open_db()
    console.print(
        "[yellow]⚠ This push bypasses any running server: connected audience "
        "clients will not receive the item, and it will no longer be pushable.[/yellow]"
    )
    if not force and not typer.confirm("Mark the item pushed anyway?", default=False):
        raise typer.Exit(code=1)

    coordinator = PushCoordinator(BroadcastChannel())

    try:
        outcome = coordinator.push_item(session_id, quiz_id)
    except StateConflictError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Pushed {outcome.item.quiz_id}[/green]")
    console.print(f"  [dim]question:[/dim]   {_truncate(outcome.item.question)}")
    console.print(f"  [dim]pushed_at:[/dim]  {outcome.item.pushed_at}")
    console.print(f"  [dim]recipients:[/dim] {outcome.recipients}")
