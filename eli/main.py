"""
Eli Assistant - CLI Entry Point
--------------------------------
Operator commands around the chat pipeline.

Usage:
    python -m eli.main serve                          # Run the HTTP API (uvicorn)
    python -m eli.main chat                           # Interactive chat, public surface
    python -m eli.main chat -q "Which courses..."     # Single-shot turn
    python -m eli.main chat --surface internal --token TOKEN
    python -m eli.main history SESSION_ID             # Replay a logged session
    python -m eli.main status                         # Corpus counts and configuration
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from eli.config import Settings, load_settings
from eli.directives import ParsedMessage, parse_directives
from eli.errors import EliError
from eli.schemas import ChatMessage, ChatRequest, Surface, UICard
from eli.utils.logger import setup_logger

app = typer.Typer(
    name="eli",
    help="Eli - retrieval-augmented assistant for the website and staff dashboard",
    add_completion=False,
)
console = Console()


# --- Helpers ------------------------------------------------------------------

def _settings(config: Optional[str]) -> Settings:
    settings = load_settings(config)
    setup_logger(settings.logging.level, settings.logging.file)
    return settings


def _cards_table(title: str, items: list[UICard]) -> Table:
    table = Table("Title", "Description", "Link", title=title, box=box.SIMPLE, header_style="bold dim")
    for item in items:
        table.add_row(item.title, item.description, item.url)
    return table


def _print_message(message: ParsedMessage) -> None:
    """Render a parsed assistant message: prose, UI components and signals."""
    console.print()
    if message.text.strip():
        console.print(
            Panel(
                Markdown(message.text.strip()),
                title="[bold green]Eli[/bold green]",
                border_style="green",
                expand=True,
            )
        )
    if message.carousel:
        console.print(_cards_table("Recommended", message.carousel))
    elif message.card:
        card = message.card
        console.print(Panel(f"{card.description}\n[link]{card.url}[/link]", title=card.title, expand=False))
    for error in message.errors:
        console.print(f"[yellow]Unreadable component:[/yellow] {error[:60]}")
    if message.lead_capture:
        console.print("[cyan]>> Lead form requested[/cyan]")
    if message.human_handoff:
        console.print("[cyan]>> Handoff to a human advisor offered[/cyan]")
    console.print()


async def _chat_async(
    settings: Settings,
    query: Optional[str],
    surface: Surface,
    token: Optional[str],
    session_id: str,
) -> None:
    from eli.serving.pipeline import ChatPipeline

    with console.status("[cyan]Loading corpus...[/cyan]"):
        pipeline = ChatPipeline.from_settings(settings)
    stats = await pipeline.store.corpus_stats()
    console.print(
        f"[green][OK] Corpus loaded[/green] | {stats['embeddings']:,} embeddings "
        f"| surface={surface.value} | session=[dim]{session_id}[/dim]"
    )

    history: list[ChatMessage] = []
    authorization = f"Bearer {token}" if token else None

    async def turn(text: str) -> None:
        history.append(ChatMessage(role="user", content=text))
        request = ChatRequest(messages=list(history), surface=surface, session_id=session_id)
        try:
            stream = await pipeline.handle_turn(request, client_key="cli", authorization=authorization)
        except EliError as exc:
            history.pop()
            console.print(f"[red]{exc.status_code}: {exc.public_message}[/red]")
            return
        with console.status("[cyan]Thinking...[/cyan]"):
            answer = await stream.read_all()
            await stream.wait()
        history.append(ChatMessage(role="assistant", content=answer))
        _print_message(parse_directives(answer))

    if query:
        await turn(query)
        return

    console.print("[dim]Type 'exit', 'quit', or press Ctrl+C to quit.[/dim]\n")
    while True:
        try:
            raw = (await asyncio.to_thread(console.input, "[bold cyan]You[/bold cyan] > ")).strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye.[/dim]")
            break
        if not raw:
            continue
        if raw.lower() in {"exit", "quit", "q"}:
            console.print("[dim]Goodbye.[/dim]")
            break
        await turn(raw)


# --- Commands -----------------------------------------------------------------

@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Run the HTTP API (app.server:app) under uvicorn."""
    import uvicorn

    uvicorn.run("app.server:app", host=host, port=port, reload=reload)


@app.command()
def chat(
    query: Optional[str] = typer.Option(
        None, "--query", "-q", help="Single message (omit for interactive loop)"
    ),
    surface: str = typer.Option(
        "public", "--surface", "-s", help="public | internal (website / dashboard accepted)"
    ),
    token: Optional[str] = typer.Option(
        None, "--token", help="Bearer credential for the internal surface"
    ),
    session_id: Optional[str] = typer.Option(
        None, "--session", help="Session id to log turns under (default: new uuid)"
    ),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config YAML"
    ),
) -> None:
    """
    Chat with Eli from the terminal.

    \b
    Each turn runs the same path as the HTTP API:
      1. Rate limit and surface/credential checks
      2. Query embedding + cosine search over the corpus
      3. Context assembly and course recommendation
      4. Streamed answer (internal surface may call dashboard tools)
      5. Turn logged to the store
    """
    try:
        chosen = Surface(surface)
    except ValueError:
        console.print(f"[red]Unknown surface: {surface}[/red]")
        raise typer.Exit(1)

    settings = _settings(config)
    asyncio.run(_chat_async(settings, query, chosen, token, session_id or str(uuid.uuid4())))


@app.command()
def history(
    session_id: str = typer.Argument(..., help="Session id to replay"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Print the logged messages of a session in order."""
    from eli.serving.pipeline import session_history
    from eli.store import JsonFileStore

    settings = _settings(config)
    store = JsonFileStore(settings.storage.data_dir)
    messages = asyncio.run(session_history(store, session_id))
    if not messages:
        console.print(f"[yellow]No turns logged for session {session_id}[/yellow]")
        raise typer.Exit(1)

    for item in messages:
        style = "cyan" if item["role"] == "user" else "green"
        console.print(f"[dim]{item['createdAt']}[/dim] [bold {style}]{item['role']}[/bold {style}]")
        if item["role"] == "assistant":
            _print_message(parse_directives(item["content"]))
        else:
            console.print(f"  {item['content']}\n")


@app.command()
def status(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Show corpus counts and the active configuration."""
    from eli.store import JsonFileStore

    settings = _settings(config)
    stats = asyncio.run(JsonFileStore(settings.storage.data_dir).corpus_stats())

    console.print()
    console.print("[bold]Corpus[/bold]")
    for name, count in stats.items():
        console.print(f"  {name:<11}: [green]{count:,}[/green]")
    console.print()
    console.print("[bold]Configuration[/bold]")
    console.print(f"  Assistant  : {settings.project.assistant_name} ({settings.project.organisation})")
    console.print(f"  Chat model : [cyan]{settings.models.chat_model}[/cyan]")
    console.print(f"  Embeddings : [cyan]{settings.models.embedding_model}[/cyan] ({settings.models.dimensions} dims)")
    console.print(f"  top_k      : {settings.retrieval.top_k}")
    console.print(
        f"  Rate limit : {settings.rate_limit.limit} / {settings.rate_limit.window_ms} ms per client"
    )
    console.print(f"  Auth       : {settings.auth.provider}")
    console.print(f"  Data dir   : [dim]{settings.storage.data_dir}[/dim]")
    console.print()


if __name__ == "__main__":
    app()
