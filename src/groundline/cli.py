"""Typer-based CLI for Groundline."""

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import GroundlineConfig, resolve_api_key
from .errors import GroundlineError
from .grounding import PageContext, answer_question
from .llm.client import CompletionOrchestrator, dump_trace, get_transport
from .llm.recovery import recover as recover_json
from .models import NotFound, TextSegment
from .resolve.text import resolve_text
from .resolve.transcript import format_time_label, ingest_transcript, normalize_caption_rows, resolve_timestamp
from .summarize import simplify_text, summarize_text

app = typer.Typer(
    name="groundline",
    help="Groundline - grounded answers with citations you can find again",
    add_completion=False,
)

console = Console()
logger = logging.getLogger(__name__)

VALID_ENGINES = ["auto", "fake", "openrouter"]

# Exit code for a citation that could not be located
EXIT_NOT_FOUND = 2


@app.callback()
def main_callback(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Groundline command line."""
    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _load_config(config_path: Optional[str]) -> GroundlineConfig:
    try:
        return GroundlineConfig.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


def _read_json_file(path: Path, what: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        console.print(f"[red]Error: {what} file not found: {escape(str(path))}[/red]")
        raise typer.Exit(code=1)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error: {what} file is not valid JSON: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


def _orchestrator(engine: str, api_key: Optional[str], config: GroundlineConfig) -> CompletionOrchestrator:
    if engine not in VALID_ENGINES:
        console.print(f"[red]Error: Invalid engine '{engine}'. Must be one of: {', '.join(VALID_ENGINES)}[/red]")
        raise typer.Exit(code=1)

    call_config = config.model_call.to_call_config()
    try:
        transport = get_transport(engine, resolve_api_key(api_key), call_config)
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        console.print("[dim]Set GROUNDLINE_API_KEY or OPENROUTER_API_KEY, or use --engine fake[/dim]")
        raise typer.Exit(code=1)

    if transport.engine_name == "fake":
        console.print("[dim]Using fake engine (deterministic replies)[/dim]")
    return CompletionOrchestrator(transport, call_config)


def _exit_with(error: GroundlineError) -> NoReturn:
    """Show only the user-safe message; details go to the debug log."""
    console.print(f"[red]Error: {escape(error.user_message)}[/red]")
    logger.debug(f"{type(error).__name__}: {error}")
    raise typer.Exit(code=1)


def _print_not_found(result: NotFound) -> None:
    console.print(f"[yellow]Not found ({result.reason})[/yellow]")
    raise typer.Exit(code=EXIT_NOT_FOUND)


@app.command()
def recover(
    file: Optional[Path] = typer.Argument(
        None,
        help="File holding a raw model completion (default: stdin)",
    ),
):
    """Recover a JSON value from a messy model completion."""
    if file is not None:
        try:
            raw = file.read_text(encoding="utf-8")
        except FileNotFoundError:
            console.print(f"[red]Error: File not found: {escape(str(file))}[/red]")
            raise typer.Exit(code=1)
    else:
        raw = sys.stdin.read()

    try:
        value = recover_json(raw)
    except GroundlineError as e:
        _exit_with(e)

    console.print_json(data=value)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about the captured content"),
    context_file: Path = typer.Option(
        ...,
        "--context",
        "-c",
        help="JSON file with url, title, text and optional transcript rows",
    ),
    engine: str = typer.Option(
        "auto",
        "--engine",
        "-e",
        help="Completion engine: auto, fake, openrouter",
    ),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Model API key (default: env)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.toml"),
    trace: bool = typer.Option(False, "--trace", help="Print the completion trace as JSON"),
):
    """Answer a question from captured page or video content, with sources."""
    config = _load_config(config_path)
    data = _read_json_file(context_file, "Context")
    if not isinstance(data, dict):
        console.print("[red]Error: Context file must hold a JSON object[/red]")
        raise typer.Exit(code=1)

    orchestrator = _orchestrator(engine, api_key, config)

    try:
        context = PageContext.from_json(data)
        result = answer_question(question, context, orchestrator, timeout_ms=config.model_call.timeout_ms)
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except GroundlineError as e:
        if trace and orchestrator.get_last_trace():
            console.print(dump_trace(orchestrator.get_last_trace()), markup=False)
        _exit_with(e)

    console.print()
    console.print(result.answer, style="bold", markup=False)
    console.print()

    if result.sources:
        table = Table(title=f"{len(result.sources)} Source(s)")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Time", style="magenta")
        table.add_column("Score", style="yellow")
        table.add_column("Text", style="dim")
        for source in result.sources:
            table.add_row(
                source.id,
                source.timestamp_label or "-",
                f"{source.score:.2f}",
                escape(source.text[:80]),
            )
        console.print(table)
    else:
        console.print("[dim]No sources[/dim]")

    if trace and orchestrator.get_last_trace():
        console.print(dump_trace(orchestrator.get_last_trace()), markup=False)


@app.command()
def summarize(
    text: str = typer.Argument(..., help="Highlighted text to rewrite"),
    level: int = typer.Option(2, "--level", "-l", min=1, max=3, help="1 = simplest, 3 = closest to original"),
    engine: str = typer.Option("auto", "--engine", "-e", help="Completion engine: auto, fake, openrouter"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Model API key (default: env)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.toml"),
):
    """Summarize highlighted text in plainer language."""
    config = _load_config(config_path)
    orchestrator = _orchestrator(engine, api_key, config)

    try:
        summary = summarize_text(text, orchestrator, level=level)
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except GroundlineError as e:
        _exit_with(e)

    console.print(summary, markup=False)


@app.command()
def simplify(
    text: str = typer.Argument(..., help="Highlighted text to rewrite"),
    level: int = typer.Option(2, "--level", "-l", min=1, max=3, help="1 = simplest, 3 = closest to original"),
    engine: str = typer.Option("auto", "--engine", "-e", help="Completion engine: auto, fake, openrouter"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Model API key (default: env)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.toml"),
):
    """Rewrite highlighted text in plain, everyday words."""
    config = _load_config(config_path)
    orchestrator = _orchestrator(engine, api_key, config)

    try:
        simplified = simplify_text(text, orchestrator, level=level)
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except GroundlineError as e:
        _exit_with(e)

    console.print(simplified, markup=False)


@app.command("resolve-text")
def resolve_text_command(
    quote: str = typer.Argument(..., help="Quoted fragment to locate"),
    segments_file: Path = typer.Option(
        ...,
        "--segments",
        "-s",
        help="JSON list of page segments ({id, text} objects)",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.toml"),
):
    """Locate a quote in page text segments."""
    config = _load_config(config_path)
    data = _read_json_file(segments_file, "Segments")
    if not isinstance(data, list):
        console.print("[red]Error: Segments file must hold a JSON list[/red]")
        raise typer.Exit(code=1)

    segments = []
    for i, item in enumerate(data):
        if isinstance(item, str):
            segments.append(TextSegment(id=str(i), text=item))
        elif isinstance(item, dict) and "text" in item:
            segments.append(TextSegment(id=str(item.get("id", i)), text=str(item["text"])))

    result = resolve_text(quote, segments, config.resolver.to_text_config())
    if isinstance(result, NotFound):
        _print_not_found(result)

    console.print(
        f"[green]Found:[/green] {result.to_compact_str()} "
        f"[dim](method={result.method}, score={result.score:.2f})[/dim]"
    )


@app.command("resolve-time")
def resolve_time_command(
    label: str = typer.Argument(..., help="Timestamp label, e.g. 1:05 or 0:20-0:34"),
    transcript_file: Path = typer.Option(
        ...,
        "--transcript",
        "-t",
        help="JSON list of caption rows ({start_sec, text, start_label?})",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.toml"),
):
    """Resolve a timestamp label to a range on a video transcript."""
    config = _load_config(config_path)
    data = _read_json_file(transcript_file, "Transcript")
    if not isinstance(data, list):
        console.print("[red]Error: Transcript file must hold a JSON list[/red]")
        raise typer.Exit(code=1)

    try:
        transcript = ingest_transcript(
            normalize_caption_rows(row for row in data if isinstance(row, dict)),
            config.resolver.to_ingest_config(),
        )
    except GroundlineError as e:
        _exit_with(e)

    result = resolve_timestamp(label, list(transcript), config.resolver.to_timeline_config())
    if isinstance(result, NotFound):
        _print_not_found(result)

    console.print(
        f"[green]Found:[/green] {format_time_label(result.start_sec)}-{format_time_label(result.end_sec)} "
        f"[dim]({result.to_compact_str()}s)[/dim]"
    )


@app.command()
def version():
    """Show Groundline version."""
    from . import __version__
    console.print(f"Groundline v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
