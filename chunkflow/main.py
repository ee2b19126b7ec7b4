"""
chunkflow - CLI Entry Point
----------------------------
A demo harness around the analysis core.  Uses the local rule-based
analyzer in place of the real analysis service.

Usage:
    python -m chunkflow.main segment FILE                 # Show how FILE is chunked
    python -m chunkflow.main segment FILE --json
    python -m chunkflow.main check FILE                   # Segment + dispatch + dedupe
    python -m chunkflow.main check FILE --visible 0:2000  # Prioritise a region
    python -m chunkflow.main check FILE -o result.json    # Save the result
    python -m chunkflow.main config                       # Print effective settings
"""
from __future__ import annotations

import sys

# Windows cp1252 terminal fix: force UTF-8 so document text with
# emoji does not crash the Rich console renderer.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

import asyncio
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from chunkflow.analysis.rules import RuleBasedAnalyzer
from chunkflow.config import DEFAULT_CONFIG_PATH, Settings, build_dispatcher, load_settings
from chunkflow.chunking.segmenter import Segmenter
from chunkflow.dispatch.analysis import guarded
from chunkflow.dispatch.dispatcher import DispatchResult, DispatchUpdate
from chunkflow.exceptions import ConfigurationError
from chunkflow.schemas import VisibleRange
from chunkflow.utils.helpers import dumps_json, read_text, save_json, truncate_text
from chunkflow.utils.logger import setup_logger

app = typer.Typer(
    name="chunkflow",
    help="Chunked text-analysis pipeline - segmentation, dispatch and dedup demo CLI",
    add_completion=False,
)
console = Console()


# --- Helpers ------------------------------------------------------------------

def _settings(config: str) -> Settings:
    load_dotenv()
    settings = load_settings(config)
    setup_logger(log_level=settings.logging.level, log_file=settings.logging.file)
    return settings


def _read_document(path: Path) -> str:
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)
    return read_text(path)


def _parse_visible(value: Optional[str]) -> Optional[VisibleRange]:
    if value is None:
        return None
    try:
        start, end = (int(part) for part in value.split(":", 1))
        return VisibleRange(start=start, end=end)
    except ValueError as exc:
        raise typer.BadParameter(f"expected START:END, got {value!r}") from exc


# --- Commands -----------------------------------------------------------------

@app.command()
def segment(
    file: Path = typer.Argument(..., help="UTF-8 text document to segment"),
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
    max_chunk_size: Optional[int] = typer.Option(None, "--max-chunk-size", help="Override max chunk size"),
    overlap_size: Optional[int] = typer.Option(None, "--overlap-size", help="Override overlap size"),
    no_sentences: bool = typer.Option(False, "--no-sentences", help="Cut at max size, ignore sentence ends"),
    json_out: bool = typer.Option(False, "--json", help="Print chunks as JSON"),
) -> None:
    """Split a document into chunks and show their original-document spans."""
    settings = _settings(config)
    text = _read_document(file)

    overrides: dict = {}
    if max_chunk_size is not None:
        overrides["max_chunk_size"] = max_chunk_size
    if overlap_size is not None:
        overrides["overlap_size"] = overlap_size
    if no_sentences:
        overrides["respect_sentence_boundaries"] = False

    try:
        segmenter = Segmenter(settings.segmenter.to_options(), **overrides)
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2)

    chunks = segmenter.segment(text)

    if json_out:
        console.print_json(dumps_json([c.model_dump(mode="json") for c in chunks]))
        return

    table = Table(
        "No.", "Span", "Chars", "Overlap", "Sentences", "Starts with",
        box=box.SIMPLE,
        show_header=True,
        header_style="bold dim",
    )
    for chunk in chunks:
        overlap = (
            f"{chunk.overlap_start if chunk.overlap_start is not None else '-'}"
            f"..{chunk.overlap_end if chunk.overlap_end is not None else '-'}"
        )
        table.add_row(
            str(chunk.index),
            f"{chunk.original_start}-{chunk.original_end}",
            f"{chunk.char_count:,}",
            overlap,
            "yes" if chunk.has_complete_sentences else "no",
            truncate_text(chunk.text, 40),
        )
    console.print(table)
    console.print(f"[dim]{len(text):,} chars -> {len(chunks)} chunk(s)[/dim]")


@app.command()
def check(
    file: Path = typer.Argument(..., help="UTF-8 text document to check"),
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
    visible: Optional[str] = typer.Option(None, "--visible", help="Visible region START:END, analysed first"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Override max concurrent analysis calls"),
    background_delay: Optional[float] = typer.Option(
        None, "--background-delay", help="Override seconds before off-screen chunks start"
    ),
    latency: float = typer.Option(0.0, "--latency", help="Simulated analysis latency per chunk (s)"),
    json_out: bool = typer.Option(False, "--json", help="Print the final result as JSON"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Also save the result JSON to this path"),
) -> None:
    """
    Segment a document, analyse every chunk with the local rule analyzer,
    and print the merged, de-duplicated findings.
    """
    settings = _settings(config)
    if concurrency is not None:
        settings.dispatch.max_concurrency = concurrency
    if background_delay is not None:
        settings.dispatch.background_delay_s = background_delay
    text = _read_document(file)
    visible_range = _parse_visible(visible)

    try:
        result = asyncio.run(_check_async(settings, text, visible_range, latency, quiet=json_out))
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2)

    if output is not None:
        save_json(result.to_dict(), output)
    if json_out:
        console.print_json(dumps_json(result.to_dict()))
        return
    _print_result(result, text)
    if output is not None:
        console.print(f"[dim]Result saved to {output}[/dim]")


@app.command(name="config")
def show_config(
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Validate the configuration and print the effective settings."""
    settings = _settings(config)
    try:
        Segmenter(settings.segmenter.to_options())
        build_dispatcher(settings)
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2)
    console.print_json(dumps_json(settings.model_dump(mode="json")))


# --- Async check --------------------------------------------------------------

async def _check_async(
    settings: Settings,
    text: str,
    visible_range: Optional[VisibleRange],
    latency: float,
    quiet: bool = False,
) -> DispatchResult:
    segmenter = Segmenter(settings.segmenter.to_options())
    dispatcher = build_dispatcher(settings)
    analyze = guarded(
        RuleBasedAnalyzer(latency_s=latency),
        timeout_s=settings.dispatch.analysis_timeout_s,
        retries=settings.dispatch.analysis_retries,
    )
    chunks = segmenter.segment(text)

    if not quiet:
        console.print()
        console.print(
            Panel(
                "[bold cyan]chunkflow[/bold cyan]\n"
                f"[white]{len(text):,} chars | {len(chunks)} chunk(s) | "
                f"concurrency={settings.dispatch.max_concurrency}[/white]",
                box=box.DOUBLE_EDGE,
                expand=False,
            )
        )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
        disable=quiet,
    ) as progress:
        task_id = progress.add_task("[cyan]Analysing chunks...[/cyan]", total=len(chunks))

        def on_update(update: DispatchUpdate) -> None:
            progress.update(
                task_id,
                completed=update.progress.completed_chunks,
                description=f"[cyan]Analysing chunks[/cyan] - {len(update.findings)} finding(s)",
            )

        return await dispatcher.dispatch(chunks, analyze, visible_range, on_update=on_update)


def _print_result(result: DispatchResult, text: str) -> None:
    """Render a DispatchResult to the terminal using Rich."""
    if result.findings:
        table = Table(
            "Span", "Type", "Text", "Suggestion", "Chunk",
            box=box.SIMPLE,
            show_header=True,
            header_style="bold dim",
        )
        for finding in result.findings:
            table.add_row(
                f"{finding.start}-{finding.end}",
                finding.type.value,
                repr(truncate_text(text[finding.start:finding.end], 30)),
                repr(finding.suggestions[0]) if finding.suggestions else "",
                str(finding.chunk_index),
            )
        console.print(table)
    else:
        console.print("[green][OK] No issues found[/green]")

    if result.partial:
        console.print(
            f"[yellow]Some areas could not be checked[/yellow] "
            f"({len(result.failures)} chunk(s) failed)"
        )
    if result.malformed_findings:
        console.print(f"[yellow]{result.malformed_findings} malformed finding(s) clamped[/yellow]")

    progress = result.progress
    console.print(
        f"[dim]chunks={progress.completed_chunks}/{progress.total_chunks}  "
        f"failed={progress.failed_chunks}  findings={len(result.findings)}  "
        f"elapsed={result.elapsed_ms:.0f}ms[/dim]\n"
    )


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
