"""
CLI Interface
=============
Command-line interface for the question importer.

Usage:
    python -m question_importer parse <document> [options]
    python -m question_importer import <document> --subject <id> [options]
    python -m question_importer batch <directory> --subject <id> [options]
    python -m question_importer list --subject <id>
    python -m question_importer serve [options]
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from . import crud
from . import storage
from .converters import EXTENSION_FORMATS, load_document
from .engine import ImportConfig, ImportEngine
from .errors import StructuralError
from .models import DocumentFormat, ImportMode
from .record_builder import RecordBuilder
from .validator import ImportValidator

console = Console()

MODE_CHOICE = click.Choice([m.value for m in ImportMode])
FORMAT_CHOICE = click.Choice([f.value for f in DocumentFormat])
LEVEL_CHOICE = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"])


@click.group()
@click.version_option(version=__version__, prog_name="question-importer")
def cli():
    """Question Importer: tagged multiple-choice questions from documents."""
    pass


@cli.command()
@click.argument("document", type=click.Path(exists=True, dir_okay=False))
@click.option("--subject", "-s", default="preview", help="Subject id to stamp on records")
@click.option("--mode", "-m", default=None, type=MODE_CHOICE, help="Import mode")
@click.option("--format", "fmt", default=None, type=FORMAT_CHOICE, help="Override format detection")
@click.option("--start-index", default=0, type=int, help="First order index")
@click.option("--db", "db_path", default=None, help="SQLite database for merge lookups")
@click.option("--log-level", default="WARNING", type=LEVEL_CHOICE, help="Logging level")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the JSON plan to stdout (for programmatic use)",
)
def parse(
    document: str,
    subject: str,
    mode: str,
    fmt: str,
    start_index: int,
    db_path: str,
    log_level: str,
    json_output: bool,
):
    """Extract questions from a document without storing them."""

    if json_output:
        log_level = "ERROR"

    config = ImportConfig.from_env(import_mode=mode, log_level=log_level)
    engine = ImportEngine(config)
    mode = ImportMode(config.import_mode)

    # Images go to a scratch directory that is removed once the body is built
    try:
        with tempfile.TemporaryDirectory(prefix="qimport-preview-") as scratch:
            body = load_document(
                document,
                fmt=fmt,
                image_sink=storage.ImageWriter(subject, uploads_dir=Path(scratch)),
            )
        parsed_blocks, stats = engine.extract(body.body)
    except StructuralError as e:
        console.print(f"[red]Error:[/] {e.message}")
        console.print(f"[dim]{e.hint}[/]")
        sys.exit(1)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    validation = ImportValidator().validate(parsed_blocks, stats, start_index)

    lookup = None
    if mode == ImportMode.MERGE:
        if db_path:
            from . import database as db

            db.init_db(db_path)
            lookup = crud.SQLiteQuestionStore(db_path).find_question_id
        else:
            lookup = lambda subject_id, stem_text: None  # noqa: E731

    plan = RecordBuilder(config.placeholder_variant_text).build(
        parsed_blocks,
        subject,
        import_mode=mode,
        start_order_index=start_index,
        lookup=lookup,
    )

    if json_output:
        print(json.dumps(
            {
                "plan": plan.model_dump(mode="json"),
                "validation": validation.model_dump(mode="json"),
            },
            indent=2,
            ensure_ascii=False,
        ))
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Importer v{__version__}[/]\n"
            f"[dim]Parsed: {os.path.basename(document)} "
            f"({body.source_format.value})[/]",
            border_style="cyan",
        )
    )
    _display_plan(plan)
    _display_validation_table(validation.model_dump())


@cli.command("import")
@click.argument("document", type=click.Path(exists=True, dir_okay=False))
@click.option("--subject", "-s", required=True, help="Owning subject id")
@click.option("--mode", "-m", default=None, type=MODE_CHOICE, help="Import mode")
@click.option("--format", "fmt", default=None, type=FORMAT_CHOICE, help="Override format detection")
@click.option("--db", "db_path", default=None, help="SQLite database path")
@click.option("--log-level", default="INFO", type=LEVEL_CHOICE, help="Logging level")
@click.option("--log-file", default=None, help="Path to log file")
def import_cmd(
    document: str,
    subject: str,
    mode: str,
    fmt: str,
    db_path: str,
    log_level: str,
    log_file: str,
):
    """Import questions from a document into the database."""
    from . import database as db

    config = ImportConfig.from_env(
        import_mode=mode, log_level=log_level, log_file=log_file
    )
    db.init_db(db_path)

    try:
        result = crud.import_document(
            document, subject, mode=mode, fmt=fmt, config=config, db_path=db_path
        )
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    _display_result(os.path.basename(document), result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--subject", "-s", required=True, help="Owning subject id")
@click.option("--mode", "-m", default=None, type=MODE_CHOICE, help="Import mode")
@click.option("--db", "db_path", default=None, help="SQLite database path")
@click.option("--log-level", default="WARNING", type=LEVEL_CHOICE, help="Logging level")
@click.option(
    "--parallel", "-j",
    default=1,
    type=int,
    help="Number of documents imported concurrently (1 = sequential)",
)
def batch(
    directory: str,
    subject: str,
    mode: str,
    db_path: str,
    log_level: str,
    parallel: int,
):
    """Import every supported document in a directory."""
    from . import database as db

    files = sorted(
        p for p in Path(directory).iterdir()
        if p.is_file() and p.suffix.lower() in EXTENSION_FORMATS
    )

    if not files:
        console.print(f"[yellow]No supported documents found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Question Import[/]\n"
            f"[dim]Found {len(files)} documents in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    config = ImportConfig.from_env(import_mode=mode, log_level=log_level)
    db.init_db(db_path)

    results = []
    errors = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Importing documents...", total=len(files))

        with ThreadPoolExecutor(max_workers=max(1, parallel)) as pool:
            futures = {
                pool.submit(
                    crud.import_document,
                    str(path), subject, mode=mode, config=config, db_path=db_path,
                ): path
                for path in files
            }
            for future in as_completed(futures):
                path = futures[future]
                progress.update(task, description=f"Imported: {path.name}")
                try:
                    results.append((path.name, future.result()))
                except Exception as e:
                    errors.append((path.name, str(e)))
                progress.advance(task)

    _display_batch_summary(sorted(results, key=lambda r: r[0]), errors)


@cli.command("list")
@click.option("--subject", "-s", default=None, help="Only this subject")
@click.option("--db", "db_path", default=None, help="SQLite database path")
def list_cmd(subject: str, db_path: str):
    """List stored questions in display order."""
    from . import database as db

    db.init_db(db_path)
    questions = crud.list_questions(subject, db_path=db_path)

    table = Table(title="Stored Questions", border_style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Subject")
    table.add_column("Question")
    table.add_column("Correct")
    table.add_column("Variants", justify="right")
    table.add_column("Review", justify="center")

    for q in questions:
        correct = next((v["plain_text"] or v["text"] for v in q["variants"] if v["is_correct"]), "")
        table.add_row(
            str(q["order_index"]),
            q["subject_id"],
            _truncate(q["question_text"]),
            _truncate(correct, 30),
            str(len(q["variants"])),
            "[yellow]⚠[/]" if q["needs_review"] else "",
        )

    console.print()
    console.print(table)
    console.print(f"[dim]{len(questions)} question(s)[/]")
    console.print()


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP upload service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Import Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _truncate(text: str, limit: int = 60) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit - 1] + "…"


def _display_plan(plan):
    """Display planned records in a formatted table."""
    console.print()
    table = Table(
        title=f"Questions ({plan.mode.value}, subject {plan.subject_id})",
        border_style="cyan",
    )
    table.add_column("#", justify="right")
    table.add_column("Action")
    table.add_column("Question")
    table.add_column("Correct")
    table.add_column("Variants", justify="right")
    table.add_column("Review", justify="center")

    for instruction in plan.instructions:
        record = instruction.record
        correct = record.correct_variant
        table.add_row(
            str(record.order_index),
            instruction.action.value,
            _truncate(record.stem_text),
            _truncate(correct.plain_text or correct.text, 30) if correct else "",
            str(len(record.variants)),
            "[yellow]⚠[/]" if record.needs_review else "",
        )

    console.print(table)
    console.print()


def _display_result(name: str, result):
    """Display an import result."""
    console.print()
    color = "green" if result.success else "red"
    console.print(
        Panel.fit(
            f"[bold {color}]{name}[/]\n{result.message}",
            border_style=color,
        )
    )
    if result.error_detail and result.total_parsed:
        console.print(f"[red]Failures:[/] {result.error_detail}")
    if result.validation:
        _display_validation_table(result.validation.model_dump())


def _display_validation_table(validation: dict):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    detected = validation.get("total_blocks_detected", 0)
    parsed = validation.get("questions_parsed", 0)
    rate = validation.get("success_rate", 0)

    table.add_row(
        "Blocks Detected",
        str(detected),
        "[green]✓[/]" if detected > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Questions Parsed",
        f"{parsed} ({rate}% clean)",
        "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]",
    )
    table.add_row(
        "Dropped Blocks",
        str(validation.get("dropped_blocks", 0)),
        status_icon(validation.get("dropped_blocks", 0)),
    )

    review = validation.get("needs_review", [])
    table.add_row("Needs Review", str(len(review)), status_icon(len(review)))

    padded = validation.get("padded_questions", [])
    table.add_row("Padded Questions", str(len(padded)), status_icon(len(padded)))

    dupes = validation.get("duplicate_stems", [])
    table.add_row("Duplicate Stems", str(len(dupes)), status_icon(len(dupes)))

    table.add_row("Image Variants", str(validation.get("image_variants", 0)), "")

    console.print(table)
    console.print()

    breakdown = validation.get("anomaly_breakdown", {})
    if breakdown:
        anomaly_table = Table(title="Anomaly Breakdown", border_style="yellow")
        anomaly_table.add_column("Type", style="bold")
        anomaly_table.add_column("Count", justify="right")
        for atype, count in sorted(breakdown.items()):
            anomaly_table.add_row(atype, str(count))
        console.print(anomaly_table)
        console.print()


def _display_batch_summary(results, errors):
    """Display batch processing summary."""
    console.print()

    table = Table(title="Batch Import Summary", border_style="cyan")
    table.add_column("Document", style="bold")
    table.add_column("Parsed", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Status", justify="center")

    for name, result in results:
        status = "[green]✓[/]" if result.success else "[red]✗[/]"
        table.add_row(
            name,
            str(result.total_parsed),
            str(result.created),
            str(result.updated),
            str(result.skipped),
            status,
        )

    for name, error in errors:
        table.add_row(name, "-", "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {sum(r.total_parsed for _, r in results)} questions from "
        f"{len(results)} documents, {len(errors)} failures"
    )
    console.print()


# ─── Entry point (for python -m question_importer.cli) ────────────────────────


if __name__ == "__main__":
    cli()
