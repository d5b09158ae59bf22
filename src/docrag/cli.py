"""
Command-line interface for docrag.

Commands:
    ingest   - Chunk, embed and store a document
    parse    - Parse a speaker/chapter text into the local collection
    query    - Answer a question from one backend
    export   - Write the local collection to a snapshot file
    import   - Load a snapshot file into the local collection
    version  - Show version information
"""

import logging
from enum import Enum
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from docrag.errors import DocRagError

app = typer.Typer(
    name="docrag",
    help="Document chunking and retrieval-augmented question answering",
    add_completion=False,
)
console = Console()


class BackendChoice(str, Enum):
    local = "local"
    relational = "relational"


class ContextScope(str, Enum):
    section = "section"
    chapter = "chapter"


def _fail(error: DocRagError) -> NoReturn:
    console.print(f"[red]{type(error).__name__}: {escape(str(error))}[/red]")
    raise typer.Exit(1)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override settings.log_level"),
) -> None:
    """Configure logging for every command."""
    from docrag.config import settings

    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command()
def ingest(
    file: Path = typer.Argument(..., help="Document to ingest (.txt, .md, .pdf, .docx, .pptx, .xlsx)"),
    backend: BackendChoice = typer.Option(BackendChoice.relational, help="Store to load"),
    reset: bool = typer.Option(False, "--reset", help="Clear the store first"),
) -> None:
    """Chunk, embed and store a document."""
    from docrag.ingestion.pipeline import ingest_document
    from docrag.resources import get_embedder, get_local_store, get_relational_store

    try:
        store = get_local_store() if backend is BackendChoice.local else get_relational_store()
        with console.status(f"[bold green]Ingesting {file.name}..."):
            count = ingest_document(file, store, get_embedder(), reset=reset)
    except DocRagError as e:
        _fail(e)

    console.print(f"[green]✓ Stored {count} chunks from {file.name} ({backend.value})[/green]")


@app.command()
def parse(
    file: Path = typer.Argument(..., help="Speaker/chapter formatted text file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print sections without storing them"),
    with_context: bool = typer.Option(
        False, "--with-context", help="Prefix every chunk with a generated situating context"
    ),
    context_scope: ContextScope = typer.Option(
        ContextScope.section, help="Document each context is generated against"
    ),
    reset: bool = typer.Option(False, "--reset", help="Clear the collection first"),
) -> None:
    """Parse a speaker/chapter text and load it into the local collection."""
    from docrag.config import settings
    from docrag.retrieval.context import ContextAugmenter
    from docrag.retrieval.sections import LoggingObserver, SectionParser

    augmenter = None
    if with_context:
        from docrag.resources import get_llm

        augmenter = ContextAugmenter(get_llm())

    parser = SectionParser(
        settings.chunk_size,
        settings.chunk_overlap,
        augmenter=augmenter if context_scope is ContextScope.section else None,
        observer=LoggingObserver(),
    )

    try:
        with console.status(f"[bold green]Parsing {file.name}..."):
            sections = parser.parse_file(file)
            if augmenter is not None and context_scope is ContextScope.chapter:
                sections = augmenter.augment_by_chapter(sections, parser.chunk_overlap)
    except DocRagError as e:
        _fail(e)

    table = Table(title=f"{file.name}: {len(sections)} sections")
    table.add_column("Chapter", style="cyan")
    table.add_column("Title")
    table.add_column("Speaker", style="magenta")
    table.add_column("Chunk", justify="right")
    table.add_column("Chars", justify="right", style="green")
    for section in sections:
        table.add_row(
            section.chapter,
            section.title,
            section.speaker,
            str(section.chunk_id),
            str(len(section.content)),
        )
    console.print(table)

    if dry_run:
        return

    from docrag.ingestion.pipeline import store_sections
    from docrag.resources import get_embedder, get_local_store

    try:
        with console.status("[bold green]Embedding sections..."):
            count = store_sections(sections, get_local_store(), get_embedder(), reset=reset)
    except DocRagError as e:
        _fail(e)

    console.print(f"[green]✓ Stored {count} sections in {settings.collection_name}[/green]")


@app.command()
def query(
    question: str = typer.Argument(..., help="Question to ask"),
    backend: BackendChoice = typer.Option(BackendChoice.local, help="Store to search"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the retrieved context"),
) -> None:
    """Answer a question from the retrieved chunks."""
    from docrag.rag import RAG
    from docrag.resources import get_embedder, get_llm, get_local_store, get_relational_store

    console.print(f"[blue]Question:[/blue] {question}\n")

    try:
        if backend is BackendChoice.local:
            rag = RAG.from_handles(get_embedder(), get_llm(), local=get_local_store())
        else:
            rag = RAG.from_handles(get_embedder(), get_llm(), relational=get_relational_store())

        with console.status("[bold green]Processing..."):
            response = rag.query(question)
    except DocRagError as e:
        _fail(e)

    if verbose:
        console.print("[blue]Context:[/blue]")
        console.print(response.source, markup=False)

    console.print("[green]Answer:[/green]")
    console.print(response.content, markup=False)


@app.command()
def export(
    path: Path = typer.Argument(..., help="Snapshot file to write"),
) -> None:
    """Write the local collection to a snapshot file."""
    from docrag.resources import get_local_store

    try:
        store = get_local_store()
        store.export(path)
    except DocRagError as e:
        _fail(e)

    encrypted = " (encrypted)" if store.encryption_key else ""
    console.print(f"[green]✓ Exported {store.count} documents to {path}{encrypted}[/green]")


@app.command("import")
def import_snapshot(
    path: Path = typer.Argument(..., help="Snapshot file written by export"),
) -> None:
    """Load a snapshot file into the local collection."""
    from docrag.resources import get_local_store

    try:
        store = get_local_store()
        store.import_(path)
        store.save()
    except DocRagError as e:
        _fail(e)

    console.print(f"[green]✓ Collection {store.collection_name} now holds {store.count} documents[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    from docrag import __version__

    console.print(f"docrag v{__version__}")


if __name__ == "__main__":
    app()
