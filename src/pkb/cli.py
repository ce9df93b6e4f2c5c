"""CLI entry point for the Personal Knowledge Base."""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from .config import DEFAULT_CONFIG, load_config
from .errors import KnowledgeBaseError
from .models import DirectoryOptions, DocumentType, IndexingStatus, IndexOptions, SearchOptions

console = Console()

TYPE_CHOICES = [t.value for t in DocumentType if t is not DocumentType.UNKNOWN]


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Personal Knowledge Base - index documents, search them, explore their concepts."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_config(ctx) -> dict:
    config = load_config(ctx.obj.get("config_path"))
    level = "DEBUG" if ctx.obj.get("verbose") else config.get("logging", {}).get("level", "INFO")
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    return config


def _open_service(ctx):
    from .service import KnowledgeBaseService

    return KnowledgeBaseService(_get_config(ctx)).open()


@cli.command()
@click.option("--path", default=None, help="Custom base directory (default: ~/.pkb)")
def init(path):
    """Initialize the knowledge base directory and configuration."""
    import yaml

    base = Path(path).expanduser().resolve() if path else Path("~/.pkb").expanduser()
    console.print(f"[bold green]Initializing PKB at {base}[/]")
    base.mkdir(parents=True, exist_ok=True)

    config_file = base / "config.yaml"
    if not config_file.exists():
        cfg = dict(DEFAULT_CONFIG)
        cfg["db_path"] = str(base / "knowledge-base.db")
        cfg["chroma_path"] = str(base / "chroma")
        header = (
            "# Claude API key for summaries and concept extraction (or set ANTHROPIC_API_KEY env var)\n"
            "# claude_api_key: sk-ant-your-key-here\n\n"
            "# Vector backend: memory (in-process) or chromadb (local path or chroma.host)\n\n"
        )
        config_file.write_text(header + yaml.dump(cfg, default_flow_style=False, sort_keys=False))
        console.print(f"  Created config: {config_file}")

    console.print("[bold green]✓ PKB initialized![/]")
    console.print("  Run: pkb index <path>")


@cli.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--recursive", "-r", is_flag=True, help="Descend into subdirectories")
@click.option("--type", "-t", "types", multiple=True, type=click.Choice(TYPE_CHOICES), help="Only index these types")
@click.option("--embed/--no-embed", default=False, help="Generate chunk embeddings")
@click.option("--summary", is_flag=True, help="Generate a summary per document")
@click.option("--key-points", is_flag=True, help="Extract key points per document")
@click.option("--concepts/--no-concepts", default=True, help="Extract concepts into the graph")
@click.option("--tag", "tags", multiple=True, help="Tag to attach to indexed documents")
@click.option("--max-files", default=None, type=int, help="Stop after this many files")
@click.pass_context
def index(ctx, path, recursive, types, embed, summary, key_points, concepts, tags, max_files):
    """Index a file or every matching file in a directory."""
    target = Path(path)

    async def run():
        with _open_service(ctx) as kb:
            if target.is_file():
                options = IndexOptions(
                    generate_embeddings=embed,
                    generate_summary=summary,
                    extract_key_points=key_points,
                    extract_concepts=concepts,
                    tags=list(tags),
                )
                doc_id = await kb.index_document(target, options)
                console.print(f"[green]✓ Indexed {target.name}[/] [dim]{doc_id}[/]")
                return

            with Progress(
                TextColumn("[blue]Indexing"), BarColumn(), MofNCompleteColumn(), console=console
            ) as bar:
                task = bar.add_task("index", total=None)

                def on_progress(p):
                    bar.update(task, total=p.total, completed=p.processed + p.failed)

                options = DirectoryOptions(
                    generate_embeddings=embed,
                    generate_summary=summary,
                    extract_key_points=key_points,
                    extract_concepts=concepts,
                    tags=list(tags),
                    recursive=recursive,
                    file_types=[DocumentType(t) for t in types],
                    max_files=max_files,
                    on_progress=on_progress,
                )
                result = await kb.index_directory(target, options)

            if result.status is IndexingStatus.ERROR:
                console.print(f"[red]✗ Indexing failed: {result.error}[/]")
            else:
                console.print(f"[green]✓ Indexed {result.processed}/{result.total} file(s)[/]")
            if result.failed:
                console.print(f"  [yellow]{result.failed} file(s) failed[/]")

    try:
        asyncio.run(run())
    except KnowledgeBaseError as e:
        console.print(f"[red]{e}[/]")


@cli.command()
@click.argument("query")
@click.option("--n", "-n", default=10, help="Number of results")
@click.option("--offset", default=0, help="Skip this many results")
@click.option("--semantic", is_flag=True, help="Use vector similarity instead of full-text search")
@click.option("--type", "-t", "types", multiple=True, type=click.Choice(TYPE_CHOICES), help="Restrict to types")
@click.option("--tag", "tags", multiple=True, help="Restrict to documents carrying any of these tags")
@click.pass_context
def search(ctx, query, n, offset, semantic, types, tags):
    """Search indexed documents."""
    options = SearchOptions(
        limit=n,
        offset=offset,
        types=[DocumentType(t) for t in types],
        tags=list(tags),
        use_semantic_search=semantic,
    )
    with _open_service(ctx) as kb:
        results = kb.search_documents(query, options)

    if not results:
        console.print("[yellow]No results found. Have you run 'pkb index'?[/]")
        return
    _print_results("Search Results", results)


def _print_results(title: str, results) -> None:
    table = Table(title=title)
    table.add_column("#", style="dim", width=3)
    table.add_column("Title", style="cyan")
    table.add_column("Type")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Snippet", max_width=60)
    table.add_column("ID", style="dim", overflow="fold")

    for i, r in enumerate(results, 1):
        snippet = escape(r.snippet).replace("<mark>", "[bold yellow]").replace("</mark>", "[/]").replace("\n", " ")
        table.add_row(str(i), r.title, r.type.value, f"{r.relevance:.3f}", snippet, r.document_id)

    console.print(table)


@cli.command()
@click.argument("document_id")
@click.option("--content", is_flag=True, help="Print the full stored text")
@click.pass_context
def show(ctx, document_id, content):
    """Show a document's metadata."""
    with _open_service(ctx) as kb:
        doc = kb.get_document(document_id)
        if doc is None:
            console.print(f"[red]Document not found: {document_id}[/]")
            return
        text = kb.get_document_content(document_id) if content else None

    console.print(f"\n[bold]{doc.title}[/] [dim]({doc.type.value})[/]")
    console.print(f"  Path: {doc.path}")
    console.print(f"  Size: {doc.size} bytes, {doc.word_count or 0} words")
    console.print(f"  Modified: {doc.modified:%Y-%m-%d %H:%M}, indexed: {doc.indexed:%Y-%m-%d %H:%M}")
    if doc.author:
        console.print(f"  Author: {doc.author}")
    if doc.tags:
        console.print(f"  Tags: {', '.join(doc.tags)}")
    if doc.summary:
        console.print(f"\n[bold]Summary[/]\n{doc.summary}")
    if doc.key_points:
        console.print("\n[bold]Key points[/]")
        for point in doc.key_points:
            console.print(f"  • {point}")
    if text is not None:
        console.print(f"\n{text}")


@cli.command()
@click.argument("document_id")
@click.pass_context
def delete(ctx, document_id):
    """Remove a document and everything derived from it."""
    with _open_service(ctx) as kb:
        try:
            removed = asyncio.run(kb.delete_document(document_id))
        except KnowledgeBaseError as e:
            console.print(f"[red]{e}[/]")
            return
    if removed:
        console.print(f"[green]✓ Deleted {document_id}[/]")
    else:
        console.print(f"[yellow]Document not found: {document_id}[/]")


@cli.command()
@click.option("--document", "document_id", default=None, help="Start from a document id")
@click.option("--concept", "concept_id", default=None, help="Start from a concept id")
@click.option("--depth", default=2, help="Traversal depth")
@click.option("--min-weight", default=0.5, help="Ignore edges lighter than this")
@click.option("--max-nodes", default=100, help="Maximum nodes to return")
@click.pass_context
def graph(ctx, document_id, concept_id, depth, min_weight, max_nodes):
    """Show the concept graph around a document or concept."""
    with _open_service(ctx) as kb:
        g = kb.get_knowledge_graph(
            document_id=document_id,
            concept_id=concept_id,
            depth=depth,
            min_weight=min_weight,
            max_nodes=max_nodes,
        )

    if not g.nodes:
        console.print("[yellow]Graph is empty.[/]")
        return

    labels = {n.id: n.label for n in g.nodes}
    table = Table(title=f"Knowledge Graph ({len(g.nodes)} nodes, {len(g.edges)} edges)")
    table.add_column("Source", style="cyan")
    table.add_column("Relation")
    table.add_column("Target", style="cyan")
    table.add_column("Weight", justify="right", style="green")
    for e in sorted(g.edges, key=lambda e: e.weight, reverse=True):
        table.add_row(labels[e.source], e.label, labels[e.target], f"{e.weight:.1f}")
    console.print(table)


@cli.command()
@click.argument("document_id")
@click.option("--n", "-n", default=5, help="Number of results")
@click.pass_context
def similar(ctx, document_id, n):
    """Find documents semantically similar to a document."""
    with _open_service(ctx) as kb:
        try:
            results = kb.get_similar_documents(document_id, n)
        except KnowledgeBaseError as e:
            console.print(f"[red]{e}[/]")
            return

    if not results:
        console.print("[yellow]No similar documents. Were embeddings generated (pkb index --embed)?[/]")
        return
    _print_results("Similar Documents", results)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--recursive", "-r", is_flag=True, help="Watch subdirectories too")
@click.option("--type", "-t", "types", multiple=True, type=click.Choice(TYPE_CHOICES), help="Only index these types")
@click.option("--embed/--no-embed", default=False, help="Generate chunk embeddings")
@click.pass_context
def watch(ctx, path, recursive, types, embed):
    """Watch a directory and re-index files as they change (Ctrl+C to stop)."""
    options = DirectoryOptions(
        generate_embeddings=embed,
        recursive=recursive,
        file_types=[DocumentType(t) for t in types],
    )

    async def run():
        with _open_service(ctx) as kb:
            await kb.watch_directory(path, options)
            console.print(f"[bold]Watching {path} for changes... (Ctrl+C to stop)[/]")
            await asyncio.Event().wait()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[green]✓ Watcher stopped.[/]")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show knowledge base statistics."""
    with _open_service(ctx) as kb:
        s = kb.stats()

    console.print("\n[bold]Knowledge Base Statistics[/]")
    console.print(f"  Documents: {s['documents']}")
    console.print(f"  Chunks: {s['chunks']} ({s['embedded_chunks']} embedded)")
    if "vectors" in s:
        console.print(f"  Vectors: {s['vectors']}")
    console.print(f"  Concepts: {s['concepts']}")
    console.print(f"  Relationships: {s['relationships']}")


if __name__ == "__main__":
    cli()
