"""maptracer CLI - trace mapped fields and their callers across a Java project."""
import json
import logging
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Callable, TypeVar

import typer
from rich.markup import escape

from maptracer.analyzer.engine import MappingTracer, parse_seed
from maptracer.analyzer.errors import AnalysisCancelled, SeedError
from maptracer.analyzer.models import FieldRef, NodeCategory
from maptracer.analyzer.run import AnalysisJob, AnalysisSettings, CancellationToken
from maptracer.analyzer.symbol_index import ProjectIndex
from maptracer.config import __version__, get_config
from maptracer.utils.console import SafeConsole, render_call_tree, render_relations, render_sites
from maptracer.utils.logger import configure_logging

T = TypeVar('T')

app = typer.Typer(
    name="maptracer",
    help="Trace object-mapping field relations and caller hierarchies in Java codebases",
    add_completion=False
)
console = SafeConsole()
logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def _settings(max_depth: int = None) -> AnalysisSettings:
    try:
        return get_config().analysis_settings(max_depth)
    except ValueError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)


def _seed(text: str) -> FieldRef:
    try:
        return parse_seed(text)
    except SeedError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)


def _load_index(project_path: str) -> ProjectIndex:
    """Index a project directory, exiting with an error if it does not exist."""
    root = Path(project_path).resolve()
    if not root.is_dir():
        console.print(f"[bold red]Error:[/bold red] Project path does not exist: {escape(str(root))}")
        raise typer.Exit(1)

    with console.status(f"Indexing {escape(str(root))}..."):
        index = ProjectIndex.from_directory(root)
    stats = index.stats()
    logger.info("Indexed %d files (%d skipped), %d types, %d methods",
                stats['files'], stats['skipped_files'], stats['types'], stats['methods'])
    if stats['files'] == 0:
        console.print("[yellow]No Java sources found.[/yellow]")
    return index


def _warn_unknown_seed(index: ProjectIndex, seed: FieldRef):
    seed_type = index.resolve_type(seed.declaring_type)
    if seed_type is None:
        console.print(f"[yellow]Type {escape(seed.declaring_type)} not found in project.[/yellow]")
    elif index.field_on(seed_type, seed.name) is None:
        console.print(f"[yellow]Field {escape(seed.name)} not found on {escape(seed_type)}.[/yellow]")


def _run_analysis(work: Callable[[CancellationToken], T], description: str) -> T:
    """Run work as a background job; Ctrl+C cancels it."""
    job = AnalysisJob(work).start()
    try:
        with console.status(description):
            while True:
                try:
                    return job.result(timeout=0.1)
                except FutureTimeout:
                    continue
    except KeyboardInterrupt:
        job.cancel()
        try:
            job.result()
        except AnalysisCancelled:
            pass
    except AnalysisCancelled:
        pass
    console.print("[yellow]Analysis cancelled[/yellow]")
    raise typer.Exit(EXIT_CANCELLED)


@app.command()
def relations(
    project_path: str = typer.Argument(..., help="Root directory of the Java project"),
    seed: str = typer.Argument(..., help="Seed field as 'pkg.Type.field' or 'Type#field'"),
):
    """List fields mapped to the seed field through mapping calls."""
    field_ref = _seed(seed)
    settings = _settings()
    index = _load_index(project_path)
    _warn_unknown_seed(index, field_ref)

    tracer = MappingTracer(index, settings)
    result = _run_analysis(lambda token: tracer.analyze_mapping_relations(field_ref, token),
                           "Resolving mapping relations...")

    if not result:
        console.print(f"No mapping relations found for {escape(str(field_ref))}.")
        return
    console.print(render_relations(result, title=f"Mapping Relations: {field_ref}"))
    console.print(f"\n[bold]{len(result)}[/bold] relation(s)")


@app.command()
def hierarchy(
    project_path: str = typer.Argument(..., help="Root directory of the Java project"),
    seed: str = typer.Argument(..., help="Seed field as 'pkg.Type.field' or 'Type#field'"),
    max_depth: int = typer.Option(None, "--max-depth", "-d", min=1, help="Maximum hierarchy depth"),
    as_json: bool = typer.Option(False, "--json", help="Print the tree as JSON"),
):
    """Show the caller hierarchy of the seed field, crossing mapping calls."""
    field_ref = _seed(seed)
    settings = _settings(max_depth)
    index = _load_index(project_path)
    if not as_json:
        _warn_unknown_seed(index, field_ref)

    tracer = MappingTracer(index, settings)
    tree = _run_analysis(lambda token: tracer.analyze_call_hierarchy(field_ref, token),
                         "Building call hierarchy...")

    if as_json:
        typer.echo(json.dumps(tree.to_dict(), indent=2))
        return

    console.print(render_call_tree(tree, ascii_only=console.needs_sanitization))
    node_count = sum(1 for _ in tree.iter_nodes())
    entry_points = sum(1 for node in tree.iter_nodes() if node.category == NodeCategory.ENTRY_POINT)
    console.print(f"\n[bold]{node_count}[/bold] node(s), [bold green]{entry_points}[/bold green] entry point(s), "
                  f"max depth {settings.max_depth}")


@app.command()
def sites(
    project_path: str = typer.Argument(..., help="Root directory of the Java project"),
    seed: str = typer.Argument(..., help="Seed field as 'pkg.Type.field' or 'Type#field'"),
):
    """List the mapping calls that carry the seed field to other types."""
    field_ref = _seed(seed)
    settings = _settings()
    index = _load_index(project_path)
    _warn_unknown_seed(index, field_ref)

    tracer = MappingTracer(index, settings)
    found = _run_analysis(lambda token: tracer.find_mapping_sites(field_ref, token),
                          "Detecting mapping sites...")

    if not found:
        console.print(f"No mapping sites found for {escape(str(field_ref))}.")
        return
    console.print(render_sites(found, title=f"Mapping Sites: {field_ref}"))


@app.command()
def version():
    """Print the maptracer version."""
    typer.echo(f"maptracer {__version__}")


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Shortcut for --log-level DEBUG"),
):
    """maptracer - trace mapped fields and their callers."""
    level = "DEBUG" if verbose else (log_level or get_config().log_level)
    try:
        configure_logging(level)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
