from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path

import typer

from .config import EngineConfig
from .errors import NoteRagError
from .indexer.change_detector import NoteEvent, NoteWatcher
from .models import IndexingProgress, IndexStats
from .service import RetrievalService, SearchOptions

app = typer.Typer(add_completion=False, no_args_is_help=True)

logger = logging.getLogger(__name__)


def _setup_logging(log_file: str | None, log_level: str, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO)

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers: list[logging.Handler] = []
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(fmt, datefmt))
    handlers.append(console)

    if log_file:
        from logging.handlers import RotatingFileHandler
        Path(log_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            Path(log_file).expanduser(), maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(logging.Formatter(fmt, datefmt))
        handlers.append(file_handler)

    pkg_logger = logging.getLogger("noterag")
    pkg_logger.setLevel(level)
    for h in list(pkg_logger.handlers):
        pkg_logger.removeHandler(h)
    for h in handlers:
        pkg_logger.addHandler(h)


def _cfg(config: str, verbose: bool = False) -> EngineConfig:
    try:
        cfg = EngineConfig.from_toml(config)
    except FileNotFoundError:
        raise typer.BadParameter(f"Config file not found: {config}. Run `noterag init` first.")
    except ValueError as e:
        raise typer.BadParameter(str(e))
    _setup_logging(cfg.log_file, cfg.log_level, verbose)
    return cfg


def _progress(p: IndexingProgress) -> None:
    if p.status == "indexing" and p.current_file:
        typer.echo(f"[{p.processed + 1}/{p.total}] {p.current_file}", err=True)


def _echo_stats(stats: IndexStats | None) -> None:
    if stats is None:
        typer.echo("Index already loaded.")
        return
    typer.echo(
        f"Indexed: {stats.added} added, {stats.updated} updated, {stats.removed} removed, "
        f"{stats.unchanged} unchanged, {stats.chunks_written} chunks in {stats.elapsed_seconds:.1f}s"
    )
    if stats.errors:
        typer.echo(f"  ({len(stats.errors)} notes skipped)")
        for err in stats.errors:
            typer.echo(f"    {err}", err=True)


@app.command()
def init(notes: str = typer.Option(..., help="Notes directory"),
         out: str = typer.Option("config.toml", help="Write example config to this path")):
    """Write a starter config.toml."""
    outp = Path(out)
    outp.write_text(f"""[notes]
root = "{notes}"
ignore = [".git/**", ".obsidian/**", "**/.DS_Store"]
persistent = true

[index]
# Defaults to <root>/.noterag
# dir = "~/.noterag/index"

[chunking]
max_chunk_size = 1000
overlap_size = 200
max_header_level = 3

[embeddings]
provider = "sentence_transformers"
model = "BAAI/bge-small-en-v1.5"
batch_size = 32
concurrency = 2
device = "cpu"

[retrieval]
top_k = 10
min_score = 0.3
keyword_weight = 0.3
graph_boost_factor = 0.2
use_graph_reranking = true
expand_context = true
query_expansion = true
max_expansion_keywords = 8

[logging]
level = "INFO"
# file = "~/.noterag/logs/noterag.log"
""", encoding="utf-8")
    typer.echo(f"Wrote {outp}")


@app.command()
def index(config: str = typer.Option("config.toml"),
          full: bool = typer.Option(False, help="Rebuild the whole index"),
          verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Index the notes directory (incremental unless --full)."""
    cfg = _cfg(config, verbose)

    async def run() -> IndexStats | None:
        service = RetrievalService()
        try:
            stats = await service.initialize(cfg, _progress)
            if full:
                stats = await service.reindex(_progress)
            return stats
        finally:
            await service.close()

    try:
        _echo_stats(asyncio.run(run()))
    except NoteRagError as e:
        typer.echo(f"Indexing failed: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def query(q: str,
          config: str = typer.Option("config.toml"),
          k: int = typer.Option(None, help="Number of notes to return"),
          mode: str = typer.Option("hybrid", help="hybrid | semantic | keyword"),
          min_score: float = typer.Option(None, help="Override retrieval.min_score"),
          no_graph: bool = typer.Option(False, "--no-graph", help="Disable link-centrality re-ranking"),
          no_expand: bool = typer.Option(False, "--no-expand", help="Disable context expansion"),
          no_synonyms: bool = typer.Option(False, "--no-synonyms", help="Disable keyword query expansion")):
    """Search the notes and print results as JSON."""
    if mode not in ("hybrid", "semantic", "keyword"):
        raise typer.BadParameter(f"Invalid mode: {mode}")
    cfg = _cfg(config)
    opts = SearchOptions(
        mode=mode,  # type: ignore[arg-type]
        top_k=k,
        min_score=min_score,
        use_graph_reranking=False if no_graph else None,
        expand_context=False if no_expand else None,
        query_expansion=False if no_synonyms else None,
    )

    async def run():
        service = RetrievalService()
        try:
            await service.initialize(cfg)
            return await service.search(q, opts)
        finally:
            await service.close()

    try:
        results = asyncio.run(run())
    except NoteRagError as e:
        typer.echo(f"Query failed: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps([dataclasses.asdict(r) for r in results], indent=2, ensure_ascii=False))


@app.command()
def status(config: str = typer.Option("config.toml")):
    """Show index size and link-graph statistics."""
    cfg = _cfg(config)

    async def run():
        service = RetrievalService()
        try:
            await service.initialize(cfg)
            return service.get_stats(), service.get_graph_stats(), service.get_embedding_model_id()
        finally:
            await service.close()

    try:
        stats, graph, model_id = asyncio.run(run())
    except NoteRagError as e:
        typer.echo(f"Status failed: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Notes directory: {cfg.notes_dir}")
    typer.echo(f"Index directory: {cfg.index_dir}")
    typer.echo(f"Embedding model: {model_id}")
    typer.echo(f"Indexed notes: {stats.note_count}")
    typer.echo(f"Indexed chunks: {stats.document_count}")
    if graph is not None:
        typer.echo(f"Wikilinks: {graph.total_mentions} mentions, {graph.unique_connections} unique connections")
        typer.echo(f"Dangling links: {len(graph.dangling_links)}")
        typer.echo(f"Orphan notes: {len(graph.orphan_notes)}")


@app.command()
def validate(config: str = typer.Option("config.toml")):
    """Cross-check stored chunks against index metadata."""
    cfg = _cfg(config)

    async def run():
        service = RetrievalService()
        try:
            await service.initialize(cfg)
            return await service.validate()
        finally:
            await service.close()

    try:
        result = asyncio.run(run())
    except NoteRagError as e:
        typer.echo(f"Validation failed: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Documents: {result.total_documents}, notes in metadata: {result.total_metadata}")
    if result.valid:
        typer.echo("Index is valid.")
        return
    for err in result.errors:
        typer.echo(f"  {err}")
    raise typer.Exit(1)


@app.command()
def watch(config: str = typer.Option("config.toml"),
          debounce_ms: int = typer.Option(500, help="Ignore repeat events for a note within this window"),
          verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging")):
    """Index, then keep the index in sync with note changes until interrupted."""
    cfg = _cfg(config, verbose)
    try:
        asyncio.run(_watch(cfg, debounce_ms))
    except KeyboardInterrupt:
        typer.echo("Stopped.")


async def _watch(cfg: EngineConfig, debounce_ms: int) -> None:
    service = RetrievalService()
    _echo_stats(await service.initialize(cfg, _progress))

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[NoteEvent] = asyncio.Queue()
    watcher = NoteWatcher(
        root=cfg.notes_dir,
        on_event=lambda ev: loop.call_soon_threadsafe(queue.put_nowait, ev),
        ignore=cfg.ignore,
        debounce_ms=debounce_ms,
    )
    watcher.start()
    try:
        while True:
            ev = await queue.get()
            try:
                await _apply_event(service, ev)
            except NoteRagError as e:
                logger.error(f"Failed to apply {ev.kind} for {ev.path}: {e}")
    finally:
        watcher.stop()
        await service.close()


async def _apply_event(service: RetrievalService, ev: NoteEvent) -> None:
    if ev.kind == "delete":
        await service.remove_note(ev.path)
    elif ev.kind == "move":
        await service.remove_note(ev.path)
        if ev.new_path is not None:
            await service.index_note(ev.new_path)
    else:
        await service.index_note(ev.path)


if __name__ == "__main__":
    app()
