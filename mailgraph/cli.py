"""Command line entry point.

Usage::

    mailgraph init-db
    mailgraph load --csv-path emails.csv [--workers 50] [--no-extract]
    mailgraph neighbors 42 [--type COMMUNICATES_WITH] [--depth 2]
    mailgraph path 42 97
    mailgraph similar "gas trading" [--top-k 10] [--min-similarity 0.7]

Exit codes: 0 on success, 1 when a load breaches the failure-rate gate or a
lookup finds nothing, 2 on usage errors, 130 when a load is interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence

from mailgraph.core.batch import BatchCancelledError, BatchQualityError, BatchStats
from mailgraph.core.config import Settings, get_settings
from mailgraph.core.database import create_engine, init_db
from mailgraph.extraction.extractor import DocumentExtractor
from mailgraph.extraction.pipeline import ExtractionPipeline
from mailgraph.extraction.relationships import RelationshipSynthesizer
from mailgraph.extraction.resolver import EntityResolver
from mailgraph.graph.repository import PostgresGraphRepository
from mailgraph.graph.traversal import GraphTraversalEngine
from mailgraph.graph.types import Edge, Node
from mailgraph.llm.client import LanguageModelClient, LLMError, create_llm_client
from mailgraph.loader.parser import CSVFormatError, iter_documents

logger = logging.getLogger(__name__)


def _worker_count(value: str) -> int:
    workers = int(value)
    if workers < 1 or workers > 100:
        raise argparse.ArgumentTypeError("workers must be between 1 and 100")
    return workers


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mailgraph",
        description="Build and query a knowledge graph extracted from email.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL setting).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the vector extension and all tables.")

    load = commands.add_parser("load", help="Load emails from a CSV export and extract entities.")
    load.add_argument("--csv-path", required=True, help="CSV file with file,message columns.")
    load.add_argument(
        "--workers",
        type=_worker_count,
        default=None,
        help="Concurrent workers, 1-100 (default: EXTRACTION_WORKERS setting).",
    )
    load.add_argument(
        "--no-extract",
        dest="extract",
        action="store_false",
        default=True,
        help="Only store emails; skip entity extraction.",
    )

    neighbors = commands.add_parser("neighbors", help="List entities within N hops of an entity.")
    neighbors.add_argument("entity_id", type=int)
    neighbors.add_argument("--type", dest="edge_type", default=None, help="Follow only this relationship type.")
    neighbors.add_argument("--depth", type=int, default=1, help="Number of hops (default: 1).")

    path = commands.add_parser("path", help="Shortest relationship path between two entities.")
    path.add_argument("from_id", type=int)
    path.add_argument("to_id", type=int)

    similar = commands.add_parser("similar", help="Entities whose name embedding is closest to TEXT.")
    similar.add_argument("text")
    similar.add_argument("--top-k", type=int, default=10)
    similar.add_argument("--min-similarity", type=float, default=0.0)

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _print_stats(stats: BatchStats, title: str = "Load Summary") -> None:
    print(f"\n{title}")
    print("-" * 60)
    print(f"  Emails processed:         {stats.processed}")
    print(f"  Emails skipped:           {stats.skipped}")
    print(f"  Failures:                 {stats.failures}")
    print(f"  Entities resolved:        {stats.entities_created}")
    print(f"  Relationships created:    {stats.relationships_created}")
    print(f"  Failure rate:             {stats.failure_rate * 100:.2f}%")
    print(f"  Rate:                     {stats.rate:.1f} emails/sec")
    print()


def _format_node(node: Node) -> str:
    return f"{node.id:>8}  {node.type_category:<16} {node.name}  [{node.unique_key}]"


def _format_edge(edge: Edge) -> str:
    return f"{edge.from_ref} -[{edge.type} {edge.confidence:.2f}]-> {edge.to_ref}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def build_pipeline(
    settings: Settings,
    repository: PostgresGraphRepository,
    llm: LanguageModelClient,
    workers: int | None = None,
) -> ExtractionPipeline:
    """Wire the resolver, synthesizer and extractor into a pipeline."""
    resolver = EntityResolver(
        repository,
        llm,
        embedding_dimension=settings.embedding_dimension,
        fuzzy_match_types=settings.fuzzy_match_types,
        fuzzy_match_threshold=settings.fuzzy_match_threshold,
    )
    extractor = DocumentExtractor(
        repository,
        llm,
        resolver,
        RelationshipSynthesizer(repository),
        min_entity_confidence=settings.min_entity_confidence,
        max_body_chars=settings.max_body_chars,
    )
    return ExtractionPipeline(
        extractor,
        repository,
        workers=workers or settings.extraction_workers,
        failure_rate_threshold=settings.failure_rate_threshold,
        progress_interval=settings.progress_interval,
    )


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; load cannot be interrupted gracefully")


async def _load(args: argparse.Namespace, settings: Settings, repository: PostgresGraphRepository) -> int:
    llm = create_llm_client(settings)
    pipeline = build_pipeline(settings, repository, llm, workers=args.workers)
    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)

    try:
        stats = await pipeline.process_batch(iter_documents(args.csv_path), cancel_event, extract=args.extract)
    except (FileNotFoundError, CSVFormatError) as e:
        logger.error("Cannot read %s: %s", args.csv_path, e)
        return 1
    except BatchQualityError as e:
        _print_stats(e.stats)
        logger.error("Load quality gate failed: %s", e)
        return 1
    except BatchCancelledError as e:
        _print_stats(e.stats, title="Load Summary (cancelled)")
        return 130
    finally:
        await llm.aclose()

    _print_stats(stats)
    return 0


async def _neighbors(args: argparse.Namespace, repository: PostgresGraphRepository) -> int:
    engine = GraphTraversalEngine(repository)
    nodes = await engine.expand(args.entity_id, edge_type=args.edge_type, max_depth=args.depth)
    if not nodes:
        print(f"No entities within {args.depth} hop(s) of {args.entity_id}")
        return 1
    for node in nodes:
        print(_format_node(node))
    return 0


async def _path(args: argparse.Namespace, repository: PostgresGraphRepository) -> int:
    engine = GraphTraversalEngine(repository)
    path = await engine.shortest_path(args.from_id, args.to_id)
    if path is None:
        print(f"No path between {args.from_id} and {args.to_id}")
        return 1
    print(f"Path of length {len(path)}:")
    for edge in path:
        print(f"  {_format_edge(edge)}")
    return 0


async def _similar(args: argparse.Namespace, settings: Settings, repository: PostgresGraphRepository) -> int:
    llm = create_llm_client(settings)
    try:
        vector = await llm.embed(args.text)
    except LLMError as e:
        logger.error("Failed to embed query text: %s", e)
        return 1
    finally:
        await llm.aclose()

    engine = GraphTraversalEngine(repository)
    hits = await engine.similar_nodes(vector, top_k=args.top_k, min_similarity=args.min_similarity)
    if not hits:
        print("No similar entities found")
        return 1
    for hit in hits:
        print(f"{hit.similarity:6.3f}  {_format_node(hit.node)}")
    return 0


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    """Create the engine, dispatch the sub-command and dispose the engine."""
    if getattr(args, "workers", None):
        settings = settings.model_copy(update={"extraction_workers": args.workers})
    engine, session_factory = create_engine(settings)
    repository = PostgresGraphRepository(session_factory)
    try:
        if args.command == "init-db":
            await init_db(engine)
            return 0
        if args.command == "load":
            return await _load(args, settings, repository)
        if args.command == "neighbors":
            return await _neighbors(args, repository)
        if args.command == "path":
            return await _path(args, repository)
        if args.command == "similar":
            return await _similar(args, settings, repository)
        raise ValueError(f"unknown command: {args.command}")
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = _parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, args.log_level or settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    exit_code = asyncio.run(_run(args, settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
