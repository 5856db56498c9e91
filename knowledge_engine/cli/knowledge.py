"""Standalone CLI for managing an agent's knowledge base.

Usage::

    python -m knowledge_engine.cli --agent-id my-agent load --path ./docs

    python -m knowledge_engine.cli --agent-id my-agent add-url \\
        --url https://example.com/handbook.pdf

    python -m knowledge_engine.cli --agent-id my-agent search \\
        "how do refunds work?" --limit 5 --threshold 0.3

    python -m knowledge_engine.cli --agent-id my-agent stats

    python -m knowledge_engine.cli --agent-id my-agent export --format markdown
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from knowledge_engine.config.settings import Settings
from knowledge_engine.models.knowledge import (
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_SEARCH_THRESHOLD,
    KnowledgeScope,
    SearchOptions,
)
from knowledge_engine.services.docs_loader import load_docs_from_path
from knowledge_engine.services.knowledge_engine import KnowledgeEngine
from knowledge_engine.utils.errors import KnowledgeEngineError
from knowledge_engine.utils.logging import configure_logging

_DEFAULT_AGENT_ID = "default"


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_load(args: argparse.Namespace, engine: KnowledgeEngine) -> int:
    """Bulk-load a documents folder."""
    print(f"Loading documents from: {args.path}")

    result = await load_docs_from_path(engine, args.agent_id, args.path)

    print("\nLoad complete:")
    print(f"  Successful: {result.successful}")
    print(f"  Failed:     {result.failed}")
    for error in result.errors:
        print(f"    {error.filename}: {error.error}")
    return 0 if result.failed == 0 else 1


async def _handle_add_url(args: argparse.Namespace, engine: KnowledgeEngine) -> int:
    """Fetch and ingest one URL."""
    print(f"Ingesting URL: {args.url}")

    result = await engine.add_knowledge_from_url(
        args.url,
        KnowledgeScope(agent_id=args.agent_id),
    )

    print("\nIngestion complete:")
    print(f"  Document ID:    {result.document_id}")
    print(f"  Fragments:      {result.fragment_count}")
    print(f"  Already stored: {'yes' if result.already_existed else 'no'}")
    return 0


async def _handle_search(args: argparse.Namespace, engine: KnowledgeEngine) -> int:
    """Run a similarity search and print the hits."""
    results = await engine.search(
        args.query,
        SearchOptions(agent_id=args.agent_id, threshold=args.threshold, limit=args.limit),
    )
    if not results:
        print("No matching knowledge found.")
        return 0

    for rank, hit in enumerate(results, start=1):
        title = hit.metadata.get("document_title", hit.document_id)
        print(f"[{rank}] {title} (fragment {hit.position}, similarity {hit.similarity:.3f})")
        snippet = hit.content if len(hit.content) <= 300 else hit.content[:300] + "..."
        print(f"    {snippet}")
        print()
    return 0


async def _handle_stats(args: argparse.Namespace, engine: KnowledgeEngine) -> int:
    """Display knowledge base statistics for the agent."""
    analytics = await engine.get_analytics(args.agent_id)

    print(f"Knowledge Statistics ({args.agent_id})")
    print("=" * 40)
    print(f"  Documents:    {analytics.total_documents}")
    print(f"  Fragments:    {analytics.total_fragments}")
    print(f"  Storage size: {analytics.storage_size} bytes")

    if analytics.content_types:
        print("\n  Documents by type:")
        for content_type, count in sorted(analytics.content_types.items()):
            print(f"    {content_type:<40} {count}")
    return 0


async def _handle_delete(args: argparse.Namespace, engine: KnowledgeEngine) -> int:
    """Delete a document and all its fragments."""
    if not args.yes:
        confirm = input(f"  Delete document {args.document_id}? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 0

    deleted = await engine.delete_document(args.document_id)
    if deleted:
        print(f"Deleted document {args.document_id}.")
    else:
        print(f"Document {args.document_id} not found. Nothing to delete.")
    return 0


async def _handle_export(args: argparse.Namespace, engine: KnowledgeEngine) -> int:
    """Export the agent's documents to stdout or a file."""
    output = await engine.export_knowledge(
        args.agent_id,
        format=args.format,
        include_metadata=not args.no_metadata,
        include_fragments=args.include_fragments,
    )
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Exported to {args.output}")
    else:
        sys.stdout.write(output)
    return 0


_HANDLERS = {
    "load": _handle_load,
    "add-url": _handle_add_url,
    "search": _handle_search,
    "stats": _handle_stats,
    "delete": _handle_delete,
    "export": _handle_export,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m knowledge_engine.cli",
        description="Manage an agent's knowledge base.",
    )
    parser.add_argument(
        "--agent-id",
        dest="agent_id",
        default=_DEFAULT_AGENT_ID,
        help=f"Agent that owns the knowledge (default: {_DEFAULT_AGENT_ID})",
    )
    subparsers = parser.add_subparsers(dest="command", help="Knowledge commands")

    # -- load --
    load_parser = subparsers.add_parser("load", help="Load every supported file in a folder")
    load_parser.add_argument(
        "--path",
        default=None,
        help="Folder to load (default: KNOWLEDGE_PATH setting)",
    )

    # -- add-url --
    url_parser = subparsers.add_parser("add-url", help="Fetch and ingest a URL")
    url_parser.add_argument("--url", required=True, help="Document URL")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search the knowledge base")
    search_parser.add_argument("query", help="Natural-language query")
    search_parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_SEARCH_LIMIT,
        help=f"Maximum results, clamped to 1-100 (default: {DEFAULT_SEARCH_LIMIT})",
    )
    search_parser.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_SEARCH_THRESHOLD,
        help=f"Minimum similarity, clamped to 0-1 (default: {DEFAULT_SEARCH_THRESHOLD})",
    )

    # -- stats --
    subparsers.add_parser("stats", help="Show knowledge base statistics")

    # -- delete --
    delete_parser = subparsers.add_parser("delete", help="Delete a document")
    delete_parser.add_argument("document_id", help="Document identifier")
    delete_parser.add_argument(
        "--yes", "-y", action="store_true", help="Skip confirmation prompt"
    )

    # -- export --
    export_parser = subparsers.add_parser("export", help="Export the knowledge base")
    export_parser.add_argument(
        "--format",
        choices=("json", "csv", "markdown"),
        default="json",
        help="Output format (default: json)",
    )
    export_parser.add_argument(
        "--include-fragments",
        action="store_true",
        dest="include_fragments",
        help="Include fragment text (json and markdown only)",
    )
    export_parser.add_argument(
        "--no-metadata",
        action="store_true",
        dest="no_metadata",
        help="Omit document metadata",
    )
    export_parser.add_argument("--output", "-o", default=None, help="Write to a file")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    """Build the engine, dispatch one command, and always close the engine."""
    from knowledge_engine.main import create_engine

    engine = await create_engine(app_settings)
    try:
        return await _HANDLERS[args.command](args, engine)
    finally:
        await engine.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parses the subcommand, loads Settings from the environment / .env file,
    and dispatches to the handler.  Engine errors are printed to stderr and
    exit with status 1.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    # Command output owns stdout; logs go to stderr at WARNING and above.
    configure_logging(log_level="WARNING", json_output=app_settings.app_env == "production")

    if args.command == "load" and args.path is None:
        args.path = app_settings.knowledge_path

    try:
        exit_code = asyncio.run(_run(args, app_settings))
    except KnowledgeEngineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
