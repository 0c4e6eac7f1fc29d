"""Command-line entry point: ``ragdoll ingest | search | context | reprocess | stats``.

Every command prints JSON to stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ragdoll.client import RagdollClient
from ragdoll.config import Settings
from ragdoll.exceptions import RagdollError
from ragdoll.ingestion.models import DocumentStatus

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ragdoll", description="Document ingestion and semantic search")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Ingest files or directories")
    ingest.add_argument("paths", nargs="+", help="Files or directories to ingest")
    ingest.add_argument("--recursive", action="store_true", help="Descend into subdirectories")
    ingest.add_argument("--force", action="store_true", help="Reprocess files even if unchanged")

    search = sub.add_parser("search", help="Semantic search")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=None)
    search.add_argument("--threshold", type=float, default=None)
    search.add_argument("--document-type", default=None)
    search.add_argument("--no-usage-ranking", action="store_true", help="Rank by similarity only")

    context = sub.add_parser("context", help="Retrieve prompt context")
    context.add_argument("prompt")
    context.add_argument("--limit", type=int, default=None)
    context.add_argument("--threshold", type=float, default=None)

    reprocess = sub.add_parser("reprocess", help="Reprocess stored documents")
    reprocess.add_argument("--status", choices=[s.value for s in DocumentStatus], default=None)

    sub.add_parser("stats", help="Document and search statistics")
    return parser


def _ingest(client: RagdollClient, args: argparse.Namespace) -> dict[str, Any]:
    results: list[dict[str, Any]] = []
    files: list[str] = []
    for raw in args.paths:
        path = Path(raw)
        if path.is_dir():
            batch = client.add_directory(path, recursive=args.recursive, force=args.force)
            results.append({"directory": str(path), **batch.summary()})
        else:
            files.append(str(path))
    if files:
        batch = client.pipeline.ingest_many(files, force=args.force)
        results.append({"files": len(files), **batch.summary()})
    return {"ingested": results}


def _search(client: RagdollClient, args: argparse.Namespace) -> dict[str, Any]:
    response = client.search(
        args.query,
        limit=args.limit,
        threshold=args.threshold,
        document_type=args.document_type,
        use_usage_ranking=False if args.no_usage_ranking else None,
    )
    return response.model_dump(mode="json")


def _context(client: RagdollClient, args: argparse.Namespace) -> dict[str, Any]:
    return client.get_context(args.prompt, limit=args.limit, threshold=args.threshold).model_dump(mode="json")


def _reprocess(client: RagdollClient, args: argparse.Namespace) -> dict[str, Any]:
    status = DocumentStatus(args.status) if args.status else None
    return client.reprocess_documents(status).summary()


def _stats(client: RagdollClient, args: argparse.Namespace) -> dict[str, Any]:
    return {"documents": client.document_stats(), "searches": client.search_analytics()}


COMMANDS = {
    "ingest": _ingest,
    "search": _search,
    "context": _context,
    "reprocess": _reprocess,
    "stats": _stats,
}


def main(argv: Sequence[str] | None = None, *, client: RagdollClient | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = client.settings if client is not None else Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    owned = client is None
    client = client or RagdollClient(settings)
    try:
        payload = COMMANDS[args.command](client, args)
    except RagdollError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(json.dumps({"error": exc.message, "details": exc.details}, default=str))
        return 1
    finally:
        if owned:
            client.close()

    print(json.dumps(payload, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
