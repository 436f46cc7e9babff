"""
Command-line interface.

The engine keeps its index in memory, so the CLI persists it between runs
as a JSON snapshot produced by backup():

    ir-lab index docs/*.md --output index.json
    ir-lab search index.json "质量标准" --top-n 3 --explain
    ir-lab context index.json "deployment rollback" --max-tokens 1500
    ir-lab stats index.json
"""

import argparse
import json
import logging
import mimetypes
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import SearchOptions, load_config, load_environment
from .engine import IREngine
from .exceptions import IRError
from .logging_config import setup_logging
from .models import DocumentStatus

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "text/plain"


def guess_media_type(path: Path) -> str:
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type or path.suffix.lstrip(".") or DEFAULT_MEDIA_TYPE


def open_engine(snapshot: Optional[Path], must_exist: bool = True) -> IREngine:
    engine = IREngine(config=load_config())
    if snapshot is not None and snapshot.exists():
        engine.restore(snapshot.read_text(encoding="utf-8"))
        logger.info(f"Loaded snapshot {snapshot}")
    elif must_exist:
        raise FileNotFoundError(f"Snapshot not found: {snapshot}")
    return engine


def cmd_index(args) -> int:
    output = Path(args.output)
    engine = open_engine(output, must_exist=False)

    files = []
    for name in args.paths:
        path = Path(name)
        if not path.is_file():
            print(f"[WARN] Skipping {path}: not a file", file=sys.stderr)
            continue
        files.append((path.read_bytes(), path.name, args.media_type or guess_media_type(path)))

    documents = engine.ingest_many(files)
    for document in documents:
        if document.status == DocumentStatus.ERROR:
            print(f"[ERROR] {document.file_name}: {document.error}", file=sys.stderr)
        else:
            print(f"[OK] {document.file_name}: {document.chunk_count} chunks, {document.total_tokens} tokens")

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(engine.backup(), encoding="utf-8")
    print(f"Snapshot written to {output}")
    return 1 if any(d.status == DocumentStatus.ERROR for d in documents) else 0


def cmd_search(args) -> int:
    engine = open_engine(Path(args.snapshot))
    options = SearchOptions(
        top_k=args.top_k,
        top_n=args.top_n,
        use_hierarchical_search=not args.flat,
        use_prf=args.prf,
        explain=args.explain,
        min_score=args.min_score,
    )
    results = engine.search(args.query, options)

    if args.json:
        payload = [
            {
                "doc_id": r.document.id,
                "file_name": r.document.file_name,
                "chunk_index": r.chunk.chunk_index,
                "score": r.score,
                "content": r.chunk.content,
                "term_scores": r.explanation.term_scores if r.explanation else None,
            }
            for r in results
        ]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    if not results:
        print("No results")
        return 0

    for rank, result in enumerate(results, 1):
        preview = result.chunk.content[:120].replace("\n", " ")
        print(f"{rank}. [{result.score:.4f}] {result.document.file_name} #{result.chunk.chunk_index}: {preview}")
        if result.explanation:
            for term, score in sorted(result.explanation.term_scores.items(), key=lambda x: -x[1]):
                print(f"      {term}: {score:.4f} (x{result.explanation.field_boosts[term]})")
    return 0


def cmd_context(args) -> int:
    engine = open_engine(Path(args.snapshot))
    print(engine.relevant_context(args.query, max_tokens=args.max_tokens))
    return 0


def cmd_stats(args) -> int:
    engine = open_engine(Path(args.snapshot))
    stats = engine.get_statistics()
    print(json.dumps(
        {
            "statistics": stats.model_dump(mode="json"),
            "top_terms": engine.store.term_distribution(limit=args.top_terms),
        },
        ensure_ascii=False,
        indent=2,
    ))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ir-lab",
        description="Hierarchical BM25 search over document snapshots",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    parser.add_argument("--log-file", default=None, help="Also write detailed logs to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Ingest files into a snapshot")
    index_parser.add_argument("paths", nargs="+", help="Files to ingest")
    index_parser.add_argument("-o", "--output", default="index.json", help="Snapshot path (default: index.json)")
    index_parser.add_argument("--media-type", default=None, help="Override detected media type")
    index_parser.set_defaults(handler=cmd_index)

    search_parser = subparsers.add_parser("search", help="Query a snapshot")
    search_parser.add_argument("snapshot", help="Snapshot path")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument("--top-k", type=int, default=10, help="Documents kept by the coarse stage")
    search_parser.add_argument("--top-n", type=int, default=5, help="Chunks returned")
    search_parser.add_argument("--flat", action="store_true", help="Skip the document stage")
    search_parser.add_argument("--prf", action="store_true", help="Enable pseudo-relevance feedback")
    search_parser.add_argument("--explain", action="store_true", help="Show per-term scores")
    search_parser.add_argument("--min-score", type=float, default=0.01, help="Drop results below this score")
    search_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    search_parser.set_defaults(handler=cmd_search)

    context_parser = subparsers.add_parser("context", help="Assemble a context block for a query")
    context_parser.add_argument("snapshot", help="Snapshot path")
    context_parser.add_argument("query", help="Query text")
    context_parser.add_argument("--max-tokens", type=int, default=2000, help="Token budget (default: 2000)")
    context_parser.set_defaults(handler=cmd_context)

    stats_parser = subparsers.add_parser("stats", help="Show index statistics")
    stats_parser.add_argument("snapshot", help="Snapshot path")
    stats_parser.add_argument("--top-terms", type=int, default=10, help="Most frequent terms to list")
    stats_parser.set_defaults(handler=cmd_stats)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_environment()
    level_name = "DEBUG" if args.verbose else os.getenv("LOG_LEVEL", "WARNING").upper()
    setup_logging(log_file=args.log_file, console_level=getattr(logging, level_name, logging.WARNING))

    try:
        return args.handler(args)
    except (IRError, FileNotFoundError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
