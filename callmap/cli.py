#!/usr/bin/env python3
"""
callmap CLI - call graph analysis for Go source trees.

Usage:
    callmap analyze [path] [-o DIR]      Build the graph and write JSON artifacts
    callmap serve [path]                 Build the graph and serve the query API
"""

import argparse
import json
import logging
import sys
from typing import Optional

from callmap import __version__
from callmap.artifacts import write_artifacts
from callmap.config import AnalyzerConfig, ServerConfig, load_config
from callmap.errors import CallmapError, ReloadError
from callmap.pipeline import Pipeline

logger = logging.getLogger(__name__)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _analyzer_config(args: argparse.Namespace) -> AnalyzerConfig:
    return load_config(
        args.path,
        include_external=args.include_external,
        skip_patterns=args.skip,
        dependency_timeout=args.dependency_timeout,
        max_workers=args.workers,
    )


def _add_analysis_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("path", nargs="?", default=".", help="Project root containing go.mod")
    p.add_argument(
        "--include-external",
        action="store_true",
        default=None,
        help="Scan external dependencies from the module cache",
    )
    p.add_argument(
        "--skip",
        action="append",
        default=None,
        metavar="PATTERN",
        help="Skip dependencies matching a glob or path prefix (repeatable)",
    )
    p.add_argument(
        "--dependency-timeout",
        type=float,
        default=None,
        help="Seconds allowed per dependency scan (default: 30)",
    )
    p.add_argument("--workers", type=int, default=None, help="Max parallel workers")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="callmap",
        description="Call graph analysis for Go source trees",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    callmap analyze .                   # Write functions.json, functionmap.json
    callmap analyze . --include-external --skip 'golang.org/x/*'
    callmap serve . --port 8080         # Query API on http://127.0.0.1:8080

Environment:
    CALLMAP_INCLUDE_EXTERNAL, CALLMAP_SKIP, CALLMAP_DEPENDENCY_TIMEOUT,
    CALLMAP_MAX_WORKERS, CALLMAP_HOST, CALLMAP_PORT, GOMODCACHE, GOPATH
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_p = subparsers.add_parser("analyze", help="Build the call graph and write JSON artifacts")
    _add_analysis_args(analyze_p)
    analyze_p.add_argument(
        "-o", "--output", default=".", help="Directory for the JSON artifacts (default: .)"
    )

    serve_p = subparsers.add_parser("serve", help="Serve the call graph query API")
    _add_analysis_args(serve_p)
    serve_p.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    serve_p.add_argument("--port", type=int, default=None, help="Port (default: 8080)")

    return parser


def _run_analyze(args: argparse.Namespace) -> int:
    config = _analyzer_config(args)
    snapshot = Pipeline(config).run()
    written = write_artifacts(snapshot, args.output)
    summary = snapshot.summary()
    summary["artifacts"] = [str(p) for p in written]
    print(json.dumps(summary, indent=2))
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from callmap.server import SnapshotCache, create_app

    config = _analyzer_config(args)
    server_config = ServerConfig.from_env()
    if args.host:
        server_config.host = args.host
    if args.port:
        server_config.port = args.port

    cache = SnapshotCache(Pipeline(config), config.internal_prefixes)
    try:
        cache.reload()
    except ReloadError as e:
        print(f"Error: initial load failed: {e}", file=sys.stderr)
        return 1

    app = create_app(cache)
    logger.info(f"Serving on http://{server_config.host}:{server_config.port}")
    uvicorn.run(app, host=server_config.host, port=server_config.port)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        if args.command == "analyze":
            return _run_analyze(args)
        elif args.command == "serve":
            return _run_serve(args)
    except CallmapError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 1


if __name__ == "__main__":
    sys.exit(main())
