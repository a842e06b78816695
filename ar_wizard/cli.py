"""Command-line interface for the AR Wizard knowledge store.

Usage:
    uv run python -m ar_wizard.cli stats
    uv run python -m ar_wizard.cli export --output snapshot.json
    uv run python -m ar_wizard.cli import snapshot.json
    uv run python -m ar_wizard.cli sweep
    uv run python -m ar_wizard.cli maintain
    uv run python -m ar_wizard.cli serve
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from prometheus_client import start_http_server

from ar_wizard.config import get_settings
from ar_wizard.memory.manager import KnowledgeStore
from ar_wizard.memory.scheduler import start_scheduler, stop_scheduler
from ar_wizard.observability.metrics import APP_INFO

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


async def _cmd_stats(store: KnowledgeStore, args: argparse.Namespace) -> None:
    counts = await store.stats()
    width = max(len(ns) for ns in counts)
    for namespace, count in counts.items():
        print(f"{namespace:<{width}}  {count}")


async def _cmd_export(store: KnowledgeStore, args: argparse.Namespace) -> None:
    snapshot = await store.export_all()
    text = json.dumps(snapshot, indent=2)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        print(f"Exported knowledge base to {args.output}")
    else:
        print(text)


async def _cmd_import(store: KnowledgeStore, args: argparse.Namespace) -> None:
    snapshot = json.loads(Path(args.file).read_text(encoding="utf-8"))
    if not isinstance(snapshot, dict):
        msg = f"{args.file} does not contain a knowledge snapshot object"
        raise ValueError(msg)
    counts = await store.import_all(snapshot)
    for section, count in counts.items():
        print(f"Imported {count} {section.replace('_', ' ')}")


async def _cmd_sweep(store: KnowledgeStore, args: argparse.Namespace) -> None:
    removed = await store.sweep_expired_analyses()
    print(f"Removed {removed} expired analyses")


async def _cmd_maintain(store: KnowledgeStore, args: argparse.Namespace) -> None:
    report = await store.perform_maintenance()
    print(f"Expired analyses removed: {report.expired_analyses_removed}")
    print(f"Knowledge eligible for archival: {len(report.stale_knowledge)}")
    for error in report.errors:
        print(f"Error: {error}", file=sys.stderr)
    if not report.ok:
        sys.exit(1)


async def _cmd_serve(store: KnowledgeStore, args: argparse.Namespace) -> None:
    settings = get_settings()
    port = args.port or settings.metrics_port
    APP_INFO.info({"version": VERSION, "db_path": store.db_path})
    start_http_server(port)
    logger.info("Metrics exposed on :%d/metrics", port)

    await store.stats()
    start_scheduler(store)
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()


_COMMANDS: dict[str, Callable[[KnowledgeStore, argparse.Namespace], Awaitable[None]]] = {
    "stats": _cmd_stats,
    "export": _cmd_export,
    "import": _cmd_import,
    "sweep": _cmd_sweep,
    "maintain": _cmd_maintain,
    "serve": _cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ar-wizard-memory", description="AR Wizard knowledge store")
    parser.add_argument("--db", help="SQLite database path (default: MEMORY_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Show record counts per namespace")

    export = sub.add_parser("export", help="Export the knowledge base as JSON")
    export.add_argument("--output", "-o", help="Write to a file instead of stdout")

    imp = sub.add_parser("import", help="Merge a JSON snapshot into the knowledge base")
    imp.add_argument("file", help="Snapshot produced by 'export'")

    sub.add_parser("sweep", help="Delete expired database analyses")
    sub.add_parser("maintain", help="Run a full maintenance pass")

    serve = sub.add_parser("serve", help="Run scheduled maintenance and expose Prometheus metrics")
    serve.add_argument("--port", type=int, help="Metrics port (default: METRICS_PORT)")

    return parser


async def run(argv: list[str] | None = None) -> None:
    """Parse arguments and dispatch to the selected command."""
    args = build_parser().parse_args(argv)
    store = KnowledgeStore(args.db)
    await _COMMANDS[args.command](store, args)


def main() -> None:
    """Console entry point."""
    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\nGoodbye!")
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
