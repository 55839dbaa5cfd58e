"""
Command-line interface for loading post archives into Neo4j.

    python -m src.ingestion.cli ingest --pattern '/data/*.json'
    python -m src.ingestion.cli ingest --dry-run --json

Exit status is 1 when the configuration can not be loaded or the store is
unreachable at startup. Individual file or batch failures are logged and
still exit 0.
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from src.ingestion.dispatcher import discover_files, dispatch
from src.ingestion.errors import FileDecodeError, StoreUnavailableError
from src.ingestion.pipeline import IngestionPipeline
from src.neo.store import GraphStore
from src.shared.config import (
    Config,
    ConfigurationError,
    IngestionConfig,
    load_config,
    load_credentials,
)
from src.shared.observability import get_logger, setup_logging, setup_metrics

logger = get_logger(__name__)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Fold command-line flags into the loaded configuration."""
    updates = {
        "input_glob": args.pattern,
        "batch_size": args.batch_size,
        "max_concurrent_batches": args.max_concurrent_batches,
        "decode_workers": args.workers,
        "decode_executor": args.executor,
    }
    updates = {k: v for k, v in updates.items() if v is not None}
    if args.fail_fast:
        updates["fail_fast_on_file_error"] = True
    if args.skip_relationships:
        updates["link_relationships"] = False

    # Re-validate so CLI values obey the same bounds as the YAML ones
    ingestion = IngestionConfig(**{**config.ingestion.model_dump(), **updates})
    return config.model_copy(update={"ingestion": ingestion})


def _print_lines(lines: List[str], payload: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload), flush=True)
    else:
        for line in lines:
            print(line)


async def _ingest(config: Config, args: argparse.Namespace) -> int:
    files = discover_files(config.ingestion.input_glob)

    if args.dry_run:
        result = dispatch(
            files,
            workers=config.ingestion.resolved_decode_workers,
            executor=config.ingestion.decode_executor,
            fail_fast=config.ingestion.fail_fast_on_file_error,
        )
        summary = result.stats.emit_summary()
        _print_lines(
            result.stats.summary_lines(),
            {"dry_run": True, "files": len(files), **summary},
            args.json,
        )
        return 0

    credentials = load_credentials(args.credentials)
    store = GraphStore.from_credentials(
        credentials,
        config.neo4j,
        constraint_settle_seconds=config.ingestion.constraint_settle_seconds,
    )
    try:
        await store.verify_connectivity()
        report = await IngestionPipeline(config, store).run(files)
    finally:
        await store.close()

    _print_lines(
        report.summary_lines(),
        {
            "run_id": report.run_id,
            "files": len(files),
            **report.statistics.counts(),
            "reshare_percentage": round(report.statistics.reshare_percentage, 2),
            **report.writes.summary(),
        },
        args.json,
    )
    if not args.json:
        print("Done!")
    return 0


def cmd_ingest(args: argparse.Namespace) -> int:
    try:
        config, settings = load_config(args.config)
        config = apply_overrides(config, args)
    except (ConfigurationError, ValueError) as e:
        print(f"Could not load configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(args.log_level or settings.log_level, settings.log_format)
    setup_metrics(args.metrics_port)

    try:
        return asyncio.run(_ingest(config, args))
    except ConfigurationError as e:
        print(f"Could not load credentials: {e}", file=sys.stderr)
        return 1
    except StoreUnavailableError as e:
        logger.error("store_unavailable", error=str(e))
        print(e, file=sys.stderr)
        print(
            "Could not connect to the database. Check if it's running.",
            file=sys.stderr,
        )
        return 1
    except FileDecodeError as e:
        logger.error("ingestion_aborted", path=e.path, error=str(e.cause))
        print(e, file=sys.stderr)
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graph-ingest",
        description="Load line-delimited JSON post archives into Neo4j",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    ingest_parser = subparsers.add_parser("ingest", help="Decode and load archives")
    ingest_parser.add_argument(
        "--pattern", help="Glob selecting input files (overrides config)"
    )
    ingest_parser.add_argument("--config", help="Path to a YAML config file")
    ingest_parser.add_argument("--credentials", help="Path to a credentials YAML file")
    ingest_parser.add_argument("--batch-size", type=int, help="Posts per transaction")
    ingest_parser.add_argument(
        "--max-concurrent-batches",
        type=int,
        help="Transactions allowed in flight at once",
    )
    ingest_parser.add_argument("--workers", type=int, help="Decode worker count")
    ingest_parser.add_argument(
        "--executor", choices=["process", "thread"], help="Decode pool type"
    )
    ingest_parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Abort the run when an input file can not be read",
    )
    ingest_parser.add_argument(
        "--skip-relationships",
        action="store_true",
        help="Do not derive REPLIES_TO / MENTIONS edges after loading",
    )
    ingest_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Decode and report counts without touching the store",
    )
    ingest_parser.add_argument(
        "--metrics-port", type=int, help="Serve Prometheus metrics on this port"
    )
    ingest_parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    ingest_parser.add_argument(
        "--json", action="store_true", help="JSON output for machine consumption"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "ingest":
        return cmd_ingest(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
