"""Command-line entrypoint.

    stackindex [--log-level {debug,info,warn,err}] import --input FILE [--host H] [--port P]

Parses standard Go stack trace dump text and imports it as structured documents
into a running Elasticsearch instance. Non-stack-trace content in the input file is
ignored, so a larger log file or captured stdout can be imported as-is.

Exit status: 0 on completion, 1 on input/parse/configuration failure or when the import was
cancelled or timed out, 2 on bad arguments.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from stackindex.config import settings
from stackindex.errors import InputError, ParseError
from stackindex.ingestion.import_dump import import_dump
from stackindex.monitor import MonitorState

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "err": logging.ERROR,
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=LOG_LEVELS.get(level.lower(), logging.WARNING),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    # --log-level is accepted before or after the subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default=argparse.SUPPRESS,
        choices=sorted(LOG_LEVELS),
        help="set the logging level (info,warn,err,debug)",
    )

    parser = argparse.ArgumentParser(
        prog="stackindex",
        description="Import Golang stack trace data into Elasticsearch.",
        parents=[common],
    )
    parser.set_defaults(log_level=settings.LOG_LEVEL)
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser(
        "import",
        parents=[common],
        help="Import a stack trace into Elasticsearch",
        description="Parse the input file and insert the stack trace data into Elasticsearch for further analysis.",
    )
    imp.add_argument("-e", "--host", default=settings.ES_HOST, help="Hostname for Elasticsearch endpoint")
    imp.add_argument("-p", "--port", type=int, default=settings.ES_PORT, help="Port for Elasticsearch endpoint")
    imp.add_argument("-i", "--input", default="", help="Input filename containing Golang stack trace data")
    imp.add_argument("--index", default=settings.INDEX_NAME, help="Target index name")
    imp.add_argument("--workers", type=int, default=settings.BULK_CONNECTIONS, help="Concurrent bulk connections")
    imp.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up waiting for delivery after this many seconds (default: wait indefinitely)",
    )
    return parser


def run_import(args: argparse.Namespace) -> int:
    run_settings = settings.model_copy(
        update={
            "ES_HOST": args.host,
            "ES_PORT": args.port,
            "INDEX_NAME": args.index,
            "BULK_CONNECTIONS": args.workers,
        }
    )
    try:
        run_settings.pipeline_config()
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 1
    try:
        summary = import_dump(args.input, settings=run_settings, timeout=args.timeout)
    except (InputError, ParseError) as exc:
        logger.error("Import failed: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Parsed {summary.parsed} goroutines")
    print(
        f"[IMPORT] {summary.input_path} -> delivered={summary.delivered} dropped={summary.dropped} "
        f"rejected={summary.rejected} cancelled={summary.cancelled}"
    )
    if summary.outcome is not MonitorState.DONE:
        print(f"Goroutine data import {summary.outcome.value}", file=sys.stderr)
        return 1
    print("Goroutine data import complete")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be >= 1")
    return run_import(args)


if __name__ == "__main__":
    sys.exit(main())
