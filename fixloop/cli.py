"""
Command Line Interface
======================
    fixloop run SOURCE_DIR [--entry-point PAGE] [--max-iterations N]
                           [--workers N] [--output PATH] [--headed]

Prints the report and exits 0 on Converged, 1 on Exhausted, 2 on launch
failure (including an unreadable fixloop.yml).
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from fixloop.agents.loop_controller import run_loop
from fixloop.core.config import RESULTS_PATH
from fixloop.core.report_formatter import format_report
from fixloop.models.loop_report import EXIT_CODES, FinalStatus
from fixloop.services.results_writer import ResultsWriter
from fixloop.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fixloop",
        description="Drive a web app in a browser, detect errors and apply validated fixes.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the fix loop over a source tree")
    run.add_argument("source_dir", help="Root of the served source tree")
    run.add_argument("--entry-point", help="Tree-relative page to drive (default: index.html)")
    run.add_argument("--max-iterations", type=int, help="Iteration budget")
    run.add_argument("--workers", type=int, help="Concurrent validations per iteration")
    run.add_argument("--output", default=RESULTS_PATH, help="Where to write the JSON report")
    run.add_argument("--headed", action="store_true", help="Show the browser window")
    run.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    overrides = {
        "entry_point": args.entry_point,
        "max_iterations": args.max_iterations,
        "worker_limit": args.workers,
        "headless": False if args.headed else None,
    }
    try:
        report = asyncio.run(run_loop(args.source_dir, overrides))
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CODES[FinalStatus.LAUNCH_FAILED]

    ResultsWriter.write_results(report, args.output)
    print(format_report(report))
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
