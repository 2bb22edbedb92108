"""Revalidate a worklist of comprobantes against SUNAT.

Reads documents from a JSON Lines file (see sunat_engine.batch.file_adapters
for the format), validates each one with bounded perturbation retries, and
writes outcomes as JSON Lines plus an optional CSV report.

Usage:
    python -m scripts.revalidate_documents --input docs.jsonl --output outcomes.jsonl \\
        --report report.csv --max-attempts 8

Exits with status 2 when SUNAT credentials are rejected.
"""

import argparse
import logging
import sys
from pathlib import Path

from sunat_engine.authority.client import SunatClient
from sunat_engine.authority.errors import BatchAbortedError
from sunat_engine.batch.file_adapters import CsvReportingSink, JsonlDocumentStore
from sunat_engine.batch.orchestrator import BatchOrchestrator, BatchSummary
from sunat_engine.shared.config import get_settings
from sunat_engine.validation.controller import ValidationController

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Revalidate comprobantes against SUNAT")
    parser.add_argument("--input", type=Path, required=True, help="Pending documents (JSONL)")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("outcomes.jsonl"),
        help="Outcome records (JSONL, appended)",
    )
    parser.add_argument("--report", type=Path, default=None, help="Optional CSV report")
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Validation attempts per document (default: APP_VALIDATION_MAX_ATTEMPTS)",
    )
    return parser.parse_args(argv)


def print_summary(summary: BatchSummary) -> None:
    print("\n" + "=" * 48)
    print("REVALIDATION SUMMARY")
    print("=" * 48)
    print(f"Processed:      {summary.total}")
    print(f"Validated:      {summary.validated} ({summary.corrected} corrected)")
    print(f"Not validated:  {summary.not_validated}")
    print(f"Skipped:        {summary.skipped}")
    print(f"Errors:         {summary.errors}")
    if summary.aborted:
        print("Batch ABORTED: SUNAT credentials rejected")
    print("=" * 48)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.input.exists():
        logger.error(f"Input file not found: {args.input}")
        return 1

    store = JsonlDocumentStore(args.input, args.output)
    sink = CsvReportingSink(args.report) if args.report else None

    with SunatClient(settings) as client:
        orchestrator = BatchOrchestrator(
            settings,
            ValidationController(settings, client),
            store,
            sink=sink,
        )
        try:
            summary = orchestrator.run(max_attempts=args.max_attempts)
        except BatchAbortedError as e:
            logger.error(str(e))
            print_summary(e.summary)
            return 2

    print_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
