#!/usr/bin/env python3
"""
Main CLI entrypoint for receipt ingestion.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from receipt_ingest.core.categorization import InvalidRulesError
from receipt_ingest.core.database import spending_overview
from receipt_ingest.core.processor import (DEFAULT_EXTRACTION_TIMEOUT, DEFAULT_MAX_ITEMS,
                                           ReceiptProcessor)
from receipt_ingest.core.reporting import build_spending_pdf, write_items_csv

LOG_FORMAT = "[%(levelname)s] %(message)s"
LOG_FORMAT_DEBUG = "[%(levelname)s] %(name)s:%(lineno)d %(message)s"


def configure_logging(verbose: bool = False):
    """Send receipt_ingest log records to stderr as tagged lines."""
    env_level = os.getenv("RECEIPT_INGEST_LOG_LEVEL", "").upper()
    level = logging.DEBUG if verbose else getattr(logging, env_level, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_DEBUG if level == logging.DEBUG else LOG_FORMAT))

    logger = logging.getLogger("receipt_ingest")
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="receipt-ingest",
        description="OCR receipts (images or PDFs) into store, total, date and categorized line items",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Parse a receipt and print the record as JSON
  receipt-ingest photo.jpg --json

  # Store every receipt in a folder, rejecting duplicates
  receipt-ingest ./incoming --db receipts.sqlite

  # Export line items and a spending report
  receipt-ingest ./incoming --db receipts.sqlite --csv items.csv --report spending.pdf
        """
    )
    parser.add_argument("inputs", nargs="*", type=Path,
                        help="Receipt files or folders (.jpg, .png, .pdf, ...)")
    parser.add_argument("--db", type=Path, default=os.getenv("RECEIPT_DB"),
                        help="SQLite receipt store (default: RECEIPT_DB env var; no storage if unset)")
    parser.add_argument("--rules", type=Path, default=os.getenv("RECEIPT_RULES", "./rules.json"),
                        help="rules.json with item categories / merchant tokens (default: ./rules.json)")
    parser.add_argument("--lang",
                        help="Tesseract language, e.g. eng or ron (default: OCR_LANG env var or eng)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_EXTRACTION_TIMEOUT,
                        help=f"Seconds allowed per extraction, 0 disables (default: {DEFAULT_EXTRACTION_TIMEOUT:g})")
    parser.add_argument("--max-items", type=int, default=DEFAULT_MAX_ITEMS,
                        help=f"Line items stored per receipt (default: {DEFAULT_MAX_ITEMS})")
    parser.add_argument("--store-id",
                        help="Store identifier (e.g. tax id) used for duplicate detection")
    parser.add_argument("--csv", type=Path,
                        help="Write the parsed line items to this CSV file")
    parser.add_argument("--report", type=Path,
                        help="Write a spending report PDF (requires --db)")
    parser.add_argument("--json", action="store_true",
                        help="Print parsed records as JSON on stdout")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show detailed parsing information for debugging")
    return parser


def main(argv=None):
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.report and not args.db:
        print("[ERROR] --report needs a receipt database (--db or RECEIPT_DB)", file=sys.stderr)
        return 2
    if not args.inputs and not args.report:
        parser.print_usage()
        return 2

    try:
        processor = ReceiptProcessor(
            db_path=args.db,
            rules_path=args.rules,
            lang=args.lang,
            extraction_timeout=args.timeout or None,
            max_items=args.max_items,
            store_identity=args.store_id,
        )
    except InvalidRulesError as e:
        print(f"[ERROR] Invalid rules file {e}", file=sys.stderr)
        return 2

    records, failures = processor.process_all(args.inputs)

    if args.json:
        json.dump([r.to_dict() for r in records], sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")

    if args.csv and records:
        write_items_csv(records, args.csv)
        print(f"[OK] Wrote {args.csv}", file=sys.stderr)

    if args.report:
        pages = build_spending_pdf(spending_overview(args.db), args.report)
        print(f"[OK] Wrote {args.report} ({pages} page(s))", file=sys.stderr)

    if records:
        print(f"[OK] Processed {len(records)} receipt(s)", file=sys.stderr)
    if failures:
        print(f"[WARN] {len(failures)} file(s) not ingested:", file=sys.stderr)
        for path, reason in failures:
            print(f"  - {path.name}: {reason}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
