"""Command-line tools for preparing the gift list.

  gift-list generate-tokens gift_list.csv --json gift_list_token.json --xlsx gift_list.xlsx

Reads the backer export, issues one token per row and writes the JSON
snapshot and/or a workbook with ``Token Link`` / ``Token Expires`` filled in.
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path

from app.core.config import settings
from app.domain.record import RecordTable
from app.services.headers import normalize_row, present_labels
from app.services.table_store import SnapshotCodec, WorkbookCodec
from app.services.tokens import issue_tokens

logger = logging.getLogger(__name__)


def read_backer_csv(path: Path) -> RecordTable:
    """Load a backer CSV export (UTF-8, optional BOM) as a normalized table."""
    with path.open(newline="", encoding="utf-8-sig") as handle:
        reader = csv.DictReader(handle)
        rows = [normalize_row(row) for row in reader]
        headers = reader.fieldnames or []
    return RecordTable(rows=rows, present_labels=present_labels(headers))


def generate_tokens(
    source: Path,
    json_out: Path | None,
    xlsx_out: Path | None,
    base_url: str,
    ttl_days: int,
) -> RecordTable:
    table = read_backer_csv(source)
    table.rows = issue_tokens(table.rows, base_url, ttl_ms=ttl_days * 24 * 60 * 60 * 1000)

    if json_out is not None:
        json_out.write_bytes(SnapshotCodec().encode(table))
        logger.info("%s generated with tokens", json_out)
    if xlsx_out is not None:
        xlsx_out.write_bytes(WorkbookCodec().encode(table))
        logger.info("%s generated with tokens", xlsx_out)
    return table


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gift-list", description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    gen = commands.add_parser("generate-tokens", help="Issue a token for every backer row")
    gen.add_argument("csv", type=Path, help="Backer export (CSV)")
    gen.add_argument("--json", type=Path, default=None, help="JSON snapshot to write")
    gen.add_argument("--xlsx", type=Path, default=None, help="Workbook to write")
    gen.add_argument("--base-url", default=settings.token_base_url, help="Link base URL")
    gen.add_argument("--ttl-days", type=int, default=settings.token_ttl_days)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = build_parser().parse_args(argv)

    if args.command == "generate-tokens":
        if not args.csv.exists():
            logger.error("CSV file not found: %s", args.csv)
            return 1
        json_out = args.json
        if json_out is None and args.xlsx is None:
            json_out = Path("gift_list_token.json")
        table = generate_tokens(args.csv, json_out, args.xlsx, args.base_url, args.ttl_days)
        print(f"Issued {len(table.rows)} tokens")
    return 0


if __name__ == "__main__":
    sys.exit(main())
