#!/usr/bin/env python3
"""
scripts/import_catalog.py: Build the catalog databases from spreadsheets

Each run drops and recreates the target table; the first row seen for a
code/id wins and later duplicates are counted and skipped.

Usage:
    python scripts/import_catalog.py products produtos.xlsx
    python scripts/import_catalog.py clients clientes.xlsx --db data/clients.db
    python scripts/import_catalog.py template            # writes templates/quote_template.xlsx

Exit codes:
    0 = imported
    1 = spreadsheet unreadable or required header missing
"""

import argparse
import logging
import os
import sys

# Ensure repo root is in path
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, REPO_ROOT)

from logging_config import setup_logging  # noqa: E402
from src.core import paths  # noqa: E402
from src.core.catalog import import_clients_xlsx, import_products_xlsx  # noqa: E402
from src.core.errors import QuoteError  # noqa: E402

log = logging.getLogger("quotedesk.import")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load product/client spreadsheets into SQLite")
    sub = parser.add_subparsers(dest="command", required=True)
    for name in ("products", "clients"):
        p = sub.add_parser(name, help=f"rebuild the {name} catalog")
        p.add_argument("xlsx", help="source .xlsx file")
        p.add_argument("--db", help="target database (default: configured catalog path)")
    t = sub.add_parser("template", help="write a blank quote workbook template")
    t.add_argument("--out", default=None, help=f"default: {paths.WORKBOOK_TEMPLATE_PATH}")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "template":
        from src.forms.quote_layout import load_template
        from src.forms.quote_workbook import create_template_workbook
        out = create_template_workbook(args.out or paths.WORKBOOK_TEMPLATE_PATH, load_template())
        print(f"Template written: {out}")
        return 0

    importer = import_products_xlsx if args.command == "products" else import_clients_xlsx
    try:
        stats = importer(args.xlsx, args.db)
    except (OSError, ValueError, QuoteError) as e:
        log.error("Import of %s failed: %s", args.xlsx, e)
        return 1
    print(f"{args.command}: {stats['inserted']} inserted, "
          f"{stats['duplicates']} duplicates, {stats['skipped']} skipped")
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(main())
