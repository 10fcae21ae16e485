from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from typing import Optional, Sequence

from bookkeeper.application.container import build_container
from bookkeeper.config import AppPaths, get_app_paths, load_settings
from bookkeeper.domain.errors import AppError, InvalidArgumentError
from bookkeeper.domain.models import as_record
from bookkeeper.logging_config import setup_logging

log = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bookkeeper", description="Ledger overview and monthly reports.")
    parser.add_argument("--db", help="database file (defaults to the per-user data directory)")
    sub = parser.add_subparsers(dest="command", required=True)

    overview = sub.add_parser("overview", help="balance-sheet snapshot")
    overview.add_argument("--as-of", type=_parse_date, default=None, help="cutoff day, inclusive")

    report = sub.add_parser("report", help="profit and cash flow for one month")
    report.add_argument("year", type=int)
    report.add_argument("month", type=int)
    report.add_argument("--xlsx", help="also write the report to this Excel file")

    stock = sub.add_parser("stock", help="closing stock per item")
    stock.add_argument("--as-of", type=_parse_date, default=None, help="cutoff day, inclusive")

    sub.add_parser("dashboard", help="current month at a glance")
    return parser


def run(args: argparse.Namespace, paths: AppPaths) -> dict:
    container = build_container(args.db or paths.db_path, load_settings())

    if args.command == "overview":
        return as_record(container.overview.get_account_overview(args.as_of))
    if args.command == "report":
        if args.xlsx:
            report = container.reporting.export_monthly_report_excel(args.xlsx, args.year, args.month)
        else:
            report = container.reporting.monthly_report(args.year, args.month)
        return as_record(report)
    if args.command == "stock":
        return {
            "as_of": args.as_of.isoformat() if args.as_of else None,
            "items": [
                {"item_id": item.id, "title": item.title, "closing_stock": qty, "value": item.production_price * qty}
                for item, qty in container.overview.closing_stock(args.as_of)
            ],
        }
    if args.command == "dashboard":
        return as_record(container.reporting.dashboard_stats())
    raise InvalidArgumentError(f"Unknown command: {args.command}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        paths = get_app_paths()
        setup_logging(paths.logs_dir, level=logging.INFO)
        result = run(args, paths)
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
