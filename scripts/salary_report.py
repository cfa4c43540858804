"""Print instructor attendance and salaries for a date range.

Reads a store snapshot written by InMemoryStore.dump_json, reconstructs which
class version and instructor ran on each date, and prices the taught minutes.

Run with: python scripts/salary_report.py --store data/store.json
Range:    python scripts/salary_report.py --store data/store.json --start 2024-03-01 --end 2024-03-31
Rates:    python scripts/salary_report.py --store data/store.json --rate instructor1=900 --rate instructor2=750
JSON:     python scripts/salary_report.py --store data/store.json --json

Without --start/--end the previous calendar month is reported.

Exit codes:
  0 = success (table or JSON on stdout)
  1 = error (message on stderr)
"""

import argparse
import json
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.studio.config import get_config  # noqa: E402
from src.studio.logging import job_context, setup_logging_from_config  # noqa: E402
from src.studio.models import SalaryReport  # noqa: E402
from src.studio.payroll import PayrollAggregator  # noqa: E402
from src.studio.store import InMemoryStore  # noqa: E402


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _parse_rate(value: str) -> tuple[str, int]:
    instructor_id, sep, rate = value.partition("=")
    if not sep or not instructor_id or not rate.isdigit():
        raise argparse.ArgumentTypeError(f"expected INSTRUCTOR_ID=RATE, got {value!r}")
    return instructor_id, int(rate)


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Instructor attendance and salary report.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--store",
        type=str,
        default="data/store.json",
        help="Store snapshot JSON (default: data/store.json).",
    )
    parser.add_argument("--start", type=str, default=None, help="First date, YYYY-MM-DD.")
    parser.add_argument("--end", type=str, default=None, help="Last date, YYYY-MM-DD.")
    parser.add_argument(
        "--rate",
        type=_parse_rate,
        action="append",
        default=[],
        help="Hourly rate override, e.g. instructor1=900. Repeatable.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output the full report (with session logs) as JSON.",
    )
    return parser.parse_args()


def _format_table(report: SalaryReport) -> str:
    """Columns: Instructor | Classes | Minutes | Rate | Salary"""
    headers = ["Instructor", "Classes", "Minutes", "Rate", "Salary"]
    rows = [
        [
            line.name,
            str(line.class_count),
            str(line.total_minutes),
            str(line.hourly_rate),
            str(line.salary),
        ]
        for line in report.lines
    ]
    rows.append(["TOTAL", "", "", "", str(report.total_payout)])

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)
    row_lines = [" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)) for row in rows]
    return "\n".join([f"{report.start} .. {report.end}", header_line, separator, *row_lines])


def main(args: argparse.Namespace) -> None:
    config = get_config()
    setup_logging_from_config(config)

    _log(f"salary_report: loading {args.store}")
    store = InMemoryStore.load_json(args.store)
    aggregator = PayrollAggregator(store, config)

    with job_context(job="salary_report"):
        report = aggregator.salary_report(args.start, args.end, dict(args.rate))
    _log(f"  {len(report.lines)} instructors, {report.start} .. {report.end}")

    if args.json:
        output = report.model_dump(mode="json")
        output["attendance"] = [
            a.model_dump(mode="json") for a in aggregator.attendance(report.start, report.end)
        ]
        print(json.dumps(output, indent=2, ensure_ascii=False))
    else:
        print(_format_table(report))

    _log("salary_report: done")


if __name__ == "__main__":
    args = _parse_args()
    try:
        main(args)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
