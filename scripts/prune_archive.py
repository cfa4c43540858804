"""Prune archived classes and compact old roster entries in a store snapshot.

Loads a store snapshot written by InMemoryStore.dump_json, deletes archived
classes older than the retention window, strips old per-date entries from
live classes, and writes the snapshot back in place.

Run with: python scripts/prune_archive.py --store data/store.json --months 6
Preview:  python scripts/prune_archive.py --store data/store.json --months 6 --dry-run
Students: python scripts/prune_archive.py --store data/store.json --months 6 --cleanup-students

Exit codes:
  0 = success (summary JSON on stdout)
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

from src.studio.archive import ArchiveManager  # noqa: E402
from src.studio.config import get_config  # noqa: E402
from src.studio.logging import job_context, setup_logging_from_config  # noqa: E402
from src.studio.models import Principal, Role  # noqa: E402
from src.studio.store import InMemoryStore  # noqa: E402

# Maintenance jobs act as the studio itself
MAINTENANCE_PRINCIPAL = Principal(user_id="maintenance", role=Role.ADMIN)


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Prune archived classes from a store snapshot.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--store",
        type=str,
        default="data/store.json",
        help="Store snapshot JSON (default: data/store.json).",
    )
    parser.add_argument(
        "--months",
        type=int,
        default=6,
        help="Months of history to keep (default: 6).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be removed without writing the snapshot.",
    )
    parser.add_argument(
        "--cleanup-students",
        action="store_true",
        help="Also delete students with no future bookings, credits or membership.",
    )
    return parser.parse_args()


def main(args: argparse.Namespace) -> None:
    config = get_config()
    setup_logging_from_config(config)

    _log(f"prune_archive: loading {args.store}")
    store = InMemoryStore.load_json(
        args.store,
        max_attempts=config.transaction_max_attempts,
        retry_wait_seconds=config.transaction_retry_wait_seconds,
        max_batch_operations=config.batch_max_operations,
    )
    manager = ArchiveManager(store, config)

    with job_context(job="prune_archive", dry_run=args.dry_run):
        result = manager.prune(MAINTENANCE_PRINCIPAL, args.months, dry_run=args.dry_run)
        summary = result.model_dump(mode="json")
        if args.cleanup_students:
            summary["deleted_students"] = manager.cleanup_inactive_students(
                MAINTENANCE_PRINCIPAL, dry_run=args.dry_run
            )

    if args.dry_run:
        _log("  Dry run: snapshot left unchanged")
    else:
        store.dump_json(args.store)
        _log(f"  Snapshot written -> {args.store}")

    summary["dry_run"] = args.dry_run
    print(json.dumps(summary, indent=2))
    _log("prune_archive: done")


if __name__ == "__main__":
    args = _parse_args()
    try:
        main(args)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
