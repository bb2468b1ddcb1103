#!/usr/bin/env python3
"""
Finalize a day's hourly log sheets from the command line.

Shows which hours are logged for every sheet (generator, and each
transformer) and freezes the sheets that have all 24 hours.

Usage:
    python scripts/finalize_day.py YYYY-MM-DD ADMIN_ID [--dry-run]

Options:
    --dry-run    Show what would be finalized without making changes
"""
import asyncio
import sys
from datetime import date

from hydrolog.core.config import settings
from hydrolog.core.database import create_db_and_tables, engine
from hydrolog.logbook.errors import IncompleteDay, PermissionDenied
from hydrolog.logbook.store import HOURS_PER_DAY, SLOT_KINDS, SqlSlotStore


def sheets():
    """(kind, stream) pairs for every log sheet of the plant."""
    for kind in SLOT_KINDS.values():
        if kind.stream_column is None:
            yield kind, None
        else:
            for number in range(1, settings.transformer_count + 1):
                yield kind, number


def sheet_label(kind, stream) -> str:
    return kind.module_label if stream is None else f"{kind.module_label} #{stream}"


async def main(day: date, admin_id: str, dry_run: bool = False) -> int:
    """Finalize every complete sheet. Returns the number of incomplete sheets."""
    create_db_and_tables()
    store = SqlSlotStore(engine)
    incomplete = 0

    for kind, stream in sheets():
        hours = await store.logged_hours(kind, day, stream)
        missing = sorted(set(range(HOURS_PER_DAY)) - set(hours))
        label = sheet_label(kind, stream)
        print(f"{label}: {len(hours)}/{HOURS_PER_DAY} hours logged")
        if missing:
            print(f"  Missing hours: {', '.join(f'{h:02d}:00' for h in missing)}")

        if dry_run:
            continue

        try:
            count = await store.finalize_day(kind, day, stream, admin_id)
        except IncompleteDay as e:
            print(f"  Skipped: {e}")
            incomplete += 1
        except PermissionDenied as e:
            print(f"  Skipped: {e}")
        else:
            print(f"  Finalized {count} hours")

    if dry_run:
        print("--- DRY RUN: No changes made ---")
    return incomplete


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if len(args) != 2:
        print(__doc__)
        sys.exit(2)
    dry_run = "--dry-run" in sys.argv
    failures = asyncio.run(main(date.fromisoformat(args[0]), args[1], dry_run=dry_run))
    sys.exit(1 if failures else 0)
