#!/usr/bin/env python3
"""
Print the most recently ingested postings.

    python scripts/print_latest_postings.py [LIMIT] [--db PATH]

PATH defaults to INGEST_SQLITE_PATH, then ./local/state/job_ingest.db.
"""

import argparse
import json
import os
import sys
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent  # ../scripts → project root
sys.path.insert(0, str(PROJECT_ROOT))

from modules.job_ingest.lib.db import latest_postings  # noqa: E402

DEFAULT_DB = PROJECT_ROOT / "local" / "state" / "job_ingest.db"


def format_timestamp(iso_str: str | None) -> str:
    """Convert ISO timestamp to readable local format."""
    if not iso_str:
        return "-"
    try:
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
        return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
    except ValueError:
        return iso_str


def _years(row: dict) -> str:
    lo, hi = row.get("years_experience_min"), row.get("years_experience_max")
    if lo is None:
        return "-"
    return f"{lo}-{hi}" if hi is not None else f"{lo}+"


def main() -> int:
    p = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument("limit", nargs="?", type=int, default=15)
    p.add_argument("--db", default=os.getenv("INGEST_SQLITE_PATH") or str(DEFAULT_DB))
    args = p.parse_args()

    if not os.path.exists(args.db):
        print(f"Database not found: {args.db}", file=sys.stderr)
        return 1

    rows = latest_postings(args.db, limit=max(1, args.limit))
    if not rows:
        print("No postings stored yet.")
        return 0

    print(f"DATABASE: {args.db}  (last {len(rows)} postings)")
    print("=" * 80)
    for i, row in enumerate(rows, 1):
        bullets = json.loads(row.get("requirements") or "[]")
        print(f"{i:2d}. [{format_timestamp(row['fetched_at'])}] {row['source_name']} / {row['external_id']}")
        print(f"     Title:    {row['title']}")
        print(f"     URL:      {row['url']}")
        print(f"     Location: {row['location'] or '-'}{' (remote)' if row['remote'] else ''}")
        print(f"     Years:    {_years(row)}   Bullets: {len(bullets)}")
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
