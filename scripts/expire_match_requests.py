#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path


def _bootstrap_imports() -> None:
    project_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(project_root))


def main() -> int:
    parser = argparse.ArgumentParser(description="Expire match requests whose search window has elapsed.")
    parser.add_argument(
        "--grace-minutes",
        type=int,
        default=0,
        help="Only expire requests that have been overdue for at least this many minutes.",
    )
    args = parser.parse_args()

    _bootstrap_imports()

    from sportmatch.database import SessionLocal  # noqa: PLC0415
    from sportmatch.logging_utils import configure_logging  # noqa: PLC0415
    from sportmatch.matchmaking import expire_stale_requests  # noqa: PLC0415

    configure_logging()
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(0, args.grace_minutes))
    with SessionLocal() as db:
        expired = expire_stale_requests(db, now=cutoff)

    print(f"expired {expired} match request(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
