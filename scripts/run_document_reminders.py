#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dealroom.notifications import create_publisher_from_env
from dealroom.store import create_store_from_env


def main() -> int:
    parser = argparse.ArgumentParser(description="Send reminders for transactions stuck waiting on documents")
    parser.add_argument("--now", default="", help="ISO-8601 reference time; defaults to the current UTC time")
    parser.add_argument("--stale-days", type=int, default=3, help="days in PendingDocuments before a reminder")
    args = parser.parse_args()

    now = None
    if args.now.strip():
        try:
            now = datetime.fromisoformat(args.now.strip().replace("Z", "+00:00"))
        except ValueError:
            raise SystemExit(f"invalid --now value: {args.now}") from None

    store = create_store_from_env(publisher=create_publisher_from_env())
    try:
        result = store.remind_pending_documents(now=now, stale_days=args.stale_days)
    finally:
        store.close()
    print(json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
