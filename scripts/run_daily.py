#!/usr/bin/env python3
"""
Enqueue the daily pipeline jobs. Run from cron, e.g.:

  0 5 * * *  python scripts/run_daily.py --cleanup-only
  0 6 * * *  python scripts/run_daily.py

A `skillstack-worker --loop` process executes the queued jobs.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from skillstack.core.config import get_settings
from skillstack.core.db import SkillStore, SupabaseSkillStore
from skillstack.core.logging_setup import LOG_LEVELS, configure_logging

LOGGER = logging.getLogger("run_daily")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Queue the daily SkillStack sync.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--cleanup-only", action="store_true", help="Only queue tree cache cleanup.")
    mode.add_argument("--sync-only", action="store_true", help="Only queue the leaderboard sync.")
    parser.add_argument(
        "--retag",
        action="store_true",
        help="Also queue a full re-tag pass (after a technology registry change).",
    )
    parser.add_argument(
        "--log-level",
        default=get_settings().log_level,
        choices=LOG_LEVELS,
        help="Logging level.",
    )
    return parser.parse_args()


def enqueue_daily(
    store: SkillStore,
    sync: bool = True,
    cleanup: bool = True,
    retag: bool = False,
) -> list[str]:
    day = datetime.now(timezone.utc).date().isoformat()
    queued: list[str] = []
    if cleanup:
        store.enqueue_job("cleanup_tree_cache", {}, dedupe_key=f"cleanup_tree_cache:{day}")
        queued.append("cleanup_tree_cache")
    if sync:
        store.enqueue_job("sync_skills", {}, dedupe_key=f"sync_skills:{day}")
        queued.append("sync_skills")
    if retag:
        store.enqueue_job("retag_skills", {"cursor": None}, dedupe_key=f"retag_skills:{day}")
        queued.append("retag_skills")
    return queued


def main() -> int:
    args = parse_args()
    configure_logging(args.log_level)
    queued = enqueue_daily(
        SupabaseSkillStore(),
        sync=not args.cleanup_only,
        cleanup=not args.sync_only,
        retag=args.retag,
    )
    LOGGER.info("Queued %s", ", ".join(queued) or "nothing")
    print(json.dumps({"queued": queued}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
