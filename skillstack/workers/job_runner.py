"""Background job runner for the sync and backfill pipeline."""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import httpx

from skillstack.core.config import Settings, get_settings
from skillstack.core.db import SkillStore, SupabaseSkillStore
from skillstack.core.logging_setup import LOG_LEVELS, configure_logging
from skillstack.fetchers.github import build_http_client
from skillstack.fetchers.leaderboard_sync import LeaderboardSync
from skillstack.fetchers.repo_detector import cleanup_tree_cache
from skillstack.fetchers.skill_content import ContentFetcher
from skillstack.fetchers.skill_md_discovery import SkillMdDiscoverer
from skillstack.workers.backfill import backfill_discover, backfill_fetch, retag_skills

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class JobContext:
    """What a job handler needs: the store, one HTTP client and settings."""

    def __init__(self, store: SkillStore, client: httpx.AsyncClient, settings: Settings) -> None:
        self.store = store
        self.client = client
        self.settings = settings

    @property
    def refresh_interval(self) -> timedelta:
        return timedelta(days=self.settings.content_refresh_days)


Handler = Callable[[JobContext, dict[str, Any]], Awaitable[Any]]


async def _sync_skills(ctx: JobContext, payload: dict[str, Any]) -> Any:
    return await LeaderboardSync(ctx.store, ctx.client).sync_all()


async def _backfill_discover(ctx: JobContext, payload: dict[str, Any]) -> Any:
    return backfill_discover(
        ctx.store,
        cursor=payload.get("cursor"),
        scheduled=payload.get("scheduled") or [],
        has_token=ctx.settings.has_github_token,
        attempt=int(payload.get("attempt") or 0),
    )


async def _discover_source(ctx: JobContext, payload: dict[str, Any]) -> Any:
    source = payload.get("source")
    if not isinstance(source, str) or not source:
        raise ValueError("discover_source job is missing source")
    # Every still unresolved skill of the source, including rows scheduled
    # from a later discovery page while this job was queued.
    skills = ctx.store.skills_missing_url_for_source(source)
    if not skills:
        return {"source": source, "skipped": True}
    discoverer = SkillMdDiscoverer(ctx.store, ctx.client, token=ctx.settings.github_token or None)
    result = await discoverer.discover_for_source(source, skills)
    return {"source": source, "matched": len(result.matched), "not_found": len(result.not_found)}


async def _backfill_fetch(ctx: JobContext, payload: dict[str, Any]) -> Any:
    return backfill_fetch(
        ctx.store,
        cursor=payload.get("cursor"),
        refresh_interval=ctx.refresh_interval,
        attempt=int(payload.get("attempt") or 0),
    )


async def _fetch_content(ctx: JobContext, payload: dict[str, Any]) -> Any:
    doc_id = payload.get("doc_id")
    if not isinstance(doc_id, str) or not doc_id:
        raise ValueError("fetch_content job is missing doc_id")
    fetcher = ContentFetcher(ctx.store, ctx.client, refresh_interval=ctx.refresh_interval)
    return await fetcher.fetch_content(doc_id)


async def _retag_skills(ctx: JobContext, payload: dict[str, Any]) -> Any:
    return retag_skills(
        ctx.store, cursor=payload.get("cursor"), attempt=int(payload.get("attempt") or 0)
    )


async def _cleanup_tree_cache(ctx: JobContext, payload: dict[str, Any]) -> Any:
    return cleanup_tree_cache(ctx.store)


JOB_HANDLERS: dict[str, Handler] = {
    "sync_skills": _sync_skills,
    "backfill_discover": _backfill_discover,
    "discover_source": _discover_source,
    "backfill_fetch": _backfill_fetch,
    "fetch_content": _fetch_content,
    "retag_skills": _retag_skills,
    "cleanup_tree_cache": _cleanup_tree_cache,
}


async def run_once(ctx: JobContext) -> bool:
    """Process one due job. Returns true when a job was claimed."""
    job = ctx.store.claim_next_job()
    if not job:
        return False
    job_id = str(job["id"])
    job_type = job.get("job_type")
    payload = job.get("payload") if isinstance(job.get("payload"), dict) else {}

    handler = JOB_HANDLERS.get(job_type or "")
    if handler is None:
        LOGGER.error("Unknown job type %r for job %s", job_type, job_id)
        ctx.store.finish_job(job_id, "failed", error=f"Unknown job type: {job_type}")
        return True

    try:
        result = await handler(ctx, payload)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Job %s (%s) failed", job_id, job_type)
        ctx.store.finish_job(job_id, "failed", error=str(exc)[:1000])
        return True

    LOGGER.info("Job %s (%s) succeeded: %s", job_id, job_type, result)
    ctx.store.finish_job(job_id, "succeeded")
    return True


async def drain(ctx: JobContext) -> int:
    processed = 0
    while await run_once(ctx):
        processed += 1
    return processed


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = SupabaseSkillStore()
    async with build_http_client(settings.http_timeout_seconds) as client:
        ctx = JobContext(store, client, settings)
        if args.once:
            processed = await run_once(ctx)
            print("processed=1" if processed else "processed=0")
            return 0
        if not args.loop:
            processed = await drain(ctx)
            print(f"processed={processed}")
            return 0
        while True:
            if not await run_once(ctx):
                await asyncio.sleep(max(args.poll_interval, 0.1))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SkillStack job runner")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Process one due job and exit")
    mode.add_argument(
        "--loop",
        action="store_true",
        help="Keep polling for due jobs (delayed continuations need this)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL_SECONDS,
        help="Seconds to wait when no job is due (with --loop)",
    )
    parser.add_argument(
        "--log-level",
        default=get_settings().log_level,
        choices=LOG_LEVELS,
        help="Logging level.",
    )
    return parser.parse_args(argv)


def main() -> int:
    args = parse_args()
    configure_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
