"""Backfill chain: URL discovery, then content fetch, as delayed jobs."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from skillstack.core.db import SkillStore, sync_skill_technologies
from skillstack.core.tagger import tag_skill, tags_changed, technology_rows
from skillstack.fetchers.skill_content import needs_content_fetch

LOGGER = logging.getLogger(__name__)

REPOS_PER_BATCH = 25
DISCOVERY_PAGE_SIZE = 500
FETCH_PAGE_SIZE = 200
RETAG_PAGE_SIZE = 100

STAGGER_WITH_TOKEN_SECONDS = 0.5
STAGGER_WITHOUT_TOKEN_SECONDS = 30.0
FETCH_STAGGER_SECONDS = 0.5
CONTINUE_DELAY_SECONDS = 5.0
FETCH_HANDOFF_DELAY_SECONDS = 10.0
RETAG_CONTINUE_DELAY_SECONDS = 1.0
STORE_RETRY_BASE_SECONDS = 30.0
STORE_RETRY_MAX_SECONDS = 900.0


def stagger_seconds(has_token: bool) -> float:
    return STAGGER_WITH_TOKEN_SECONDS if has_token else STAGGER_WITHOUT_TOKEN_SECONDS


def store_retry_delay(attempt: int) -> float:
    """Backoff before re-running a step whose page query failed."""
    return min(STORE_RETRY_BASE_SECONDS * 2 ** max(attempt - 1, 0), STORE_RETRY_MAX_SECONDS)


def _requeue_on_store_error(
    store: SkillStore,
    job_type: str,
    payload: dict[str, Any],
    attempt: int,
    exc: Exception,
) -> dict[str, Any]:
    next_attempt = attempt + 1
    delay = store_retry_delay(next_attempt)
    LOGGER.error(
        "%s page query failed (attempt %s), retrying in %.0fs: %s", job_type, next_attempt, delay, exc
    )
    store.enqueue_job(job_type, {**payload, "attempt": next_attempt}, delay_seconds=delay)
    return {"error": str(exc), "retry_in": delay, "next": job_type}


def group_by_source(rows: list[dict[str, Any]]) -> list[tuple[str, list[dict[str, Any]]]]:
    """Group skill rows by source, keeping first-seen source order."""
    groups: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        source = row.get("source")
        if not source:
            continue
        groups.setdefault(source, []).append({"id": row["id"], "skill_id": row["skill_id"]})
    return list(groups.items())


def backfill_discover(
    store: SkillStore,
    cursor: str | None = None,
    scheduled: list[str] | None = None,
    has_token: bool = False,
    attempt: int = 0,
) -> dict[str, Any]:
    """Schedule discovery for one batch of sources, then enqueue the next step.

    `scheduled` holds the ids of skills already scheduled from this same
    cursor. Re-querying the page skips those rows but still picks up other
    skills of the same sources, e.g. rows that slid into the page after
    earlier ones were resolved.
    """
    already = list(scheduled or [])
    try:
        page = store.page_skills_missing_url(cursor, DISCOVERY_PAGE_SIZE)
    except Exception as exc:  # noqa: BLE001
        return _requeue_on_store_error(
            store, "backfill_discover", {"cursor": cursor, "scheduled": already}, attempt, exc
        )

    seen = set(already)
    pending = group_by_source([row for row in page.items if row["id"] not in seen])
    batch = pending[:REPOS_PER_BATCH]
    stagger = stagger_seconds(has_token)

    if batch:
        LOGGER.info("Scheduling tree API discovery for %s repos", len(batch))
    for index, (source, skills) in enumerate(batch):
        store.enqueue_job(
            "discover_source",
            {"source": source, "skills": skills},
            delay_seconds=index * stagger,
            dedupe_key=f"discover_source:{source}",
        )

    remaining = len(pending) - len(batch)
    delay = len(batch) * stagger
    if remaining > 0:
        newly = [skill["id"] for _, skills in batch for skill in skills]
        store.enqueue_job(
            "backfill_discover",
            {"cursor": cursor, "scheduled": already + newly},
            delay_seconds=delay + CONTINUE_DELAY_SECONDS,
        )
        next_step = "backfill_discover"
    elif not page.is_done:
        store.enqueue_job(
            "backfill_discover",
            {"cursor": page.next_cursor, "scheduled": []},
            delay_seconds=delay + CONTINUE_DELAY_SECONDS,
        )
        next_step = "backfill_discover"
    else:
        LOGGER.info("URL discovery complete, starting content fetch")
        store.enqueue_job(
            "backfill_fetch",
            {"cursor": None},
            delay_seconds=delay + FETCH_HANDOFF_DELAY_SECONDS,
            dedupe_key="backfill_fetch:start",
        )
        next_step = "backfill_fetch"

    return {"scheduled": len(batch), "remaining": remaining, "next": next_step}


def backfill_fetch(
    store: SkillStore,
    cursor: str | None = None,
    refresh_interval: timedelta = timedelta(days=7),
    attempt: int = 0,
) -> dict[str, Any]:
    try:
        page = store.page_skills_with_url(cursor, FETCH_PAGE_SIZE)
    except Exception as exc:  # noqa: BLE001
        return _requeue_on_store_error(store, "backfill_fetch", {"cursor": cursor}, attempt, exc)
    doc_ids = [
        row["id"]
        for row in page.items
        if needs_content_fetch(row, refresh_interval=refresh_interval)
    ]

    if doc_ids:
        LOGGER.info("Scheduling content fetch for %s skills", len(doc_ids))
    for index, doc_id in enumerate(doc_ids):
        store.enqueue_job(
            "fetch_content",
            {"doc_id": doc_id},
            delay_seconds=index * FETCH_STAGGER_SECONDS,
            dedupe_key=f"fetch_content:{doc_id}",
        )

    if not page.is_done:
        store.enqueue_job(
            "backfill_fetch",
            {"cursor": page.next_cursor},
            delay_seconds=len(doc_ids) * FETCH_STAGGER_SECONDS + CONTINUE_DELAY_SECONDS,
        )
    else:
        LOGGER.info("Content backfill complete")
    return {"scheduled": len(doc_ids), "done": page.is_done}


def retag_skill(store: SkillStore, skill: dict[str, Any]) -> bool:
    """Recompute one skill's tags; returns True when its tags or weights changed."""
    weights = tag_skill(
        skill.get("source", ""),
        skill.get("skill_id", ""),
        skill.get("name", ""),
        skill.get("description"),
        skill.get("content"),
    )
    technologies = sorted(weights)
    changed = tags_changed(skill.get("technologies"), technologies)
    if changed:
        store.update_skill(skill["id"], {"technologies": technologies})
    rows = technology_rows(weights, int(skill.get("installs") or 0))
    return sync_skill_technologies(store, skill["id"], rows) or changed


def retag_skills(store: SkillStore, cursor: str | None = None, attempt: int = 0) -> dict[str, Any]:
    """Re-tag one page of skills after a registry change, then chain."""
    try:
        page = store.page_skills(cursor, RETAG_PAGE_SIZE)
    except Exception as exc:  # noqa: BLE001
        return _requeue_on_store_error(store, "retag_skills", {"cursor": cursor}, attempt, exc)
    changed = sum(1 for skill in page.items if retag_skill(store, skill))
    if not page.is_done:
        store.enqueue_job(
            "retag_skills",
            {"cursor": page.next_cursor},
            delay_seconds=RETAG_CONTINUE_DELAY_SECONDS,
        )
    LOGGER.info("Retagged page: %s of %s skills changed", changed, len(page.items))
    return {"checked": len(page.items), "changed": changed, "done": page.is_done}
