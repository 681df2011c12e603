import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from skillstack.api.deps import get_store
from skillstack.core.db import SkillStore
from skillstack.core.tagger import resolve_alias

router = APIRouter(tags=["skills"])

DEFAULT_LIST_LIMIT = 50
DEFAULT_TECH_LIMIT = 20
MAX_LIMIT = 500


def _skill_summary(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row.get("id"),
        "source": row.get("source"),
        "skill_id": row.get("skill_id"),
        "name": row.get("name") or row.get("skill_id"),
        "installs": row.get("installs") or 0,
        "leaderboard": row.get("leaderboard"),
        "technologies": row.get("technologies") or [],
        "description": row.get("description"),
        "skill_md_url": row.get("skill_md_url") or None,
    }


def parse_limits(raw: str | None) -> dict[str, int]:
    """Parse "react:10,nextjs:5" into per-technology limits."""
    limits: dict[str, int] = {}
    for part in (raw or "").split(","):
        tech, sep, value = part.partition(":")
        if not sep:
            continue
        try:
            limits[tech.strip()] = max(1, min(int(value), MAX_LIMIT))
        except ValueError:
            continue
    return limits


def group_by_technology(
    store: SkillStore,
    technologies: list[str],
    limits: dict[str, int],
) -> list[dict[str, Any]]:
    """Top skills per technology, each skill shown in its first group only."""
    seen: set[str] = set()
    cache: dict[str, dict[str, Any]] = {}
    groups: list[dict[str, Any]] = []
    for tech in technologies:
        limit = limits.get(tech, DEFAULT_TECH_LIMIT)
        fetch_count = limit * 2 + 1
        entries = store.top_skill_technologies(tech, fetch_count)

        missing = [
            entry["skill_doc_id"]
            for entry in entries
            if entry["skill_doc_id"] not in cache and entry["skill_doc_id"] not in seen
        ]
        for row in store.get_skills_by_ids(missing):
            cache[row["id"]] = row

        skills: list[dict[str, Any]] = []
        has_more = False
        for entry in entries:
            doc_id = entry["skill_doc_id"]
            if doc_id in seen or doc_id not in cache:
                continue
            if len(skills) >= limit:
                has_more = True
                break
            seen.add(doc_id)
            skills.append(_skill_summary(cache[doc_id]))

        groups.append({"technology": tech, "skills": skills, "has_more": has_more})
    return groups


@router.get("/skills")
async def list_skills(
    leaderboard: str | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIMIT),
    store: SkillStore = Depends(get_store),
) -> list[dict[str, Any]]:
    rows = await asyncio.to_thread(store.list_skills, leaderboard, limit)
    return [_skill_summary(row) for row in rows]


@router.get("/skills/by-technology")
async def list_skills_by_technology(
    technologies: str = "",
    limits: str | None = None,
    store: SkillStore = Depends(get_store),
) -> dict[str, Any]:
    requested: list[str] = []
    for raw in technologies.split(","):
        tech = resolve_alias(raw) or raw.strip().lower()
        if tech and tech not in requested:
            requested.append(tech)
    if not requested:
        return {"groups": []}

    per_tech = {resolve_alias(key) or key: value for key, value in parse_limits(limits).items()}
    groups = await asyncio.to_thread(group_by_technology, store, requested, per_tech)
    return {"groups": groups}


async def _get_skill_or_404(store: SkillStore, owner: str, repo: str, skill_id: str) -> dict[str, Any]:
    row = await asyncio.to_thread(store.get_skill_by_key, f"{owner}/{repo}", skill_id)
    if not row:
        raise HTTPException(status_code=404, detail="Skill not found")
    return row


@router.get("/skills/{source_owner}/{source_repo}/{skill_id}")
async def get_skill(
    source_owner: str,
    source_repo: str,
    skill_id: str,
    store: SkillStore = Depends(get_store),
) -> dict[str, Any]:
    row = await _get_skill_or_404(store, source_owner, source_repo, skill_id)
    return {
        **_skill_summary(row),
        "last_synced": row.get("last_synced"),
        "content_fetched_at": row.get("content_fetched_at"),
        "content_updated_at": row.get("content_updated_at"),
    }


@router.get("/skills/{source_owner}/{source_repo}/{skill_id}/content")
async def get_skill_content(
    source_owner: str,
    source_repo: str,
    skill_id: str,
    store: SkillStore = Depends(get_store),
) -> dict[str, Any]:
    row = await _get_skill_or_404(store, source_owner, source_repo, skill_id)
    return {"source": row.get("source"), "skill_id": row.get("skill_id"), "content": row.get("content")}
