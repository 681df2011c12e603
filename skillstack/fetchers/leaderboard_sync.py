"""skills.sh leaderboard sync into local skill records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from skillstack.core.db import SkillStore, now_iso, sync_skill_technologies
from skillstack.core.tagger import tag_skill, tags_changed, technology_rows

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://skills.sh"
DEFAULT_LEADERBOARD = "all-time"
MIN_INSTALLS = 50
SYNC_BATCH_SIZE = 100
DISCOVERY_DELAY_SECONDS = 10.0


@dataclass(slots=True)
class LeaderboardEntry:
    source: str
    skill_id: str
    name: str
    installs: int


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return None
    return None


def normalize_page(items: Any, min_installs: int = MIN_INSTALLS) -> list[LeaderboardEntry]:
    """Keep the four fields the catalog stores; drop entries under the threshold."""
    entries: list[LeaderboardEntry] = []
    if not isinstance(items, list):
        return entries
    for item in items:
        if not isinstance(item, dict):
            continue
        installs = _as_int(item.get("installs"))
        source = item.get("source")
        skill_id = item.get("skillId")
        if installs is None or installs < min_installs:
            continue
        if not isinstance(source, str) or not isinstance(skill_id, str) or not source or not skill_id:
            continue
        name = item.get("name")
        entries.append(
            LeaderboardEntry(
                source=source,
                skill_id=skill_id,
                name=name if isinstance(name, str) and name else skill_id,
                installs=installs,
            )
        )
    return entries


def chunked(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), max(size, 1))]


def upsert_skills_batch(
    store: SkillStore,
    entries: list[LeaderboardEntry],
    leaderboard: str = DEFAULT_LEADERBOARD,
) -> dict[str, int]:
    """Merge leaderboard entries on (source, skill_id)."""
    stats = {"inserted": 0, "updated": 0}
    stamp = now_iso()
    for entry in entries:
        existing = store.get_skill_by_key(entry.source, entry.skill_id)
        weights = tag_skill(
            entry.source,
            entry.skill_id,
            entry.name,
            existing.get("description") if existing else None,
            existing.get("content") if existing else None,
        )
        technologies = sorted(weights)

        if existing:
            changed = tags_changed(existing.get("technologies"), technologies)
            fields: dict[str, Any] = {
                "installs": entry.installs,
                "leaderboard": leaderboard,
                "last_synced": stamp,
            }
            if changed:
                fields["technologies"] = technologies
            store.update_skill(existing["id"], fields)
            sync_skill_technologies(store, existing["id"], technology_rows(weights, entry.installs))
            stats["updated"] += 1
            continue

        row = store.insert_skill(
            {
                "source": entry.source,
                "skill_id": entry.skill_id,
                "name": entry.name,
                "installs": entry.installs,
                "leaderboard": leaderboard,
                "technologies": technologies,
                "last_synced": stamp,
            }
        )
        if row.get("id"):
            store.replace_skill_technologies(row["id"], technology_rows(weights, entry.installs))
        stats["inserted"] += 1
    return stats


class LeaderboardSync:
    """Walks the paged leaderboard API and upserts qualifying skills."""

    def __init__(
        self,
        store: SkillStore,
        client: httpx.AsyncClient,
        base_url: str = DEFAULT_BASE_URL,
        leaderboard: str = DEFAULT_LEADERBOARD,
        min_installs: int = MIN_INSTALLS,
        batch_size: int = SYNC_BATCH_SIZE,
    ) -> None:
        self.store = store
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.leaderboard = leaderboard
        self.min_installs = min_installs
        self.batch_size = batch_size

    def page_url(self, page: int) -> str:
        return f"{self.base_url}/api/skills/{self.leaderboard}/{page}"

    async def fetch_page(self, page: int) -> dict[str, Any] | None:
        url = self.page_url(page)
        try:
            response = await self.client.get(url)
        except httpx.TransportError as exc:
            LOGGER.error("Failed to fetch %s: %s", url, exc)
            return None
        if not response.is_success:
            LOGGER.error("Failed to fetch %s: %s", url, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            LOGGER.error("Invalid JSON from %s", url)
            return None
        return payload if isinstance(payload, dict) else None

    async def sync_all(self, schedule_discovery: bool = True) -> dict[str, int]:
        summary = {"pages": 0, "synced": 0, "inserted": 0, "updated": 0}
        page = 0
        has_more = True
        while has_more:
            payload = await self.fetch_page(page)
            if payload is None:
                break
            entries = normalize_page(payload.get("skills"), self.min_installs)
            if not entries:
                LOGGER.info("Stopping sync: installs dropped below %s", self.min_installs)
                break

            for batch in chunked(entries, self.batch_size):
                stats = upsert_skills_batch(self.store, batch, self.leaderboard)
                summary["inserted"] += stats["inserted"]
                summary["updated"] += stats["updated"]

            summary["pages"] += 1
            summary["synced"] += len(entries)
            has_more = bool(payload.get("hasMore"))
            page += 1

        LOGGER.info("Synced %s skills (min %s installs)", summary["synced"], self.min_installs)
        if schedule_discovery:
            self.store.enqueue_job(
                "backfill_discover",
                {"cursor": None, "scheduled": []},
                delay_seconds=DISCOVERY_DELAY_SECONDS,
                dedupe_key="backfill_discover:start",
            )
        return summary
