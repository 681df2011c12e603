from __future__ import annotations

import copy
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from skillstack.core.db import SkillPage, now_iso


class InMemoryStore:
    """Dict-backed stand-in for `SupabaseSkillStore` used across tests."""

    def __init__(self) -> None:
        self.skills: dict[str, dict[str, Any]] = {}
        self.junction: dict[str, list[dict[str, Any]]] = {}
        self.tree_cache: dict[str, dict[str, Any]] = {}
        self.jobs: list[dict[str, Any]] = []
        self.junction_writes: list[str] = []
        self._next_id = 1

    # -- helpers for tests ----------------------------------------------

    def add_skill(self, **fields: Any) -> dict[str, Any]:
        defaults: dict[str, Any] = {
            "name": fields.get("skill_id", ""),
            "installs": 100,
            "leaderboard": "all-time",
            "technologies": [],
            "last_synced": None,
            "skill_md_url": None,
            "description": None,
            "content": None,
            "content_fetched_at": None,
            "content_updated_at": None,
        }
        return self.insert_skill({**defaults, **fields})

    def jobs_of(self, job_type: str) -> list[dict[str, Any]]:
        return [job for job in self.jobs if job["job_type"] == job_type]

    # -- skills ---------------------------------------------------------

    def get_skill(self, doc_id: str) -> dict[str, Any] | None:
        row = self.skills.get(doc_id)
        return copy.deepcopy(row) if row else None

    def get_skill_by_key(self, source: str, skill_id: str) -> dict[str, Any] | None:
        for row in self.skills.values():
            if row["source"] == source and row["skill_id"] == skill_id:
                return copy.deepcopy(row)
        return None

    def get_skills_by_ids(self, doc_ids: list[str]) -> list[dict[str, Any]]:
        return [copy.deepcopy(self.skills[doc_id]) for doc_id in doc_ids if doc_id in self.skills]

    def insert_skill(self, record: dict[str, Any]) -> dict[str, Any]:
        doc_id = record.get("id") or f"s{self._next_id:05d}"
        self._next_id += 1
        row = {
            "skill_md_url": None,
            "description": None,
            "content": None,
            "content_fetched_at": None,
            "content_updated_at": None,
            **record,
            "id": doc_id,
        }
        self.skills[doc_id] = row
        return copy.deepcopy(row)

    def update_skill(self, doc_id: str, fields: dict[str, Any]) -> None:
        if doc_id in self.skills:
            self.skills[doc_id].update(copy.deepcopy(fields))

    def get_skill_technologies(self, doc_id: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.junction.get(doc_id, []))

    def replace_skill_technologies(self, doc_id: str, rows: list[dict[str, Any]]) -> None:
        self.junction_writes.append(doc_id)
        self.junction[doc_id] = [{**row, "skill_doc_id": doc_id} for row in rows]

    def list_skills(self, leaderboard: str | None, limit: int) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.skills.values()
            if not leaderboard or row.get("leaderboard") == leaderboard
        ]
        rows.sort(key=lambda row: row.get("installs") or 0, reverse=True)
        return copy.deepcopy(rows[:limit])

    def top_skill_technologies(self, technology: str, limit: int) -> list[dict[str, Any]]:
        rows = [
            row
            for entries in self.junction.values()
            for row in entries
            if row["technology"] == technology
        ]
        rows.sort(key=lambda row: row["installs"], reverse=True)
        return copy.deepcopy(rows[:limit])

    def _page(self, predicate: Callable[[dict[str, Any]], bool], cursor: str | None, limit: int) -> SkillPage:
        rows = sorted(
            (row for row in self.skills.values() if predicate(row) and (cursor is None or row["id"] > cursor)),
            key=lambda row: row["id"],
        )[:limit]
        return SkillPage(
            items=copy.deepcopy(rows),
            next_cursor=rows[-1]["id"] if rows else cursor,
            is_done=len(rows) < limit,
        )

    def page_skills(self, cursor: str | None, limit: int) -> SkillPage:
        return self._page(lambda row: True, cursor, limit)

    def page_skills_missing_url(self, cursor: str | None, limit: int) -> SkillPage:
        return self._page(lambda row: row.get("skill_md_url") is None, cursor, limit)

    def page_skills_with_url(self, cursor: str | None, limit: int) -> SkillPage:
        return self._page(lambda row: bool(row.get("skill_md_url")), cursor, limit)

    def skills_missing_url_for_source(self, source: str) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.skills.values()
            if row["source"] == source and row.get("skill_md_url") is None
        ]
        return copy.deepcopy(sorted(rows, key=lambda row: row["id"]))

    # -- tree cache -----------------------------------------------------

    def get_tree_cache(self, repo: str) -> dict[str, Any] | None:
        entry = self.tree_cache.get(repo)
        return copy.deepcopy(entry) if entry else None

    def set_tree_cache(self, repo: str, branch: str, etag: str, dependency_file_paths: list[str]) -> None:
        self.tree_cache[repo] = {
            "repo": repo,
            "branch": branch,
            "etag": etag,
            "dependency_file_paths": list(dependency_file_paths),
            "cached_at": now_iso(),
        }

    def touch_tree_cache(self, repo: str) -> None:
        if repo in self.tree_cache:
            self.tree_cache[repo]["cached_at"] = now_iso()

    def delete_tree_cache_before(self, cutoff_iso: str, limit: int) -> int:
        cutoff = datetime.fromisoformat(cutoff_iso)
        expired = [
            repo
            for repo, entry in self.tree_cache.items()
            if datetime.fromisoformat(entry["cached_at"]) < cutoff
        ][:limit]
        for repo in expired:
            del self.tree_cache[repo]
        return len(expired)

    # -- jobs -----------------------------------------------------------

    def enqueue_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        delay_seconds: float = 0.0,
        dedupe_key: str | None = None,
    ) -> dict[str, Any]:
        if dedupe_key:
            for job in self.jobs:
                if (
                    job["job_type"] == job_type
                    and job["dedupe_key"] == dedupe_key
                    and job["status"] in {"queued", "running"}
                ):
                    return job
        job = {
            "id": f"j{len(self.jobs) + 1:05d}",
            "job_type": job_type,
            "status": "queued",
            "payload": copy.deepcopy(payload or {}),
            "dedupe_key": dedupe_key,
            "delay_seconds": delay_seconds,
            "run_after": datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
            "last_error": None,
        }
        self.jobs.append(job)
        return job

    def claim_next_job(self) -> dict[str, Any]:
        """Ignores `run_after` so tests can drain delayed chains immediately."""
        queued = [job for job in self.jobs if job["status"] == "queued"]
        if not queued:
            return {}
        job = min(queued, key=lambda item: item["run_after"])
        job["status"] = "running"
        return copy.deepcopy(job)

    def finish_job(self, job_id: str, status: str, error: str | None = None) -> None:
        for job in self.jobs:
            if job["id"] == job_id:
                job["status"] = status
                job["last_error"] = error


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


Route = Callable[[httpx.Request], httpx.Response]


def make_client(routes: dict[str, Any], calls: list[httpx.Request] | None = None) -> httpx.AsyncClient:
    """AsyncClient whose responses come from `routes`.

    Keys are "METHOD url-without-query" or just "url" (any method). Values are
    an `httpx.Response`, a callable taking the request, or an exception
    instance to raise. Anything unrouted is a 404.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        url = str(request.url.copy_with(query=None))
        route = routes.get(f"{request.method} {url}", routes.get(url))
        if route is None:
            return httpx.Response(404)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
