"""Supabase-backed store for skills, technology tags, tree cache and jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Protocol

from supabase import Client, create_client

from skillstack.core.config import get_settings

SKILL_COLUMNS = (
    "id,source,skill_id,name,installs,leaderboard,technologies,last_synced,"
    "skill_md_url,description,content,content_fetched_at,content_updated_at"
)

_client: Client | None = None
_client_lock = Lock()


def now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def get_supabase_client() -> Client:
    """Return a singleton Supabase client."""
    global _client
    if _client is not None:
        return _client

    with _client_lock:
        if _client is None:
            settings = get_settings()
            if not settings.supabase_url or not settings.supabase_key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")
            _client = create_client(settings.supabase_url, settings.supabase_key)
    return _client


@dataclass(slots=True)
class SkillPage:
    """One keyset page of skill rows ordered by `id`."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    is_done: bool = True


class SkillStore(Protocol):
    """Persistence and scheduling operations the pipeline depends on."""

    def get_skill(self, doc_id: str) -> dict[str, Any] | None: ...

    def get_skill_by_key(self, source: str, skill_id: str) -> dict[str, Any] | None: ...

    def get_skills_by_ids(self, doc_ids: list[str]) -> list[dict[str, Any]]: ...

    def insert_skill(self, record: dict[str, Any]) -> dict[str, Any]: ...

    def update_skill(self, doc_id: str, fields: dict[str, Any]) -> None: ...

    def get_skill_technologies(self, doc_id: str) -> list[dict[str, Any]]: ...

    def replace_skill_technologies(
        self, doc_id: str, rows: list[dict[str, Any]]
    ) -> None: ...

    def list_skills(self, leaderboard: str | None, limit: int) -> list[dict[str, Any]]: ...

    def top_skill_technologies(self, technology: str, limit: int) -> list[dict[str, Any]]: ...

    def page_skills(self, cursor: str | None, limit: int) -> SkillPage: ...

    def page_skills_missing_url(self, cursor: str | None, limit: int) -> SkillPage: ...

    def page_skills_with_url(self, cursor: str | None, limit: int) -> SkillPage: ...

    def skills_missing_url_for_source(self, source: str) -> list[dict[str, Any]]: ...

    def get_tree_cache(self, repo: str) -> dict[str, Any] | None: ...

    def set_tree_cache(
        self, repo: str, branch: str, etag: str, dependency_file_paths: list[str]
    ) -> None: ...

    def touch_tree_cache(self, repo: str) -> None: ...

    def delete_tree_cache_before(self, cutoff_iso: str, limit: int) -> int: ...

    def enqueue_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        delay_seconds: float = 0.0,
        dedupe_key: str | None = None,
    ) -> dict[str, Any]: ...

    def claim_next_job(self) -> dict[str, Any]: ...

    def finish_job(self, job_id: str, status: str, error: str | None = None) -> None: ...


class SupabaseSkillStore:
    """`SkillStore` over the Supabase tables described in `sql/schema.sql`."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    # -- skills ---------------------------------------------------------

    def get_skill(self, doc_id: str) -> dict[str, Any] | None:
        response = (
            self.client.table("skills")
            .select(SKILL_COLUMNS)
            .eq("id", doc_id)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    def get_skill_by_key(self, source: str, skill_id: str) -> dict[str, Any] | None:
        response = (
            self.client.table("skills")
            .select(SKILL_COLUMNS)
            .eq("source", source)
            .eq("skill_id", skill_id)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    def get_skills_by_ids(self, doc_ids: list[str]) -> list[dict[str, Any]]:
        if not doc_ids:
            return []
        response = (
            self.client.table("skills").select(SKILL_COLUMNS).in_("id", doc_ids).execute()
        )
        return response.data or []

    def insert_skill(self, record: dict[str, Any]) -> dict[str, Any]:
        response = self.client.table("skills").insert(record).execute()
        rows = response.data or []
        return rows[0] if rows else {}

    def update_skill(self, doc_id: str, fields: dict[str, Any]) -> None:
        if not fields:
            return
        self.client.table("skills").update(fields).eq("id", doc_id).execute()

    def get_skill_technologies(self, doc_id: str) -> list[dict[str, Any]]:
        response = (
            self.client.table("skill_technologies")
            .select("technology,installs,weight")
            .eq("skill_doc_id", doc_id)
            .execute()
        )
        return response.data or []

    def replace_skill_technologies(self, doc_id: str, rows: list[dict[str, Any]]) -> None:
        """Delete every junction row for the skill, then insert `rows`."""
        table = self.client.table("skill_technologies")
        table.delete().eq("skill_doc_id", doc_id).execute()
        if rows:
            payload = [{**row, "skill_doc_id": doc_id} for row in rows]
            table.insert(payload).execute()

    def list_skills(self, leaderboard: str | None, limit: int) -> list[dict[str, Any]]:
        query = self.client.table("skills").select(SKILL_COLUMNS)
        if leaderboard:
            query = query.eq("leaderboard", leaderboard)
        response = query.order("installs", desc=True).limit(max(limit, 1)).execute()
        return response.data or []

    def top_skill_technologies(self, technology: str, limit: int) -> list[dict[str, Any]]:
        response = (
            self.client.table("skill_technologies")
            .select("skill_doc_id,technology,installs,weight")
            .eq("technology", technology)
            .order("installs", desc=True)
            .limit(max(limit, 1))
            .execute()
        )
        return response.data or []

    def _page(self, query: Any, cursor: str | None, limit: int) -> SkillPage:
        if cursor:
            query = query.gt("id", cursor)
        response = query.order("id").limit(max(limit, 1)).execute()
        rows = response.data or []
        next_cursor = rows[-1]["id"] if rows else cursor
        return SkillPage(items=rows, next_cursor=next_cursor, is_done=len(rows) < limit)

    def page_skills(self, cursor: str | None, limit: int) -> SkillPage:
        query = self.client.table("skills").select(SKILL_COLUMNS)
        return self._page(query, cursor, limit)

    def page_skills_missing_url(self, cursor: str | None, limit: int) -> SkillPage:
        query = (
            self.client.table("skills")
            .select("id,source,skill_id,skill_md_url")
            .is_("skill_md_url", "null")
        )
        return self._page(query, cursor, limit)

    def page_skills_with_url(self, cursor: str | None, limit: int) -> SkillPage:
        query = (
            self.client.table("skills")
            .select("id,skill_id,skill_md_url,description,content,content_fetched_at")
            .not_.is_("skill_md_url", "null")
            .neq("skill_md_url", "")
        )
        return self._page(query, cursor, limit)

    def skills_missing_url_for_source(self, source: str) -> list[dict[str, Any]]:
        response = (
            self.client.table("skills")
            .select("id,source,skill_id,skill_md_url")
            .eq("source", source)
            .is_("skill_md_url", "null")
            .order("id")
            .execute()
        )
        return response.data or []

    # -- tree cache -----------------------------------------------------

    def get_tree_cache(self, repo: str) -> dict[str, Any] | None:
        response = (
            self.client.table("github_tree_cache")
            .select("repo,branch,etag,dependency_file_paths,cached_at")
            .eq("repo", repo)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    def set_tree_cache(
        self, repo: str, branch: str, etag: str, dependency_file_paths: list[str]
    ) -> None:
        self.client.table("github_tree_cache").upsert(
            {
                "repo": repo,
                "branch": branch,
                "etag": etag,
                "dependency_file_paths": dependency_file_paths,
                "cached_at": now_iso(),
            },
            on_conflict="repo",
        ).execute()

    def touch_tree_cache(self, repo: str) -> None:
        (
            self.client.table("github_tree_cache")
            .update({"cached_at": now_iso()})
            .eq("repo", repo)
            .execute()
        )

    def delete_tree_cache_before(self, cutoff_iso: str, limit: int) -> int:
        expired = (
            self.client.table("github_tree_cache")
            .select("repo")
            .lt("cached_at", cutoff_iso)
            .limit(max(limit, 1))
            .execute()
        )
        repos = [row["repo"] for row in expired.data or [] if row.get("repo")]
        if repos:
            self.client.table("github_tree_cache").delete().in_("repo", repos).execute()
        return len(repos)

    # -- jobs -----------------------------------------------------------

    def enqueue_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        delay_seconds: float = 0.0,
        dedupe_key: str | None = None,
    ) -> dict[str, Any]:
        """Insert one job to run after `delay_seconds`.

        When `dedupe_key` is given and a queued or running job of the same
        type carries that key, the existing job is returned instead.
        """
        table = self.client.table("jobs")
        if dedupe_key:
            existing = (
                table.select("id,job_type,status,payload,run_after")
                .eq("job_type", job_type)
                .eq("dedupe_key", dedupe_key)
                .in_("status", ["queued", "running"])
                .limit(1)
                .execute()
            )
            rows = existing.data or []
            if rows:
                return rows[0]

        now = datetime.now(timezone.utc)
        run_after = now + timedelta(seconds=max(delay_seconds, 0.0))
        response = table.insert(
            {
                "job_type": job_type,
                "status": "queued",
                "payload": payload or {},
                "dedupe_key": dedupe_key,
                "run_after": run_after.isoformat(),
                "updated_at": now.replace(microsecond=0).isoformat(),
            }
        ).execute()
        rows = response.data or []
        return rows[0] if rows else {}

    def claim_next_job(self) -> dict[str, Any]:
        """Claim the next due queued job and mark it running."""
        stamp = datetime.now(timezone.utc).isoformat()
        queued = (
            self.client.table("jobs")
            .select("id,job_type,status,payload,run_after")
            .eq("status", "queued")
            .lte("run_after", stamp)
            .order("run_after", desc=False)
            .limit(1)
            .execute()
        )
        rows = queued.data or []
        if not rows:
            return {}
        job = rows[0]
        claimed = (
            self.client.table("jobs")
            .update({"status": "running", "started_at": now_iso(), "updated_at": now_iso()})
            .eq("id", job["id"])
            .eq("status", "queued")
            .execute()
        )
        # Another worker won the race when no row was updated.
        if not (claimed.data or []):
            return {}
        return {**job, "status": "running"}

    def finish_job(self, job_id: str, status: str, error: str | None = None) -> None:
        """Mark job succeeded or failed."""
        stamp = now_iso()
        payload: dict[str, Any] = {"status": status, "finished_at": stamp, "updated_at": stamp}
        if error:
            payload["last_error"] = error
        self.client.table("jobs").update(payload).eq("id", job_id).execute()


def _junction_key(row: dict[str, Any]) -> tuple[str, int, float]:
    return (
        str(row.get("technology")),
        int(row.get("installs") or 0),
        round(float(row.get("weight") or 0.0), 2),
    )


def junction_rows_changed(stored: list[dict[str, Any]], rows: list[dict[str, Any]]) -> bool:
    return sorted(map(_junction_key, stored)) != sorted(map(_junction_key, rows))


def sync_skill_technologies(store: SkillStore, doc_id: str, rows: list[dict[str, Any]]) -> bool:
    """Rewrite a skill's junction rows unless technology, installs and weight all match."""
    if not junction_rows_changed(store.get_skill_technologies(doc_id), rows):
        return False
    store.replace_skill_technologies(doc_id, rows)
    return True
