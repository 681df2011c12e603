from __future__ import annotations

import asyncio
from typing import Any

import httpx

from conftest import InMemoryStore, make_client
from skillstack.core.db import SkillPage
from skillstack.core.config import Settings
from skillstack.workers.job_runner import JOB_HANDLERS, JobContext, drain, run_once

SETTINGS = Settings(
    github_token="",
    supabase_url="",
    supabase_key="",
    http_timeout_seconds=5.0,
    content_refresh_days=7,
    log_level="INFO",
)

SKILL_MD = "---\nname: pdf\ndescription: Work with PDF files\n---\n# PDF\n"


def drain_with(store: InMemoryStore, routes: dict[str, Any]) -> int:
    async def run() -> int:
        async with make_client(routes) as client:
            return await drain(JobContext(store, client, SETTINGS))

    return asyncio.run(run())


def test_every_pipeline_job_type_has_a_handler() -> None:
    assert set(JOB_HANDLERS) == {
        "sync_skills",
        "backfill_discover",
        "discover_source",
        "backfill_fetch",
        "fetch_content",
        "retag_skills",
        "cleanup_tree_cache",
    }


def test_run_once_returns_false_when_queue_is_empty(store: InMemoryStore) -> None:
    async def run() -> bool:
        async with make_client({}) as client:
            return await run_once(JobContext(store, client, SETTINGS))

    assert asyncio.run(run()) is False


def test_failed_and_unknown_jobs_are_recorded(store: InMemoryStore) -> None:
    store.enqueue_job("mystery", {})
    store.enqueue_job("fetch_content", {})

    assert drain_with(store, {}) == 2
    mystery, fetch = store.jobs
    assert mystery["status"] == "failed"
    assert "Unknown job type" in mystery["last_error"]
    assert fetch["status"] == "failed"
    assert "doc_id" in fetch["last_error"]


def test_full_pipeline_from_sync_to_content(store: InMemoryStore) -> None:
    routes = {
        "https://skills.sh/api/skills/all-time/0": httpx.Response(
            200,
            json={
                "skills": [{"source": "acme/skills", "skillId": "pdf", "name": "pdf", "installs": 900}],
                "hasMore": False,
            },
        ),
        "https://api.github.com/repos/acme/skills": httpx.Response(200, json={"default_branch": "main"}),
        "https://api.github.com/repos/acme/skills/git/trees/main": httpx.Response(
            200, json={"tree": [{"path": "skills/pdf/SKILL.md", "type": "blob"}], "truncated": False}
        ),
        "https://raw.githubusercontent.com/acme/skills/main/skills/pdf/SKILL.md": httpx.Response(
            200, text=SKILL_MD
        ),
    }
    store.enqueue_job("sync_skills", {})

    processed = drain_with(store, routes)

    assert processed == 5
    assert [job["job_type"] for job in store.jobs] == [
        "sync_skills",
        "backfill_discover",
        "discover_source",
        "backfill_fetch",
        "fetch_content",
    ]
    assert all(job["status"] == "succeeded" for job in store.jobs)
    row = next(iter(store.skills.values()))
    assert row["skill_md_url"].endswith("/main/skills/pdf/SKILL.md")
    assert row["description"] == "Work with PDF files"
    assert row["content"] == "# PDF"


def test_discover_source_skips_already_resolved_skills(store: InMemoryStore) -> None:
    skill = store.add_skill(source="acme/skills", skill_id="pdf", skill_md_url="")
    store.enqueue_job(
        "discover_source",
        {"source": "acme/skills", "skills": [{"id": skill["id"], "skill_id": "pdf"}]},
    )
    calls: list[httpx.Request] = []

    async def run() -> bool:
        async with make_client({}, calls) as client:
            return await run_once(JobContext(store, client, SETTINGS))

    assert asyncio.run(run()) is True
    assert calls == []
    assert store.jobs[0]["status"] == "succeeded"


def test_discover_source_reads_every_unresolved_skill_of_the_source(store: InMemoryStore) -> None:
    first = store.add_skill(source="acme/skills", skill_id="pdf")
    store.add_skill(source="other/repo", skill_id="x")
    later = store.add_skill(source="acme/skills", skill_id="docx")
    store.enqueue_job(
        "discover_source",
        {"source": "acme/skills", "skills": [{"id": first["id"], "skill_id": "pdf"}]},
    )
    routes = {
        "https://api.github.com/repos/acme/skills": httpx.Response(200, json={"default_branch": "main"}),
        "https://api.github.com/repos/acme/skills/git/trees/main": httpx.Response(
            200,
            json={
                "tree": [
                    {"path": "skills/pdf/SKILL.md", "type": "blob"},
                    {"path": "skills/docx/SKILL.md", "type": "blob"},
                ],
                "truncated": False,
            },
        ),
    }

    assert drain_with(store, routes) == 1
    assert store.skills[first["id"]]["skill_md_url"].endswith("/skills/pdf/SKILL.md")
    assert store.skills[later["id"]]["skill_md_url"].endswith("/skills/docx/SKILL.md")


class FailingPageStore(InMemoryStore):
    def page_skills_missing_url(self, cursor: str | None, limit: int) -> SkillPage:
        raise RuntimeError("supabase 503")


def test_store_failure_keeps_discovery_chain_alive() -> None:
    store = FailingPageStore()
    store.enqueue_job("backfill_discover", {"cursor": None, "scheduled": []})

    async def run() -> bool:
        async with make_client({}) as client:
            return await run_once(JobContext(store, client, SETTINGS))

    assert asyncio.run(run()) is True
    original, retry = store.jobs
    assert original["status"] == "succeeded"
    assert retry["job_type"] == "backfill_discover"
    assert retry["status"] == "queued"
    assert retry["payload"] == {"cursor": None, "scheduled": [], "attempt": 1}
