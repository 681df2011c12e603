from __future__ import annotations

import asyncio
from typing import Any

import httpx

from conftest import InMemoryStore, make_client
from skillstack.fetchers.skill_md_discovery import (
    SkillMdDiscoverer,
    build_skill_md_index,
    match_frontmatter_name,
    parse_skill_name,
)

API = "https://api.github.com/repos/acme/skills"
RAW = "https://raw.githubusercontent.com/acme/skills/main"


def tree_response(paths: list[str], truncated: bool = False) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "tree": [{"path": path, "type": "blob"} for path in paths]
            + [{"path": "skills", "type": "tree"}],
            "truncated": truncated,
        },
        headers={"etag": '"abc"'},
    )


def repo_routes(tree: httpx.Response, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    routes: dict[str, Any] = {
        API: httpx.Response(200, json={"default_branch": "main"}),
        f"{API}/git/trees/main": tree,
    }
    routes.update(extra or {})
    return routes


def discover(store: InMemoryStore, routes: dict[str, Any], skills: list[dict[str, Any]], **kwargs: Any):
    calls: list[httpx.Request] = []

    async def run():
        async with make_client(routes, calls) as client:
            discoverer = SkillMdDiscoverer(store, client, token="", **kwargs)
            return await discoverer.discover_for_source("acme/skills", skills)

    return asyncio.run(run()), calls


def test_build_skill_md_index_is_case_insensitive() -> None:
    index = build_skill_md_index(
        ["SKILL.md", "skills/foo-bar/skill.md", "docs/README.md", "notes/SKILL.md.bak"]
    )
    assert index.paths == ["SKILL.md", "skills/foo-bar/skill.md"]
    assert index.by_dir == {"foo-bar": "skills/foo-bar/skill.md"}


def test_match_frontmatter_name_order() -> None:
    remaining = {"foo-widget": {}, "pdf": {}, "data": {}}
    assert match_frontmatter_name("pdf", remaining) == "pdf"
    assert match_frontmatter_name("Foo Widget", remaining) == "foo-widget"
    assert match_frontmatter_name("Data Analysis, Charts", remaining) == "data"
    assert match_frontmatter_name("unrelated", remaining) is None


def test_parse_skill_name_prefers_frontmatter() -> None:
    assert parse_skill_name("---\nname: 'Foo Widget'\n---\nbody") == "Foo Widget"
    assert parse_skill_name("# Title\nname: loose-name\n") == "loose-name"
    assert parse_skill_name("# Title only") is None


def test_pass_one_matches_parent_directory(store: InMemoryStore) -> None:
    skill = store.add_skill(source="acme/skills", skill_id="foo-bar")
    result, _ = discover(store, repo_routes(tree_response(["skills/foo-bar/SKILL.md"])), [skill])

    expected = f"{RAW}/skills/foo-bar/SKILL.md"
    assert result.matched == {"foo-bar": expected}
    assert store.skills[skill["id"]]["skill_md_url"] == expected


def test_pass_two_matches_frontmatter_name_with_custom_filename(store: InMemoryStore) -> None:
    skill = store.add_skill(source="acme/skills", skill_id="foo-widget")
    routes = repo_routes(
        tree_response(["content/widget/README.md", "README.md"]),
        {f"{RAW}/content/widget/README.md": httpx.Response(200, text="---\nname: Foo Widget\n---\nHi")},
    )
    result, _ = discover(store, routes, [skill], filename="README.md")

    assert result.matched == {"foo-widget": f"{RAW}/content/widget/README.md"}
    assert store.skills[skill["id"]]["skill_md_url"] == f"{RAW}/content/widget/README.md"


def test_unmatched_skills_are_marked_not_found(store: InMemoryStore) -> None:
    found = store.add_skill(source="acme/skills", skill_id="pdf")
    lost = store.add_skill(source="acme/skills", skill_id="ghost")
    routes = repo_routes(
        tree_response(["skills/pdf/SKILL.md", "other/SKILL.md"]),
        {f"{RAW}/other/SKILL.md": httpx.Response(200, text="---\nname: something-else\n---\n")},
    )
    result, _ = discover(store, routes, [found, lost])

    assert result.not_found == ["ghost"]
    assert store.skills[lost["id"]]["skill_md_url"] == ""
    assert store.skills[found["id"]]["skill_md_url"] == f"{RAW}/skills/pdf/SKILL.md"


def test_tree_409_goes_straight_to_fallback(store: InMemoryStore) -> None:
    skill = store.add_skill(source="acme/skills", skill_id="pdf")
    routes = repo_routes(
        httpx.Response(409),
        {f"HEAD {RAW}/.claude/skills/pdf/SKILL.md": httpx.Response(200)},
    )
    result, calls = discover(store, routes, [skill])

    tree_calls = [str(call.url) for call in calls if "/git/trees/" in str(call.url)]
    assert len(tree_calls) == 1
    assert result.used_fallback is True
    assert store.skills[skill["id"]]["skill_md_url"] == f"{RAW}/.claude/skills/pdf/SKILL.md"


def test_rate_limited_tree_falls_back_and_marks_missing(store: InMemoryStore) -> None:
    skill = store.add_skill(source="acme/skills", skill_id="pdf")
    routes = repo_routes(
        httpx.Response(403, headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"})
    )
    result, calls = discover(store, routes, [skill])

    assert result.used_fallback is True
    assert result.not_found == ["pdf"]
    assert store.skills[skill["id"]]["skill_md_url"] == ""
    assert sum(1 for call in calls if call.method == "HEAD") == 3


def test_missing_branch_tries_master(store: InMemoryStore) -> None:
    skill = store.add_skill(source="acme/skills", skill_id="pdf")
    routes = {
        API: httpx.Response(500),
        f"{API}/git/trees/master": tree_response(["skills/pdf/SKILL.md"]),
    }
    result, _ = discover(store, routes, [skill])

    master_url = "https://raw.githubusercontent.com/acme/skills/master/skills/pdf/SKILL.md"
    assert result.matched == {"pdf": master_url}


def test_discovery_is_idempotent(store: InMemoryStore) -> None:
    first = store.add_skill(source="acme/skills", skill_id="foo-bar")
    second = store.add_skill(source="acme/skills", skill_id="foo-widget")
    routes = repo_routes(
        tree_response(["skills/foo-bar/SKILL.md", "misc/widget/SKILL.md"]),
        {f"{RAW}/misc/widget/SKILL.md": httpx.Response(200, text="---\nname: Foo Widget\n---\n")},
    )
    once, _ = discover(store, routes, [first, second])
    snapshot = {doc_id: row["skill_md_url"] for doc_id, row in store.skills.items()}
    twice, _ = discover(store, routes, [first, second])

    assert once.matched == twice.matched
    assert {doc_id: row["skill_md_url"] for doc_id, row in store.skills.items()} == snapshot
