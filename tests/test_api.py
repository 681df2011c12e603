from __future__ import annotations

import json
from collections.abc import AsyncIterator

import httpx
from fastapi.testclient import TestClient

from conftest import InMemoryStore, make_client
from skillstack.api.deps import get_http_client, get_store
from skillstack.api.main import app
from skillstack.core.tagger import technology_rows


def make_api(store: InMemoryStore, routes: dict | None = None) -> TestClient:
    async def http_client() -> AsyncIterator[httpx.AsyncClient]:
        async with make_client(routes or {}) as client:
            yield client

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_http_client] = http_client
    return TestClient(app)


def seed(store: InMemoryStore, source: str, skill_id: str, installs: int, techs: list[str]) -> dict:
    row = store.add_skill(source=source, skill_id=skill_id, installs=installs, technologies=techs)
    store.replace_skill_technologies(row["id"], technology_rows({tech: 0.9 for tech in techs}, installs))
    return row


def test_health(store: InMemoryStore) -> None:
    assert make_api(store).get("/health").json() == {"status": "ok"}


def test_list_skills_orders_by_installs(store: InMemoryStore) -> None:
    seed(store, "a/a", "low", 60, [])
    seed(store, "a/a", "high", 900, [])
    response = make_api(store).get("/skills", params={"limit": 1})

    assert response.status_code == 200
    assert [item["skill_id"] for item in response.json()] == ["high"]


def test_by_technology_dedupes_across_groups(store: InMemoryStore) -> None:
    seed(store, "a/a", "both", 1000, ["react", "nextjs"])
    seed(store, "a/a", "react-only", 500, ["react"])
    seed(store, "a/a", "next-only", 400, ["nextjs"])
    seed(store, "a/a", "react-low", 100, ["react"])

    response = make_api(store).get(
        "/skills/by-technology", params={"technologies": "React,Next.js", "limits": "react:2"}
    )

    groups = response.json()["groups"]
    assert [group["technology"] for group in groups] == ["react", "nextjs"]
    assert [skill["skill_id"] for skill in groups[0]["skills"]] == ["both", "react-only"]
    assert groups[0]["has_more"] is True
    assert [skill["skill_id"] for skill in groups[1]["skills"]] == ["next-only"]
    assert groups[1]["has_more"] is False


def test_by_technology_has_more_when_overfetch_is_full(store: InMemoryStore) -> None:
    for index in range(5):
        seed(store, "a/a", f"s{index}", 100 + index, ["redis"])

    groups = make_api(store).get(
        "/skills/by-technology", params={"technologies": "redis", "limits": "redis:2"}
    ).json()["groups"]

    assert len(groups[0]["skills"]) == 2
    assert groups[0]["has_more"] is True


def test_by_technology_has_more_ignores_skills_shown_earlier(store: InMemoryStore) -> None:
    seed(store, "a/a", "both", 1000, ["react", "nextjs"])
    seed(store, "a/a", "react-only", 500, ["react"])
    seed(store, "a/a", "shared-low", 100, ["react", "nextjs"])

    groups = make_api(store).get(
        "/skills/by-technology", params={"technologies": "nextjs,react", "limits": "react:1"}
    ).json()["groups"]

    assert [skill["skill_id"] for skill in groups[0]["skills"]] == ["both", "shared-low"]
    assert [skill["skill_id"] for skill in groups[1]["skills"]] == ["react-only"]
    assert groups[1]["has_more"] is False


def test_get_skill_and_content(store: InMemoryStore) -> None:
    row = seed(store, "acme/skills", "pdf", 70, [])
    store.update_skill(row["id"], {"content": "# PDF"})
    api = make_api(store)

    detail = api.get("/skills/acme/skills/pdf")
    assert detail.status_code == 200
    assert detail.json()["source"] == "acme/skills"
    assert api.get("/skills/acme/skills/pdf/content").json()["content"] == "# PDF"
    assert api.get("/skills/acme/skills/missing").status_code == 404


def test_technologies_listing(store: InMemoryStore) -> None:
    body = make_api(store).get("/technologies").json()
    ids = {item["id"] for item in body["technologies"]}
    assert {"react", "nextjs", "postgres"} <= ids
    assert "Frontend" in body["categories"]


def test_detect_endpoint(store: InMemoryStore) -> None:
    routes = {
        "https://raw.githubusercontent.com/acme/app/main/package.json": httpx.Response(
            200, text=json.dumps({"dependencies": {"react": "18"}})
        )
    }
    api = make_api(store, routes)

    ok = api.post("/technologies/detect", json={"repo_url": "https://github.com/acme/app"})
    assert ok.status_code == 200
    assert "react" in ok.json()["technologies"]
    assert ok.json()["repo_name"] == "acme/app"

    bad = api.post("/technologies/detect", json={"repo_url": "not a url"})
    assert bad.json()["error"] == "Invalid GitHub URL"
