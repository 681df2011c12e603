"""GitHub REST and raw-content helpers shared by discovery and repo detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final, Literal

import httpx

from skillstack.core.config import USER_AGENT, get_settings

LOGGER = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_RAW_BASE = "https://raw.githubusercontent.com"
FALLBACK_BRANCH = "main"
BRANCH_CANDIDATES = ("main", "master")

NOT_MODIFIED: Final = "not_modified"
NotModified = Literal["not_modified"]


class GitHubError(Exception):
    """Raised for GitHub responses the caller cannot use."""


class NotFoundError(GitHubError):
    """404: the branch, tree or repository does not exist."""


class TooLargeError(GitHubError):
    """409: the recursive tree is too large to list."""


class RateLimitedError(GitHubError):
    """403/429: the API quota is exhausted or the request was refused."""


@dataclass(slots=True)
class TreeResult:
    entries: list[dict[str, Any]]
    truncated: bool
    branch: str
    etag: str | None = None

    def blob_paths(self) -> list[str]:
        return [
            str(entry["path"])
            for entry in self.entries
            if entry.get("type") == "blob" and entry.get("path")
        ]


@dataclass(slots=True)
class RateLimitInfo:
    status_code: int
    remaining: str | None = None
    reset: str | None = None
    retry_after: str | None = None


def github_headers(token: str | None = None) -> dict[str, str]:
    """Auth and version headers for GitHub REST API calls."""
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
        "X-GitHub-Api-Version": "2022-11-28",
    }
    value = token if token is not None else get_settings().github_token
    if value:
        headers["Authorization"] = f"Bearer {value}"
    return headers


def split_source(source: str) -> tuple[str, str]:
    """Split an "owner/repo" source identifier."""
    owner, _, repo = (source or "").strip().strip("/").partition("/")
    if not owner or not repo or "/" in repo:
        raise ValueError(f"Invalid source, expected owner/repo: {source!r}")
    return owner, repo


def raw_url(owner: str, repo: str, branch: str, path: str) -> str:
    return f"{GITHUB_RAW_BASE}/{owner}/{repo}/{branch}/{path.lstrip('/')}"


def branch_candidates(default_branch: str, *extra: str) -> list[str]:
    """Default branch first, then `extra`, then main/master, without duplicates."""
    branches: list[str] = []
    for branch in (default_branch, *extra, *BRANCH_CANDIDATES):
        if branch and branch not in branches:
            branches.append(branch)
    return branches


def rate_limit_info(response: httpx.Response) -> RateLimitInfo:
    return RateLimitInfo(
        status_code=response.status_code,
        remaining=response.headers.get("x-ratelimit-remaining"),
        reset=response.headers.get("x-ratelimit-reset"),
        retry_after=response.headers.get("retry-after"),
    )


async def resolve_default_branch(
    client: httpx.AsyncClient,
    owner: str,
    repo: str,
    token: str | None = None,
) -> str:
    """Return the repository's default branch, or "main" on any failure."""
    try:
        response = await client.get(
            f"{GITHUB_API_BASE}/repos/{owner}/{repo}", headers=github_headers(token)
        )
    except httpx.HTTPError as exc:
        LOGGER.warning("Default branch lookup failed for %s/%s: %s", owner, repo, exc)
        return FALLBACK_BRANCH
    if response.status_code != 200:
        LOGGER.debug(
            "Default branch lookup for %s/%s returned %s", owner, repo, response.status_code
        )
        return FALLBACK_BRANCH
    try:
        branch = response.json().get("default_branch")
    except ValueError:
        return FALLBACK_BRANCH
    if not isinstance(branch, str) or not branch:
        return FALLBACK_BRANCH
    return branch


async def get_tree(
    client: httpx.AsyncClient,
    owner: str,
    repo: str,
    branch: str,
    etag: str | None = None,
    token: str | None = None,
) -> TreeResult | NotModified:
    """List the recursive tree of one branch.

    Raises `NotFoundError`, `TooLargeError`, `RateLimitedError` or
    `GitHubError` for the corresponding responses.
    """
    headers = github_headers(token)
    if etag:
        headers["If-None-Match"] = etag
    response = await client.get(
        f"{GITHUB_API_BASE}/repos/{owner}/{repo}/git/trees/{branch}",
        params={"recursive": "1"},
        headers=headers,
    )
    status = response.status_code
    if status == 304:
        return NOT_MODIFIED
    if status == 200:
        try:
            payload = response.json()
        except ValueError as exc:
            raise GitHubError(f"Invalid tree JSON for {owner}/{repo}@{branch}") from exc
        tree = payload.get("tree") if isinstance(payload, dict) else None
        if not isinstance(tree, list):
            raise GitHubError(f"Invalid tree payload for {owner}/{repo}@{branch}")
        return TreeResult(
            entries=[entry for entry in tree if isinstance(entry, dict)],
            truncated=bool(payload.get("truncated")),
            branch=branch,
            etag=response.headers.get("etag"),
        )
    if status == 404:
        raise NotFoundError(f"Tree not found for {owner}/{repo}@{branch}")
    if status == 409:
        raise TooLargeError(f"Tree too large for {owner}/{repo}@{branch}")
    if status in {403, 429}:
        info = rate_limit_info(response)
        raise RateLimitedError(
            f"GitHub rate limit hit for {owner}/{repo}: status={info.status_code}, "
            f"remaining={info.remaining}, retry-after={info.retry_after}, reset={info.reset}"
        )
    raise GitHubError(f"Tree API {status} for {owner}/{repo}@{branch}")


async def fetch_repo_tree(
    client: httpx.AsyncClient,
    owner: str,
    repo: str,
    branches: list[str],
    etag: str | None = None,
    token: str | None = None,
) -> TreeResult | NotModified | None:
    """Fetch the tree of the first branch that lists successfully.

    `etag` is only sent for the first branch since it is branch specific.
    Returns None when no tree can be obtained: every branch missing, the tree
    too large (409) or the API rate limited. 409 and rate limits stop the
    branch walk immediately.
    """
    for index, branch in enumerate(branches):
        try:
            return await get_tree(
                client,
                owner,
                repo,
                branch,
                etag=etag if index == 0 else None,
                token=token,
            )
        except NotFoundError:
            continue
        except TooLargeError:
            LOGGER.info("Tree API 409 (too large) for %s/%s/%s", owner, repo, branch)
            return None
        except RateLimitedError as exc:
            LOGGER.error("%s", exc)
            return None
        except GitHubError as exc:
            LOGGER.error("%s", exc)
            continue
        except httpx.HTTPError as exc:
            LOGGER.error("Tree API fetch error for %s/%s/%s: %s", owner, repo, branch, exc)
            continue
    return None


async def fetch_raw_text(client: httpx.AsyncClient, url: str) -> str | None:
    """GET a raw-content URL; None on any non-2xx or transport error."""
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        LOGGER.debug("Raw fetch failed for %s: %s", url, exc)
        return None
    if not response.is_success:
        return None
    return response.text


async def raw_exists(client: httpx.AsyncClient, url: str) -> bool:
    """HEAD a raw-content URL."""
    try:
        response = await client.head(url)
    except httpx.HTTPError as exc:
        LOGGER.debug("Raw HEAD failed for %s: %s", url, exc)
        return False
    return response.is_success


def build_http_client(timeout_seconds: float | None = None, **kwargs: Any) -> httpx.AsyncClient:
    """Async client for GitHub and skills.sh calls.

    Authorization is attached per request to API calls only, so raw-content
    requests stay unauthenticated.
    """
    timeout = timeout_seconds or get_settings().http_timeout_seconds
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        **kwargs,
    )
