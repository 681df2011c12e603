"""Detect the technologies a GitHub repository uses from its manifests."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from skillstack.core.db import SkillStore, parse_ts
from skillstack.core.tagger import map_dependencies
from skillstack.core.technologies import CONFIG_FILE_MAP
from skillstack.fetchers.github import (
    NOT_MODIFIED,
    branch_candidates,
    fetch_raw_text,
    fetch_repo_tree,
    raw_exists,
    raw_url,
    resolve_default_branch,
)

LOGGER = logging.getLogger(__name__)

GITHUB_URL_RE = re.compile(r"(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/]+)", re.I)
REQUIREMENT_NAME_RE = re.compile(r"[=<>!~\[;@\s]")
PYPROJECT_DEPS_RE = re.compile(r"dependencies\s*=\s*\[(.*?)\]", re.DOTALL)
QUOTED_NAME_RE = re.compile(r"""["']([A-Za-z0-9_.\-]+)""")

ROOT_BRANCHES = ("main", "master")
MANIFEST_FILES = ("requirements.txt", "pyproject.toml", "Cargo.toml", "go.mod", "Dockerfile")
MAX_PACKAGE_JSONS = 15
TREE_CACHE_TTL = timedelta(hours=1)
TREE_CACHE_MAX_AGE = timedelta(hours=24)
TREE_CACHE_CLEANUP_LIMIT = 100

EXCLUDED_SEGMENTS = (
    "node_modules",
    "test/fixtures",
    "__fixtures__",
    "__tests__",
    ".next",
    "dist",
    "build",
    "examples",
    ".cache",
    "coverage",
)

NO_DEPENDENCY_FILES = "Could not find any dependency files in this repository"


@dataclass(slots=True)
class DetectionResult:
    error: str | None
    technologies: list[str] = field(default_factory=list)
    repo_name: str = ""


def parse_github_url(url: str) -> tuple[str, str] | None:
    """Return (owner, repo) for a github.com URL, with or without scheme."""
    cleaned = (url or "").strip().rstrip("/")
    cleaned = cleaned.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]
    match = GITHUB_URL_RE.search(cleaned)
    if not match:
        return None
    return match.group(1), match.group(2)


def is_relevant_package_json(path: str) -> bool:
    if path.split("/")[-1] != "package.json":
        return False
    lower = path.lower()
    return not any(segment in lower for segment in EXCLUDED_SEGMENTS)


def prioritize_and_cap(paths: list[str], max_count: int = MAX_PACKAGE_JSONS) -> list[str]:
    """Root package.json first, then shallower before deeper, ties alphabetical."""
    ordered = sorted(
        set(paths),
        key=lambda path: (path != "package.json", path.count("/"), path),
    )
    return ordered[: max(max_count, 0)]


def package_json_dependencies(package: dict[str, Any]) -> dict[str, Any]:
    deps: dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        section = package.get(key)
        if isinstance(section, dict):
            deps.update(section)
    return deps


def parse_requirements_txt(text: str) -> set[str]:
    names = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "-")):
            continue
        name = REQUIREMENT_NAME_RE.split(stripped, 1)[0].lower()
        if name:
            names.append(name)
    return map_dependencies(names)


def parse_pyproject_toml(text: str) -> set[str]:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError:
        match = PYPROJECT_DEPS_RE.search(text)
        if not match:
            return set()
        return map_dependencies(name.lower() for name in QUOTED_NAME_RE.findall(match.group(1)))

    names: list[str] = []
    project = data.get("project") or {}
    for spec in project.get("dependencies") or []:
        if isinstance(spec, str):
            names.append(REQUIREMENT_NAME_RE.split(spec.strip(), 1)[0].lower())
    poetry = ((data.get("tool") or {}).get("poetry") or {}).get("dependencies") or {}
    names.extend(str(name).lower() for name in poetry if name != "python")
    return map_dependencies(name for name in names if name)


def parse_cargo_toml(text: str) -> set[str]:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError:
        return set()
    crates: list[str] = []
    for section in ("dependencies", "dev-dependencies"):
        table = data.get(section)
        if isinstance(table, dict):
            crates.extend(table)
    return map_dependencies(crates)


def _go_module_tech(module_path: str) -> set[str]:
    # Major-version and subpackage suffixes: try shorter prefixes too.
    parts = module_path.split("/")
    for end in range(len(parts), 0, -1):
        found = map_dependencies(["/".join(parts[:end])])
        if found:
            return found
    return set()


def parse_go_mod(text: str) -> set[str]:
    modules: list[str] = []
    in_block = False
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("//"):
            continue
        if in_block:
            if stripped == ")":
                in_block = False
                continue
            modules.append(stripped.split()[0])
        elif stripped.startswith("require ("):
            in_block = True
        elif stripped.startswith("require "):
            parts = stripped.split()
            if len(parts) >= 2:
                modules.append(parts[1])

    techs: set[str] = set()
    for module in modules:
        techs |= _go_module_tech(module)
    return techs


MANIFEST_PARSERS = {
    "requirements.txt": parse_requirements_txt,
    "pyproject.toml": parse_pyproject_toml,
    "Cargo.toml": parse_cargo_toml,
    "go.mod": parse_go_mod,
}


def technologies_from_files(files: dict[str, str]) -> set[str]:
    """Presence of a known file implies its technology; manifests add their deps."""
    techs: set[str] = set()
    for filename, text in files.items():
        base = CONFIG_FILE_MAP.get(filename)
        if base:
            techs.add(base)
        parser = MANIFEST_PARSERS.get(filename)
        if parser:
            techs |= parser(text)
    return techs


def cache_is_expired(entry: dict[str, Any], now: datetime | None = None) -> bool:
    cached_at = parse_ts(entry.get("cached_at"))
    if cached_at is None:
        return True
    return (now or datetime.now(timezone.utc)) - cached_at > TREE_CACHE_TTL


@dataclass(slots=True)
class RootFiles:
    branch: str
    package_json: dict[str, Any] | None = None
    files: dict[str, str] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.package_json is not None or bool(self.files)


class RepoTechnologyDetector:
    """Reads root manifests, then workspace package.json files for monorepos."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: SkillStore | None = None,
        token: str | None = None,
        max_package_jsons: int = MAX_PACKAGE_JSONS,
    ) -> None:
        self.client = client
        self.store = store
        self.token = token
        self.max_package_jsons = max_package_jsons

    async def fetch_package_json(self, owner: str, repo: str, branch: str, path: str) -> dict[str, Any] | None:
        text = await fetch_raw_text(self.client, raw_url(owner, repo, branch, path))
        if text is None:
            return None
        try:
            payload = json.loads(text)
        except ValueError:
            LOGGER.debug("Unparseable %s in %s/%s", path, owner, repo)
            return None
        return payload if isinstance(payload, dict) else None

    async def fetch_root_files(self, owner: str, repo: str, branch: str) -> RootFiles:
        config_only = [name for name in CONFIG_FILE_MAP if name not in MANIFEST_FILES]
        package_json, *results = await asyncio.gather(
            self.fetch_package_json(owner, repo, branch, "package.json"),
            *(fetch_raw_text(self.client, raw_url(owner, repo, branch, name)) for name in MANIFEST_FILES),
            *(raw_exists(self.client, raw_url(owner, repo, branch, name)) for name in config_only),
        )
        root = RootFiles(branch=branch, package_json=package_json)
        manifest_results = results[: len(MANIFEST_FILES)]
        config_results = results[len(MANIFEST_FILES) :]
        for name, text in zip(MANIFEST_FILES, manifest_results):
            if text:
                root.files[name] = text
        for name, present in zip(config_only, config_results):
            if present:
                root.files[name] = ""
        return root

    async def has_workspaces(self, owner: str, repo: str, root: RootFiles) -> bool:
        if root.package_json is not None and root.package_json.get("workspaces") is not None:
            return True
        return await raw_exists(
            self.client, raw_url(owner, repo, root.branch, "pnpm-workspace.yaml")
        )

    async def collect_packages(
        self, owner: str, repo: str, branch: str, paths: list[str]
    ) -> set[str]:
        capped = prioritize_and_cap(paths, self.max_package_jsons)
        packages = await asyncio.gather(
            *(self.fetch_package_json(owner, repo, branch, path) for path in capped)
        )
        techs: set[str] = set()
        for package in packages:
            if package:
                techs |= map_dependencies(package_json_dependencies(package))
        return techs

    async def workspace_technologies(self, owner: str, repo: str, root_branch: str) -> set[str]:
        repo_key = f"{owner}/{repo}"
        cache = self.store.get_tree_cache(repo_key) if self.store else None
        if cache and not cache_is_expired(cache):
            return await self.collect_packages(
                owner, repo, cache["branch"], list(cache.get("dependency_file_paths") or [])
            )

        default_branch = await resolve_default_branch(self.client, owner, repo, token=self.token)
        tree = await fetch_repo_tree(
            self.client,
            owner,
            repo,
            branch_candidates(default_branch, root_branch),
            etag=cache.get("etag") if cache else None,
            token=self.token,
        )
        if tree == NOT_MODIFIED:
            if cache is None:
                return set()
            if self.store:
                self.store.touch_tree_cache(repo_key)
            return await self.collect_packages(
                owner, repo, cache["branch"], list(cache.get("dependency_file_paths") or [])
            )
        if tree is None:
            LOGGER.warning("Tree unavailable for %s, skipping workspace packages", repo_key)
            return set()

        paths = [
            path
            for path in tree.blob_paths()
            if path != "package.json" and is_relevant_package_json(path)
        ]
        if self.store and tree.etag:
            self.store.set_tree_cache(repo_key, tree.branch, tree.etag, paths)
        return await self.collect_packages(owner, repo, tree.branch, paths)

    async def detect_technologies(self, repo_url: str) -> DetectionResult:
        parsed = parse_github_url(repo_url)
        if parsed is None:
            return DetectionResult(error="Invalid GitHub URL")
        owner, repo = parsed
        repo_name = f"{owner}/{repo}"

        root = RootFiles(branch=ROOT_BRANCHES[0])
        for branch in ROOT_BRANCHES:
            root = await self.fetch_root_files(owner, repo, branch)
            if root.found:
                break
        if not root.found:
            return DetectionResult(error=NO_DEPENDENCY_FILES, repo_name=repo_name)

        technologies = technologies_from_files(root.files)
        if root.package_json is not None:
            technologies |= map_dependencies(package_json_dependencies(root.package_json))
            if await self.has_workspaces(owner, repo, root):
                technologies |= await self.workspace_technologies(owner, repo, root.branch)

        return DetectionResult(error=None, technologies=sorted(technologies), repo_name=repo_name)


def cleanup_tree_cache(store: SkillStore, now: datetime | None = None) -> int:
    """Delete cache entries older than a day, a bounded number per run."""
    cutoff = (now or datetime.now(timezone.utc)) - TREE_CACHE_MAX_AGE
    deleted = store.delete_tree_cache_before(
        cutoff.replace(microsecond=0).isoformat(), TREE_CACHE_CLEANUP_LIMIT
    )
    LOGGER.info("Deleted %s expired tree cache entries", deleted)
    return deleted
