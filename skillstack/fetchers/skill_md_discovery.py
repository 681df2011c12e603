"""Locate each skill's content file inside its source repository."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from skillstack.core.db import SkillStore
from skillstack.fetchers.github import (
    NOT_MODIFIED,
    TreeResult,
    branch_candidates,
    fetch_raw_text,
    fetch_repo_tree,
    raw_exists,
    raw_url,
    resolve_default_branch,
    split_source,
)
from skillstack.fetchers.skill_content import extract_frontmatter_name

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTENT_FILENAME = "SKILL.md"
NOT_FOUND = ""

LOOSE_NAME_RE = re.compile(r"^name:[ \t]*(.+)$", re.MULTILINE)
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class ContentFileIndex:
    """Matching blob paths in tree order, plus parent directory -> path."""

    paths: list[str] = field(default_factory=list)
    by_dir: dict[str, str] = field(default_factory=dict)


def build_skill_md_index(paths: list[str], filename: str = DEFAULT_CONTENT_FILENAME) -> ContentFileIndex:
    target = filename.lower()
    index = ContentFileIndex()
    for path in paths:
        lower = path.lower()
        if lower != target and not lower.endswith(f"/{target}"):
            continue
        index.paths.append(path)
        parts = path.split("/")
        if len(parts) >= 2:
            index.by_dir[parts[-2]] = path
    return index


def kebab(value: str) -> str:
    return WHITESPACE_RE.sub("-", value.strip().lower())


def parse_skill_name(text: str) -> str | None:
    """`name:` from the frontmatter, else the first top-level `name:` line."""
    name = extract_frontmatter_name(text)
    if name:
        return name
    match = LOOSE_NAME_RE.search(text or "")
    if not match:
        return None
    return match.group(1).strip().strip("\"'").strip() or None


def match_frontmatter_name(name: str, remaining: dict[str, dict[str, Any]]) -> str | None:
    """Pick the remaining skill id a parsed name refers to.

    Exact id first, then the kebab-cased name, then the first remaining id
    the kebab name starts with (skills.sh truncates some names into ids).
    """
    if name in remaining:
        return name
    kebab_name = kebab(name)
    if kebab_name in remaining:
        return kebab_name
    for skill_id in remaining:
        if kebab_name.startswith(skill_id):
            return skill_id
    return None


@dataclass(slots=True)
class DiscoveryResult:
    source: str
    matched: dict[str, str] = field(default_factory=dict)
    not_found: list[str] = field(default_factory=list)
    used_fallback: bool = False
    truncated: bool = False


class SkillMdDiscoverer:
    """Resolves `skill_md_url` for the skills of one source repository."""

    def __init__(
        self,
        store: SkillStore,
        client: httpx.AsyncClient,
        filename: str = DEFAULT_CONTENT_FILENAME,
        token: str | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.filename = filename
        self.token = token

    def fallback_paths(self, skill_id: str) -> list[str]:
        return [
            f"skills/{skill_id}/{self.filename}",
            f".claude/skills/{skill_id}/{self.filename}",
            self.filename,
        ]

    async def discover_for_source(self, source: str, skills: list[dict[str, Any]]) -> DiscoveryResult:
        """Resolve every given skill to a raw URL or mark it not found.

        `skills` are rows with at least `id` and `skill_id`.
        """
        result = DiscoveryResult(source=source)
        if not skills:
            return result
        try:
            owner, repo = split_source(source)
        except ValueError:
            LOGGER.warning("Skipping discovery for malformed source %r", source)
            for skill in skills:
                self._assign(result, skill, NOT_FOUND)
            return result

        default_branch = await resolve_default_branch(self.client, owner, repo, token=self.token)
        tree = await fetch_repo_tree(
            self.client, owner, repo, branch_candidates(default_branch), token=self.token
        )
        # No etag is sent here, so a 304 cannot happen; treat it as a miss.
        if tree is None or tree == NOT_MODIFIED:
            LOGGER.info("Could not fetch tree for %s, trying direct path guessing", source)
            await self._guess_paths(result, owner, repo, default_branch, skills)
        else:
            await self._match_tree(result, owner, repo, tree, skills)

        LOGGER.info(
            "%s%s: %s matched, %s not found%s",
            source,
            " (fallback)" if result.used_fallback else "",
            len(result.matched),
            len(result.not_found),
            " (tree truncated)" if result.truncated else "",
        )
        return result

    async def _match_tree(
        self,
        result: DiscoveryResult,
        owner: str,
        repo: str,
        tree: TreeResult,
        skills: list[dict[str, Any]],
    ) -> None:
        result.truncated = tree.truncated
        index = build_skill_md_index(tree.blob_paths(), self.filename)
        matched_paths: set[str] = set()
        remaining: dict[str, dict[str, Any]] = {}

        for skill in skills:
            path = index.by_dir.get(skill["skill_id"])
            if path:
                self._assign(result, skill, raw_url(owner, repo, tree.branch, path))
                matched_paths.add(path)
            else:
                remaining[skill["skill_id"]] = skill

        for path in index.paths:
            if not remaining:
                break
            if path in matched_paths:
                continue
            url = raw_url(owner, repo, tree.branch, path)
            text = await fetch_raw_text(self.client, url)
            if text is None:
                continue
            name = parse_skill_name(text)
            if not name:
                continue
            skill_id = match_frontmatter_name(name, remaining)
            if skill_id is None:
                continue
            self._assign(result, remaining.pop(skill_id), url)

        for skill in remaining.values():
            self._assign(result, skill, NOT_FOUND)

    async def _guess_paths(
        self,
        result: DiscoveryResult,
        owner: str,
        repo: str,
        branch: str,
        skills: list[dict[str, Any]],
    ) -> None:
        result.used_fallback = True
        for skill in skills:
            found = NOT_FOUND
            for path in self.fallback_paths(skill["skill_id"]):
                url = raw_url(owner, repo, branch, path)
                if await raw_exists(self.client, url):
                    found = url
                    break
            self._assign(result, skill, found)

    def _assign(self, result: DiscoveryResult, skill: dict[str, Any], url: str) -> None:
        self.store.update_skill(skill["id"], {"skill_md_url": url})
        if url:
            result.matched[skill["skill_id"]] = url
        else:
            result.not_found.append(skill["skill_id"])
