"""SKILL.md frontmatter parsing and the content fetch step."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import yaml

from skillstack.core.db import SkillStore, now_iso, parse_ts, sync_skill_technologies
from skillstack.core.tagger import tag_skill, tags_changed, technology_rows

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 1.0
DEFAULT_REFRESH_INTERVAL = timedelta(days=7)
# What a block-scalar description looks like after a naive one-line parse.
BROKEN_DESCRIPTIONS = frozenset({"|", ">", ""})

FRONTMATTER_RE = re.compile(r"^---[ \t]*\r?\n(.*?)\r?\n---", re.DOTALL)
BODY_RE = re.compile(r"^---[ \t]*\r?\n.*?\r?\n---[ \t]*(?:\r?\n)?(.*)", re.DOTALL)
# Line-based readers for frontmatter that is not valid YAML, e.g. an unquoted
# `description: Use when: ...`.
DESCRIPTION_LINE_RE = re.compile(
    r"""^description:[ \t]*["']?([^\s|>].*?)["']?[ \t]*$""", re.MULTILINE
)
DESCRIPTION_BLOCK_RE = re.compile(
    r"^description:[ \t]*[|>][-+]?[ \t]*\r?\n((?:[ \t]+.*(?:\r?\n|$)|[ \t]*\r?\n)*)",
    re.MULTILINE,
)
NAME_RE = re.compile(r"""^name:[ \t]*["']?(.+?)["']?[ \t]*$""", re.MULTILINE)


class FrontmatterError(ValueError):
    """Frontmatter block present but not parseable as YAML."""


def extract_frontmatter(text: str) -> str | None:
    """Return the YAML block between the leading `---` markers, if any."""
    match = FRONTMATTER_RE.match(text or "")
    return match.group(1) if match else None


def load_frontmatter(text: str) -> dict[str, Any] | None:
    """Parse the frontmatter mapping. None when the file has no frontmatter.

    Raises FrontmatterError when the block is not valid YAML.
    """
    frontmatter = extract_frontmatter(text)
    if frontmatter is None:
        return None
    try:
        data = yaml.safe_load(frontmatter)
    except yaml.YAMLError as exc:
        raise FrontmatterError(str(exc)) from exc
    return data if isinstance(data, dict) else {}


def frontmatter_text(value: Any) -> str | None:
    """Scalar frontmatter value as a single line, block scalars folded."""
    if value is None or isinstance(value, (dict, list)):
        return None
    return " ".join(str(value).split()) or None


def _description_from_lines(frontmatter: str) -> str | None:
    single = DESCRIPTION_LINE_RE.search(frontmatter)
    if single:
        return single.group(1).strip()

    block = DESCRIPTION_BLOCK_RE.search(frontmatter)
    if block:
        joined = " ".join(line.strip() for line in block.group(1).splitlines() if line.strip())
        if joined:
            return joined
    return None


def extract_frontmatter_description(text: str) -> str | None:
    try:
        data = load_frontmatter(text)
    except FrontmatterError as exc:
        LOGGER.debug("Frontmatter is not valid YAML, reading lines: %s", exc)
        return _description_from_lines(extract_frontmatter(text) or "")
    if data is None:
        return None
    return frontmatter_text(data.get("description"))


def extract_frontmatter_name(text: str) -> str | None:
    try:
        data = load_frontmatter(text)
    except FrontmatterError:
        match = NAME_RE.search(extract_frontmatter(text) or "")
        if not match:
            return None
        return match.group(1).strip() or None
    if data is None:
        return None
    return frontmatter_text(data.get("name"))


def extract_body_content(text: str) -> str | None:
    """Markdown after the frontmatter, or the whole text when there is none."""
    match = BODY_RE.match(text or "")
    body = match.group(1) if match else (text or "")
    body = body.strip()
    return body or None


def has_broken_description(skill: dict[str, Any]) -> bool:
    description = skill.get("description")
    return description is not None and description.strip() in BROKEN_DESCRIPTIONS


def needs_content_fetch(
    skill: dict[str, Any],
    now: datetime | None = None,
    refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
) -> bool:
    """Whether the fetch step should (re)download this skill's SKILL.md."""
    if not skill.get("skill_md_url"):
        return False
    if not skill.get("content") or has_broken_description(skill):
        return True
    fetched_at = parse_ts(skill.get("content_fetched_at"))
    if fetched_at is None:
        return True
    current = now or datetime.now(timezone.utc)
    return current - fetched_at > refresh_interval


@dataclass(slots=True)
class ParsedContent:
    description: str | None
    content: str | None


def parse_skill_md(text: str) -> ParsedContent:
    return ParsedContent(
        description=extract_frontmatter_description(text),
        content=extract_body_content(text),
    )


class ContentFetcher:
    """Downloads a skill's resolved SKILL.md and stores description/content."""

    def __init__(
        self,
        store: SkillStore,
        client: httpx.AsyncClient,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay_seconds: float = RETRY_DELAY_SECONDS,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self.store = store
        self.client = client
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = max(0.0, retry_delay_seconds)
        self.refresh_interval = refresh_interval

    async def fetch_content(self, doc_id: str) -> str:
        """Fetch one skill. Returns an outcome label for logs and job results."""
        skill = self.store.get_skill(doc_id)
        if not skill or not skill.get("skill_md_url"):
            return "skipped"
        if not needs_content_fetch(skill, refresh_interval=self.refresh_interval):
            return "skipped"

        url = skill["skill_md_url"]
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.client.get(url)
            except httpx.TransportError as exc:
                if attempt < self.max_attempts:
                    LOGGER.warning(
                        "Retry %s/%s for %s: %s",
                        attempt,
                        self.max_attempts,
                        skill.get("skill_id"),
                        exc,
                    )
                    await asyncio.sleep(self.retry_delay_seconds * attempt)
                    continue
                LOGGER.error(
                    "Error fetching content for %s after %s attempts: %s",
                    skill.get("skill_id"),
                    self.max_attempts,
                    exc,
                )
                return "failed"

            if not response.is_success:
                LOGGER.error(
                    "Failed to fetch content for %s: %s", skill.get("skill_id"), response.status_code
                )
                # The URL is stable, so a non-2xx is final for this run.
                self.store.update_skill(doc_id, {"content_fetched_at": now_iso()})
                return "http_error"

            self.apply_content(skill, parse_skill_md(response.text))
            return "fetched"
        return "failed"

    def apply_content(self, skill: dict[str, Any], parsed: ParsedContent) -> None:
        """Persist parsed description/content and keep tags in step with it."""
        doc_id = skill["id"]
        stamp = now_iso()
        description = parsed.description
        if description is None and has_broken_description(skill):
            description = ""

        if description is None and parsed.content is None:
            self.store.update_skill(doc_id, {"content_fetched_at": stamp})
            return

        new_description = description if description is not None else skill.get("description")
        new_content = parsed.content if parsed.content is not None else skill.get("content")
        changed = (description is not None and description != skill.get("description")) or (
            parsed.content is not None and parsed.content != skill.get("content")
        )

        weights = tag_skill(
            skill.get("source", ""),
            skill.get("skill_id", ""),
            skill.get("name", ""),
            new_description,
            new_content,
        )
        technologies = sorted(weights)
        retag = tags_changed(skill.get("technologies"), technologies)

        fields: dict[str, Any] = {"content_fetched_at": stamp}
        if description is not None:
            fields["description"] = description
        if parsed.content is not None:
            fields["content"] = parsed.content
        if changed:
            fields["content_updated_at"] = stamp
        if retag:
            fields["technologies"] = technologies

        self.store.update_skill(doc_id, fields)
        sync_skill_technologies(
            self.store, doc_id, technology_rows(weights, int(skill.get("installs") or 0))
        )
