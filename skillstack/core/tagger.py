"""Keyword and dependency based technology tagging."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from skillstack.core.technologies import (
    ALIAS_MAP,
    CONTENT_PHRASES,
    PACKAGE_MAP,
    PREFIX_PATTERNS,
    REGISTRY,
    SOURCE_ORG_TECH,
    TechnologyDef,
)

KEYWORD_WEIGHT = 0.9
SOURCE_ORG_WEIGHT = 0.8
CONTENT_MIN_MATCHES = 2
CONTENT_BASE_WEIGHT = 0.3
CONTENT_MAX_WEIGHT = 0.7


def tag_by_keywords(
    source: str,
    skill_id: str,
    name: str,
    registry: Iterable[TechnologyDef] = REGISTRY,
) -> set[str]:
    """Return tech ids whose name keywords appear as substrings of the skill identity."""
    text = f"{source} {skill_id} {name}".lower()
    return {
        tech.id
        for tech in registry
        if any(keyword in text for keyword in tech.name_keywords)
    }


def content_weight(match_count: int) -> float:
    return min(CONTENT_BASE_WEIGHT + (match_count - 1) * 0.1, CONTENT_MAX_WEIGHT)


def tag_skill(
    source: str,
    skill_id: str,
    name: str,
    description: str | None = None,
    content: str | None = None,
) -> dict[str, float]:
    """Weighted tags for a skill.

    Keyword hits on the identity text win outright. Technologies without a
    keyword hit can still be tagged from the fetched description/content when
    at least two of their content phrases appear there. Single-technology
    publishers add their technology at a slightly lower weight.
    """
    weights: dict[str, float] = {}

    def set_max(tech_id: str, weight: float) -> None:
        weights[tech_id] = max(weights.get(tech_id, 0.0), weight)

    org = source.split("/", 1)[0].lower()
    org_tech = SOURCE_ORG_TECH.get(org)
    if org_tech:
        set_max(org_tech, SOURCE_ORG_WEIGHT)

    keyword_hits = tag_by_keywords(source, skill_id, name)
    for tech_id in keyword_hits:
        set_max(tech_id, KEYWORD_WEIGHT)

    content_text = f"{description or ''} {content or ''}".lower().strip()
    if content_text:
        for tech_id, phrases in CONTENT_PHRASES.items():
            if tech_id in keyword_hits:
                continue
            match_count = sum(1 for phrase in phrases if phrase in content_text)
            if match_count >= CONTENT_MIN_MATCHES:
                set_max(tech_id, content_weight(match_count))

    return weights


def map_dependencies(dependencies: Mapping[str, object] | Iterable[str]) -> set[str]:
    """Map dependency names from a package manifest to tech ids.

    Exact names win over prefix patterns; the first matching prefix is used.
    Unknown packages are ignored.
    """
    matched: set[str] = set()
    for package in dependencies:
        exact = PACKAGE_MAP.get(package)
        if exact:
            matched.add(exact)
            continue
        for prefix, tech_id in PREFIX_PATTERNS:
            if package.startswith(prefix):
                matched.add(tech_id)
                break
    return matched


def resolve_alias(value: str) -> str | None:
    """Resolve a free-form technology name ("Next.js", "postgresql") to its id."""
    return ALIAS_MAP.get((value or "").strip().lower())


def tags_changed(current: Iterable[str] | None, new: Iterable[str]) -> bool:
    return sorted(current or []) != sorted(new)


def technology_rows(weights: Mapping[str, float], installs: int) -> list[dict[str, object]]:
    """Junction rows for one skill, installs denormalized for ordering."""
    return [
        {"technology": tech_id, "installs": installs, "weight": round(weight, 2)}
        for tech_id, weight in sorted(weights.items())
    ]
