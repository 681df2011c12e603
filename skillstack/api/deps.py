from __future__ import annotations

from collections.abc import AsyncIterator

import httpx

from skillstack.core.db import SkillStore, SupabaseSkillStore
from skillstack.fetchers.github import build_http_client


def get_store() -> SkillStore:
    return SupabaseSkillStore()


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with build_http_client() as client:
        yield client
