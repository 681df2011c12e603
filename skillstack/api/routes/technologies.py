from typing import Any

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from skillstack.api.deps import get_http_client, get_store
from skillstack.core.config import get_settings
from skillstack.core.db import SkillStore
from skillstack.core.technologies import TECHNOLOGY_CATEGORIES, technologies_for_display
from skillstack.fetchers.repo_detector import RepoTechnologyDetector

router = APIRouter(tags=["technologies"])


class DetectRequest(BaseModel):
    repo_url: str = Field(min_length=1)


class DetectResponse(BaseModel):
    error: str | None = None
    technologies: list[str] = Field(default_factory=list)
    repo_name: str = ""


@router.get("/technologies")
async def list_technologies() -> dict[str, Any]:
    return {"categories": list(TECHNOLOGY_CATEGORIES), "technologies": technologies_for_display()}


@router.post("/technologies/detect", response_model=DetectResponse)
async def detect_technologies(
    payload: DetectRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
    store: SkillStore = Depends(get_store),
) -> DetectResponse:
    detector = RepoTechnologyDetector(client, store=store, token=get_settings().github_token or None)
    result = await detector.detect_technologies(payload.repo_url)
    return DetectResponse(error=result.error, technologies=result.technologies, repo_name=result.repo_name)
