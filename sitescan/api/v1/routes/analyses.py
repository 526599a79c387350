"""
Analysis API Routes

No business logic lives here.
Routes validate input, call the registry, return responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from sitescan.core.config import get_settings
from sitescan.core.exceptions import AnalysisNotFound, InvalidStartURLError, TooManyActiveRuns
from sitescan.engines.base import AnalysisResult, CrawlOptions, ProgressSnapshot, RunState
from sitescan.services.registry import AnalysisRegistry, AnalysisRun, get_registry

logger = structlog.get_logger(__name__)
router = APIRouter()

Registry = Annotated[AnalysisRegistry, Depends(get_registry)]


# ─────────────────────────────────────────────
# Request / Response Schemas
# ─────────────────────────────────────────────

def _default(name: str):
    return lambda: getattr(get_settings(), name)


class CreateAnalysisRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    max_pages: int = Field(default_factory=_default("CRAWLER_DEFAULT_MAX_PAGES"), ge=0, le=50_000)
    max_depth: int = Field(default_factory=_default("CRAWLER_DEFAULT_MAX_DEPTH"), ge=0, le=100)
    crawl_delay_ms: int = Field(default_factory=_default("CRAWLER_DEFAULT_DELAY_MS"), ge=0, le=60_000)
    follow_external_links: bool = False
    include_images: bool = False
    respect_robots: bool = True

    def to_options(self) -> CrawlOptions:
        return CrawlOptions(
            max_pages=self.max_pages,
            max_depth=self.max_depth,
            crawl_delay_ms=self.crawl_delay_ms,
            follow_external_links=self.follow_external_links,
            include_images=self.include_images,
            respect_robots=self.respect_robots,
        )


class AnalysisResponse(BaseModel):
    id: str
    url: str
    state: RunState
    message: str = ""


class AnalysisStatusResponse(BaseModel):
    id: str
    url: str
    state: RunState
    created_at: datetime
    error: str | None = None
    progress: ProgressSnapshot | None = None


class ControlResponse(BaseModel):
    id: str
    state: RunState
    is_paused: bool


def _get_run(registry: AnalysisRegistry, analysis_id: str) -> AnalysisRun:
    try:
        return registry.get(analysis_id)
    except AnalysisNotFound:
        raise HTTPException(status_code=404, detail="Analysis not found")


def _status(run: AnalysisRun) -> AnalysisStatusResponse:
    return AnalysisStatusResponse(
        id=run.id,
        url=run.url,
        state=run.state,
        created_at=run.created_at,
        error=run.error,
        progress=run.progress,
    )


# ─────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────

@router.post(
    "",
    response_model=AnalysisResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a new site analysis",
    description="Starts crawling and scoring the given site in the background. Returns immediately with the analysis ID.",
)
async def create_analysis(request: CreateAnalysisRequest, registry: Registry) -> AnalysisResponse:
    try:
        run = registry.start(request.url, request.to_options())
    except InvalidStartURLError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except TooManyActiveRuns as e:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e))

    return AnalysisResponse(
        id=run.id,
        url=run.url,
        state=run.state,
        message="Analysis started. Poll /api/v1/analyses/{id} for progress.",
    )


@router.get("", response_model=list[AnalysisStatusResponse], summary="List analyses in this process")
async def list_analyses(registry: Registry) -> list[AnalysisStatusResponse]:
    return [_status(run) for run in registry.runs()]


@router.get("/{analysis_id}", response_model=AnalysisStatusResponse, summary="Get analysis state and progress")
async def get_analysis(analysis_id: str, registry: Registry) -> AnalysisStatusResponse:
    return _status(_get_run(registry, analysis_id))


@router.get("/{analysis_id}/result", response_model=AnalysisResult, summary="Get the analysis report")
async def get_analysis_result(analysis_id: str, registry: Registry) -> AnalysisResult:
    run = _get_run(registry, analysis_id)

    if run.error is not None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Analysis failed: {run.error}")
    if run.result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Analysis is not finished yet (state: {run.state.value})",
        )
    return run.result


def _control(run: AnalysisRun, action: str) -> ControlResponse:
    took_effect = getattr(run.analyzer, action)()
    if not took_effect:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {action} analysis in state '{run.state.value}'",
        )
    logger.info("Analysis control", analysis_id=run.id, action=action)
    progress = run.progress
    return ControlResponse(
        id=run.id,
        state=run.state,
        is_paused=progress.is_paused if progress else False,
    )


@router.post("/{analysis_id}/pause", response_model=ControlResponse, summary="Pause a running analysis")
async def pause_analysis(analysis_id: str, registry: Registry) -> ControlResponse:
    return _control(_get_run(registry, analysis_id), "pause")


@router.post("/{analysis_id}/resume", response_model=ControlResponse, summary="Resume a paused analysis")
async def resume_analysis(analysis_id: str, registry: Registry) -> ControlResponse:
    return _control(_get_run(registry, analysis_id), "resume")


@router.post("/{analysis_id}/stop", response_model=ControlResponse, summary="Stop a running analysis")
async def stop_analysis(analysis_id: str, registry: Registry) -> ControlResponse:
    return _control(_get_run(registry, analysis_id), "stop")
