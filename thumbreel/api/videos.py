"""Video render API endpoints.

Requests are validated and quota-checked synchronously; the render itself
runs on the orchestrator's worker pool and reports through the user's
event channel.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, status
from fastapi.responses import FileResponse

from thumbreel.api.deps import Accounts, AppSettings, CurrentAccount, Encoder, Orchestrator
from thumbreel.exceptions import JobNotFoundError
from thumbreel.schemas.composition import parse_composition
from thumbreel.schemas.video import (
    AIVideoRequest,
    AnimatedThumbnailRequest,
    CapabilitiesResponse,
    MediaResponse,
    RenderJobResponse,
    VideoJobResponse,
    VideoStatusResponse,
)
from thumbreel.services.orchestrator import DOWNLOAD_URL_TEMPLATE, RenderJob
from thumbreel.services.presets import (
    AI_VIDEO_PREFIX,
    ANIMATED_THUMBNAIL_PREFIX,
    build_ai_video_template,
    build_animated_thumbnail,
)

router = APIRouter()
download_router = APIRouter()
logger = logging.getLogger(__name__)


def _owned_job(orchestrator: Orchestrator, job_id: str, user_id: str) -> RenderJob:
    job = orchestrator.get_job(job_id)
    if job.user_id != user_id:
        raise JobNotFoundError(job_id)
    return job


@router.post("", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_video(
    current_account: CurrentAccount,
    orchestrator: Orchestrator,
    payload: dict[str, Any] = Body(...),
) -> VideoJobResponse:
    """Start rendering a composition.

    Body: ``{template, layers, settings, exportSettings}``. Returns as soon as
    the job is queued.
    """
    composition = parse_composition(payload)
    job = await orchestrator.submit(current_account, composition)
    return VideoJobResponse(
        message="Video processing started",
        video_id=job.video_id,
        job_id=job.id,
        estimated_time=orchestrator.estimate_render_seconds(composition),
    )


@router.get("", response_model=list[MediaResponse])
async def list_videos(current_account: CurrentAccount, accounts: Accounts) -> list[MediaResponse]:
    """List the current user's rendered outputs, oldest first."""
    records = await asyncio.to_thread(accounts.list_media, current_account.id)
    return [MediaResponse.model_validate(record.to_dict()) for record in records]


@router.post(
    "/animated-thumbnail",
    response_model=VideoJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_animated_thumbnail(
    request: AnimatedThumbnailRequest,
    current_account: CurrentAccount,
    orchestrator: Orchestrator,
) -> VideoJobResponse:
    """Turn a still thumbnail into a short animated clip."""
    composition = build_animated_thumbnail(
        request.image_url,
        animation_type=request.animation_type,
        duration=request.duration,
    )
    job = await orchestrator.submit(
        current_account,
        composition,
        output_prefix=ANIMATED_THUMBNAIL_PREFIX,
    )
    return VideoJobResponse(
        message="Animated thumbnail processing started",
        video_id=job.video_id,
        job_id=job.id,
        estimated_time=orchestrator.estimate_render_seconds(composition),
    )


@router.post("/ai-generate", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_ai_video(
    request: AIVideoRequest,
    current_account: CurrentAccount,
    orchestrator: Orchestrator,
) -> VideoJobResponse:
    """Generate a video from a prompt and render it as an ``ai-video`` output."""
    composition = build_ai_video_template(
        request.prompt,
        platform=request.platform,
        duration=request.duration,
        style=request.style,
        include_text=request.include_text,
        color_scheme=request.color_scheme,
    )
    job = await orchestrator.submit(
        current_account,
        composition,
        output_kind="ai-video",
        output_prefix=AI_VIDEO_PREFIX,
        metadata={
            "ai_generated": True,
            "ai_prompt": request.prompt,
            "platform": request.platform,
            "style": request.style,
        },
    )
    return VideoJobResponse(
        message="AI video generation started",
        video_id=job.video_id,
        job_id=job.id,
        estimated_time=orchestrator.estimate_render_seconds(composition),
    )


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def get_capabilities(encoder: Encoder) -> CapabilitiesResponse:
    """Report whether full encoding is available on this host."""
    return CapabilitiesResponse.model_validate(await encoder.capabilities())


@router.get("/jobs", response_model=list[RenderJobResponse])
async def list_jobs(current_account: CurrentAccount, orchestrator: Orchestrator) -> list[RenderJobResponse]:
    jobs = orchestrator.list_jobs(current_account.id)
    return [RenderJobResponse.model_validate(job.to_dict()) for job in jobs]


@router.get("/jobs/{job_id}", response_model=RenderJobResponse)
async def get_job(job_id: str, current_account: CurrentAccount, orchestrator: Orchestrator) -> RenderJobResponse:
    job = _owned_job(orchestrator, job_id, current_account.id)
    return RenderJobResponse.model_validate(job.to_dict())


@router.post("/jobs/{job_id}/cancel", response_model=RenderJobResponse)
async def cancel_job(job_id: str, current_account: CurrentAccount, orchestrator: Orchestrator) -> RenderJobResponse:
    """Cancel a queued or running job.

    Running jobs stop at the next frame batch or before encoding, so the
    returned snapshot may still show ``running``.
    """
    _owned_job(orchestrator, job_id, current_account.id)
    job = await orchestrator.cancel(job_id)
    return RenderJobResponse.model_validate(job.to_dict())


@router.get("/{video_id}/status", response_model=VideoStatusResponse)
async def get_video_status(video_id: str, current_account: CurrentAccount, accounts: Accounts) -> VideoStatusResponse:
    """Look up a finished video by the id returned at submission."""
    record = await asyncio.to_thread(accounts.find_media, current_account.id, video_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return VideoStatusResponse(
        status="completed",
        video_url=record.url,
        download_url=DOWNLOAD_URL_TEMPLATE.format(url=record.url),
        created_at=record.created_at,
    )


@download_router.get("/download")
async def download_output(
    settings: AppSettings,
    image_url: str = Query(alias="imageUrl"),
) -> FileResponse:
    """Serve a rendered output from the output directory as an attachment."""
    output_root = Path(settings.output_dir).resolve()
    name = Path(image_url).name
    path = (output_root / name).resolve()
    if path.parent != output_root or not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse(path, filename=name)
