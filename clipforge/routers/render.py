"""
Render API Router - Submit, poll and cancel clip render batches.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from clipforge.auth import verify_api_key
from clipforge.config import get_caption_preset
from clipforge.schemas.requests import RenderBatchRequest, RenderJobRequest
from clipforge.schemas.responses import (
    ClipRenderResultResponse,
    CropRegionResponse,
    RenderBatchStatusResponse,
    RenderBatchSubmitResponse,
)
from clipforge.services.rendering_service import (
    ClipBatchRenderProgress,
    ClipRenderJob,
    ClipRenderResult,
    CropMode,
    LogoPosition,
    RenderingService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/render", tags=["Render"])


class BatchStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RenderBatchState:
    """Tracked state of one submitted batch."""

    batch_id: str
    jobs: list[ClipRenderJob]
    status: str = BatchStatus.PENDING
    progress: Optional[ClipBatchRenderProgress] = None
    results: list[ClipRenderResult] = field(default_factory=list)
    error: Optional[str] = None
    task: Optional[asyncio.Task] = None


# ============================================================================
# In-Memory Batch Storage
# ============================================================================

# Finished batches beyond this count are evicted, oldest first
MAX_TRACKED_BATCHES = 100

_batches: dict[str, RenderBatchState] = {}

_FINISHED_STATUSES = (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


def _remember_batch(state: RenderBatchState) -> None:
    """Track a batch, evicting the oldest finished batches over the cap."""
    _batches[state.batch_id] = state
    excess = len(_batches) - MAX_TRACKED_BATCHES
    if excess <= 0:
        return
    for batch_id in [b for b, s in _batches.items() if s.status in _FINISHED_STATUSES][:excess]:
        logger.debug(f"Evicting finished render batch {batch_id}")
        del _batches[batch_id]


async def get_rendering_service(request: Request) -> RenderingService:
    """Get the rendering service from app state (initialized at startup)."""
    if not hasattr(request.app.state, "rendering_service"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rendering service not initialized",
        )
    return request.app.state.rendering_service


def build_render_job(request: RenderJobRequest) -> ClipRenderJob:
    """Convert an API job request into a ClipRenderJob."""
    subtitle_settings = None
    if request.caption_preset:
        subtitle_settings = get_caption_preset(request.caption_preset)
    elif request.subtitle_style:
        subtitle_settings = request.subtitle_style.to_settings()

    return ClipRenderJob(
        source_video_path=request.source_video_path,
        output_path=request.output_path,
        start_time_ms=request.start_time_ms,
        end_time_ms=request.end_time_ms,
        candidate_id=request.candidate_id,
        source_draft_id=request.source_draft_id,
        crop_mode=CropMode(request.crop_mode),
        manual_crop_offset_x=request.manual_crop_offset_x,
        split_layout=request.split_layout.to_config() if request.split_layout else None,
        output_width=request.output_width,
        output_height=request.output_height,
        burn_subtitles=request.burn_subtitles,
        subtitle_path=request.subtitle_path,
        subtitle_settings=subtitle_settings,
        video_quality=request.video_quality,
        logo_path=request.logo_path,
        logo_scale=request.logo_scale,
        logo_margin=request.logo_margin,
        logo_position=LogoPosition(request.logo_position),
    )


def _result_response(result: ClipRenderResult) -> ClipRenderResultResponse:
    crop = None
    if result.applied_crop is not None:
        region = result.applied_crop.region
        crop = CropRegionResponse(
            x=region.x,
            y=region.y,
            width=region.width,
            height=region.height,
            strategy=result.applied_crop.strategy.value,
            faces_considered=result.applied_crop.faces_considered,
            based_on_face_detection=result.applied_crop.based_on_face_detection,
        )
    return ClipRenderResultResponse(
        success=result.success,
        job_id=result.job_id,
        output_path=result.output_path,
        error_message=result.error_message,
        render_duration_ms=result.render_duration_ms,
        output_file_size=result.output_file_size,
        applied_crop=crop,
    )


def _status_response(state: RenderBatchState) -> RenderBatchStatusResponse:
    progress = state.progress
    job_progress = progress.current_job_progress if progress else None
    if state.status == BatchStatus.COMPLETED:
        overall = 100.0
    else:
        overall = progress.overall_percent if progress else 0.0

    return RenderBatchStatusResponse(
        batch_id=state.batch_id,
        status=state.status,
        total_jobs=len(state.jobs),
        current_job_index=progress.current_job_index if progress else 0,
        overall_percent=round(overall, 1),
        current_phase=job_progress.phase.value if job_progress else None,
        status_message=job_progress.status_message if job_progress else None,
        results=[_result_response(r) for r in state.results],
        error=state.error,
    )


async def _run_batch(state: RenderBatchState, rendering_service: RenderingService) -> None:
    """Render a batch, recording progress and results on its state."""
    state.status = BatchStatus.RUNNING

    def on_batch_progress(progress: ClipBatchRenderProgress) -> None:
        state.progress = progress

    try:
        await rendering_service.render_clips(
            state.jobs,
            on_batch_progress=on_batch_progress,
            on_result=state.results.append,
        )
        state.status = BatchStatus.COMPLETED
    except asyncio.CancelledError:
        state.status = BatchStatus.CANCELLED
        logger.info(f"Render batch {state.batch_id} cancelled")
        raise
    except Exception as e:
        logger.exception(f"Render batch {state.batch_id} failed: {e}")
        state.status = BatchStatus.FAILED
        state.error = str(e)


@router.post("/jobs", response_model=RenderBatchSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_render_batch(
    request: RenderBatchRequest,
    rendering_service: RenderingService = Depends(get_rendering_service),
    _: None = Depends(verify_api_key),
) -> RenderBatchSubmitResponse:
    """
    Submit clips for rendering.

    Clips render sequentially in the background. Poll GET /render/jobs/{batch_id}
    for progress and results.
    """
    try:
        jobs = [build_render_job(job) for job in request.jobs]
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    batch_id = uuid.uuid4().hex
    state = RenderBatchState(batch_id=batch_id, jobs=jobs)
    _remember_batch(state)
    state.task = asyncio.create_task(_run_batch(state, rendering_service))

    logger.info(f"Render batch {batch_id} submitted with {len(jobs)} jobs")
    return RenderBatchSubmitResponse(
        batch_id=batch_id,
        status=state.status,
        total_jobs=len(jobs),
        job_ids=[job.id for job in jobs],
    )


@router.get("/jobs/{batch_id}", response_model=RenderBatchStatusResponse)
async def get_render_batch(batch_id: str) -> RenderBatchStatusResponse:
    """Get progress and finished results of a render batch."""
    state = _batches.get(batch_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Batch not found: {batch_id}",
        )
    return _status_response(state)


@router.delete("/jobs/{batch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_render_batch(
    batch_id: str,
    _: None = Depends(verify_api_key),
) -> None:
    """
    Cancel a running batch.

    The clip being encoded is stopped and its partial files removed; later
    clips never start.
    """
    state = _batches.get(batch_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Batch not found: {batch_id}",
        )
    if state.task is not None and not state.task.done():
        state.task.cancel()
        state.status = BatchStatus.CANCELLED
