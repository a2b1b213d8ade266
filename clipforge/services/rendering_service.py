"""
Rendering Service - Renders highlight clips with FFmpeg.

Each job goes through crop resolution, subtitle generation and a single FFmpeg
encode, reporting phase and percent progress along the way. Batches render
one job at a time.
"""

import asyncio
import logging
import os
import shutil
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from clipforge.config import SubtitleSettings, get_settings
from clipforge.services.crop_calculator import (
    CropRegionResult,
    calculate_crop_region,
    create_center_crop,
    create_manual_crop,
    target_aspect_for,
)
from clipforge.services.face_analysis import FaceAnalysisService
from clipforge.services.ffmpeg_runner import EncodeRequest, FFmpegEncoder
from clipforge.services.filter_graph import (
    Filter,
    FilterGraph,
    escape_filter_path,
    make_filter,
    render_chain,
)
from clipforge.services.frame_extractor import FrameExtractor, VideoProbeError
from clipforge.services.highlight_scoring import ClipCandidate
from clipforge.services.split_layout import SplitLayoutConfig, SplitLayoutPlan, plan_split_layout
from clipforge.services.subtitle_generator import (
    ClipSubtitleSegment,
    SubtitleGenerator,
    build_clip_subtitle_segments,
)
from clipforge.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

TEMP_OUTPUT_SUFFIX = ".tmp.mp4"


class CropMode(str, Enum):
    NONE = "none"
    AUTO_DETECT = "auto_detect"
    CENTER = "center"
    MANUAL = "manual"
    SPLIT_LAYOUT = "split_layout"


class LogoPosition(str, Enum):
    TOP_LEFT = "top_left"
    TOP_RIGHT = "top_right"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"


class RenderPhase(str, Enum):
    PENDING = "pending"
    FACE_DETECTION = "face_detection"
    CROP_CALCULATION = "crop_calculation"
    SUBTITLE_GENERATION = "subtitle_generation"
    VIDEO_RENDERING = "video_rendering"
    POST_PROCESSING = "post_processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Overall percent at the start of each phase
PHASE_START_PERCENT = {
    RenderPhase.PENDING: 0.0,
    RenderPhase.FACE_DETECTION: 5.0,
    RenderPhase.CROP_CALCULATION: 10.0,
    RenderPhase.SUBTITLE_GENERATION: 15.0,
    RenderPhase.VIDEO_RENDERING: 20.0,
    RenderPhase.POST_PROCESSING: 95.0,
    RenderPhase.COMPLETED: 100.0,
}
ENCODING_SHARE = 0.75  # Encoder percent mapped onto 20..95

GEOMETRY_CROP_MODES = (CropMode.AUTO_DETECT, CropMode.CENTER, CropMode.MANUAL)


@dataclass
class ClipRenderJob:
    """Everything needed to render one clip."""

    source_video_path: str
    output_path: str
    start_time_ms: int
    end_time_ms: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    candidate_id: Optional[str] = None
    source_draft_id: Optional[str] = None

    # Framing
    crop_mode: CropMode = CropMode.AUTO_DETECT
    manual_crop_offset_x: float = 0.0  # -1 (left) .. 1 (right)
    split_layout: Optional[SplitLayoutConfig] = None
    output_width: int = 1080
    output_height: int = 1920

    # Subtitles
    burn_subtitles: bool = False
    subtitle_path: Optional[str] = None
    subtitle_settings: Optional[SubtitleSettings] = None
    subtitle_segments: Optional[list[ClipSubtitleSegment]] = None

    # Encoding
    video_quality: int = 23  # CRF
    video_codec: str = "libx264"
    video_preset: str = "medium"
    audio_codec: str = "aac"
    audio_bitrate_kbps: int = 192

    # Logo overlay
    logo_path: Optional[str] = None
    logo_scale: float = 0.15  # Share of output width
    logo_margin: int = 30
    logo_position: LogoPosition = LogoPosition.TOP_RIGHT

    @property
    def duration_ms(self) -> int:
        return self.end_time_ms - self.start_time_ms


@dataclass
class ClipRenderProgress:
    """Progress of a single render job."""

    job_id: str
    phase: RenderPhase
    phase_progress: float
    total_progress: float
    status_message: Optional[str] = None

    @classmethod
    def completed(cls, job_id: str) -> "ClipRenderProgress":
        return cls(job_id, RenderPhase.COMPLETED, 100.0, 100.0, "Done")

    @classmethod
    def failed(cls, job_id: str, error: str) -> "ClipRenderProgress":
        return cls(job_id, RenderPhase.FAILED, 0.0, 0.0, error)

    @classmethod
    def cancelled(cls, job_id: str) -> "ClipRenderProgress":
        return cls(job_id, RenderPhase.CANCELLED, 0.0, 0.0, "Cancelled")


@dataclass
class ClipBatchRenderProgress:
    """Progress across a batch of render jobs."""

    current_job_index: int
    total_jobs: int
    current_job_progress: Optional[ClipRenderProgress] = None

    @property
    def overall_percent(self) -> float:
        if self.total_jobs <= 0:
            return 0.0
        current = self.current_job_progress.total_progress if self.current_job_progress else 0.0
        return (self.current_job_index * 100 + current) / self.total_jobs


@dataclass
class ClipRenderResult:
    """Outcome of a single render job."""

    success: bool
    job_id: str
    output_path: Optional[str] = None
    error_message: Optional[str] = None
    render_duration_ms: int = 0
    output_file_size: int = 0
    applied_crop: Optional[CropRegionResult] = None

    @classmethod
    def ok(
        cls,
        job_id: str,
        output_path: str,
        render_duration_ms: int,
        output_file_size: int,
        applied_crop: Optional[CropRegionResult] = None,
    ) -> "ClipRenderResult":
        return cls(
            success=True,
            job_id=job_id,
            output_path=output_path,
            render_duration_ms=render_duration_ms,
            output_file_size=output_file_size,
            applied_crop=applied_crop,
        )

    @classmethod
    def fail(cls, job_id: str, error_message: str, render_duration_ms: int = 0) -> "ClipRenderResult":
        return cls(
            success=False,
            job_id=job_id,
            error_message=error_message,
            render_duration_ms=render_duration_ms,
        )


ProgressCallback = Callable[[ClipRenderProgress], None]
BatchProgressCallback = Callable[[ClipBatchRenderProgress], None]
ResultCallback = Callable[[ClipRenderResult], None]


class _ProgressReporter:
    """Maps phases to overall percent and throttles encoder updates."""

    def __init__(self, job_id: str, callback: Optional[ProgressCallback], min_interval_ms: int):
        self.job_id = job_id
        self.callback = callback
        self.min_interval = min_interval_ms / 1000
        self._last_encoding_report: Optional[float] = None

    def phase(self, phase: RenderPhase, message: str) -> None:
        self._emit(ClipRenderProgress(
            job_id=self.job_id,
            phase=phase,
            phase_progress=100.0 if phase == RenderPhase.COMPLETED else 0.0,
            total_progress=PHASE_START_PERCENT.get(phase, 0.0),
            status_message=message,
        ))

    def encoding(self, percent: float) -> None:
        now = time.monotonic()
        if self._last_encoding_report is not None and now - self._last_encoding_report < self.min_interval:
            return
        self._last_encoding_report = now
        percent = min(max(percent, 0.0), 100.0)
        self._emit(ClipRenderProgress(
            job_id=self.job_id,
            phase=RenderPhase.VIDEO_RENDERING,
            phase_progress=percent,
            total_progress=min(95.0, 20.0 + percent * ENCODING_SHARE),
            status_message=f"Encoding {percent:.0f}%",
        ))

    def emit(self, progress: ClipRenderProgress) -> None:
        self._emit(progress)

    def _emit(self, progress: ClipRenderProgress) -> None:
        logger.debug(f"Job {self.job_id}: {progress.phase.value} {progress.total_progress:.0f}%")
        if self.callback:
            self.callback(progress)


class RenderingError(Exception):
    """Exception raised when rendering fails."""
    pass


class RenderingService:
    """
    Service for rendering clips using FFmpeg.

    Features:
    - Face-aware, center or manual 9:16 cropping
    - Split layouts stacking two source regions
    - Logo overlay
    - Burned-in karaoke subtitles
    """

    def __init__(
        self,
        face_analysis: Optional[FaceAnalysisService] = None,
        frame_extractor: Optional[FrameExtractor] = None,
        encoder: Optional[FFmpegEncoder] = None,
        subtitle_generator: Optional[SubtitleGenerator] = None,
        transcript_store: Optional[TranscriptStore] = None,
        temp_directory: Optional[str] = None,
    ):
        self.settings = get_settings()
        self.face_analysis = face_analysis
        self.frame_extractor = frame_extractor or FrameExtractor()
        self.encoder = encoder or FFmpegEncoder()
        self.subtitle_generator = subtitle_generator or SubtitleGenerator()
        self.transcript_store = transcript_store
        self.temp_directory = temp_directory or self.settings.temp_directory

    async def render_clip(
        self,
        job: ClipRenderJob,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ClipRenderResult:
        """
        Render one clip.

        Failures are returned as a failed ClipRenderResult. Cancellation
        removes partial files and is re-raised.

        Args:
            job: Clip to render
            on_progress: Receives phase and percent updates

        Returns:
            ClipRenderResult for the job
        """
        started = time.monotonic()
        reporter = _ProgressReporter(job.id, on_progress, self.settings.progress_interval_ms)
        reporter.phase(RenderPhase.PENDING, "Preparing")

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        def fail(message: str) -> ClipRenderResult:
            logger.warning(f"Render job {job.id} failed: {message}")
            reporter.emit(ClipRenderProgress.failed(job.id, message))
            return ClipRenderResult.fail(job.id, message, elapsed_ms())

        if job.end_time_ms <= job.start_time_ms:
            return fail(f"Invalid time range {job.start_time_ms}-{job.end_time_ms}ms")
        if not os.path.isfile(job.source_video_path):
            return fail(f"Source video not found: {job.source_video_path}")
        if not self.encoder.is_available():
            return fail("FFmpeg not found")

        temp_output = job.output_path + TEMP_OUTPUT_SUFFIX
        owned_subtitle: Optional[str] = None
        try:
            os.makedirs(os.path.dirname(job.output_path) or ".", exist_ok=True)

            source_width, source_height = await self._probe_dimensions(job.source_video_path)

            crop: Optional[CropRegionResult] = None
            layout: Optional[SplitLayoutPlan] = None
            if job.crop_mode in GEOMETRY_CROP_MODES and source_width > 0 and source_height > 0:
                crop = await self._resolve_crop(job, source_width, source_height, reporter)
            elif job.crop_mode == CropMode.SPLIT_LAYOUT and source_width > 0 and source_height > 0:
                layout = await self._resolve_split_layout(job, source_width, source_height, reporter)

            subtitle_path, owned_subtitle = self._prepare_subtitles(
                job, source_width, source_height, reporter
            )

            reporter.phase(RenderPhase.VIDEO_RENDERING, "Encoding")
            request = self._build_encode_request(
                job, temp_output, crop, layout, subtitle_path, source_width
            )
            await self.encoder.encode(request, on_progress=reporter.encoding)

            if not os.path.isfile(temp_output):
                raise RenderingError("FFmpeg finished without writing output")

            reporter.phase(RenderPhase.POST_PROCESSING, "Finalizing")
            if os.path.exists(job.output_path):
                os.remove(job.output_path)
            shutil.move(temp_output, job.output_path)
            file_size = os.path.getsize(job.output_path)

            reporter.emit(ClipRenderProgress.completed(job.id))
            logger.info(
                f"Rendered {job.output_path} ({file_size / 1024 / 1024:.1f} MB) in {elapsed_ms()}ms"
            )
            return ClipRenderResult.ok(job.id, job.output_path, elapsed_ms(), file_size, crop)

        except asyncio.CancelledError:
            logger.info(f"Render job {job.id} cancelled")
            reporter.emit(ClipRenderProgress.cancelled(job.id))
            raise
        except Exception as e:
            logger.exception(f"Render job {job.id} failed: {e}")
            reporter.emit(ClipRenderProgress.failed(job.id, str(e)))
            return ClipRenderResult.fail(job.id, str(e), elapsed_ms())
        finally:
            _remove_quietly(temp_output)
            if owned_subtitle:
                _remove_quietly(owned_subtitle)

    async def render_clips(
        self,
        jobs: Sequence[ClipRenderJob],
        on_progress: Optional[ProgressCallback] = None,
        on_batch_progress: Optional[BatchProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> list[ClipRenderResult]:
        """
        Render jobs one after another.

        A failed job does not stop the batch; cancellation does, and jobs
        after the cancelled one never start. ``on_result`` receives each
        finished result as soon as its job ends, so callers keep the
        results of a batch that is later cancelled.
        """
        results: list[ClipRenderResult] = []
        total = len(jobs)

        for index, job in enumerate(jobs):
            logger.info(f"Rendering clip {index + 1}/{total} (job {job.id})")

            def forward(progress: ClipRenderProgress, index: int = index) -> None:
                if on_progress:
                    on_progress(progress)
                if on_batch_progress:
                    on_batch_progress(ClipBatchRenderProgress(index, total, progress))

            result = await self.render_clip(job, forward)
            results.append(result)
            if on_result:
                on_result(result)

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch finished: {succeeded}/{total} clips rendered")
        return results

    def create_job_from_candidate(
        self,
        candidate: ClipCandidate,
        source_video_path: str,
        output_directory: str,
        convert_to_portrait: bool = True,
        burn_subtitles: bool = False,
        subtitle_settings: Optional[SubtitleSettings] = None,
    ) -> ClipRenderJob:
        """Build a render job for a scored candidate."""
        total_seconds = candidate.start_time_ms // 1000
        hours, rem = divmod(total_seconds, 3600)
        minutes, seconds = divmod(rem, 60)
        file_name = f"{Path(source_video_path).stem}_clip_{hours:02d}-{minutes:02d}-{seconds:02d}.mp4"

        job = ClipRenderJob(
            source_video_path=source_video_path,
            output_path=os.path.join(output_directory, file_name),
            start_time_ms=candidate.start_time_ms,
            end_time_ms=candidate.end_time_ms,
            candidate_id=candidate.id,
            source_draft_id=candidate.source_draft_id,
            burn_subtitles=burn_subtitles,
            subtitle_settings=subtitle_settings,
            video_quality=self.settings.ffmpeg_crf,
            video_preset=self.settings.ffmpeg_preset,
            audio_bitrate_kbps=self.settings.audio_bitrate_kbps,
        )
        if convert_to_portrait:
            job.crop_mode = CropMode.AUTO_DETECT
            job.output_width = self.settings.target_output_width
            job.output_height = self.settings.target_output_height
        else:
            job.crop_mode = CropMode.NONE
            job.output_width = 0
            job.output_height = 0
        return job

    async def _probe_dimensions(self, video_path: str) -> tuple[int, int]:
        try:
            metadata = await self.frame_extractor.probe(video_path)
        except VideoProbeError as e:
            logger.warning(f"Could not probe {video_path}, rendering without crop: {e}")
            return 0, 0
        return metadata.width, metadata.height

    async def _resolve_crop(
        self,
        job: ClipRenderJob,
        source_width: int,
        source_height: int,
        reporter: _ProgressReporter,
    ) -> CropRegionResult:
        aspect = target_aspect_for(job.output_width, job.output_height)

        if job.crop_mode == CropMode.MANUAL:
            reporter.phase(RenderPhase.CROP_CALCULATION, "Applying manual crop")
            return create_manual_crop(source_width, source_height, aspect, job.manual_crop_offset_x)

        if job.crop_mode == CropMode.AUTO_DETECT and self.face_analysis and self.face_analysis.is_ready():
            reporter.phase(RenderPhase.FACE_DETECTION, "Detecting faces")
            analyses = await self.face_analysis.analyze_video(
                job.source_video_path,
                range_start_ms=job.start_time_ms,
                range_end_ms=job.end_time_ms,
            )
            reporter.phase(RenderPhase.CROP_CALCULATION, "Calculating crop")
            return calculate_crop_region(
                analyses,
                source_width,
                source_height,
                job.output_width,
                job.output_height,
                distance_threshold=self.settings.face_cluster_distance_px,
            )

        reporter.phase(RenderPhase.CROP_CALCULATION, "Using center crop")
        return create_center_crop(source_width, source_height, aspect)

    async def _resolve_split_layout(
        self,
        job: ClipRenderJob,
        source_width: int,
        source_height: int,
        reporter: _ProgressReporter,
    ) -> SplitLayoutPlan:
        config = job.split_layout or SplitLayoutConfig()
        analyses = []
        if config.auto_detect_faces and self.face_analysis and self.face_analysis.is_ready():
            reporter.phase(RenderPhase.FACE_DETECTION, "Detecting speakers")
            analyses = await self.face_analysis.analyze_video(
                job.source_video_path,
                range_start_ms=job.start_time_ms,
                range_end_ms=job.end_time_ms,
            )

        reporter.phase(RenderPhase.CROP_CALCULATION, "Calculating split layout")
        output_height = job.output_height or self.settings.target_output_height
        plan = plan_split_layout(config, source_width, source_height, output_height, analyses)
        logger.debug(f"Split layout {plan.preset.value}: primary={plan.primary} secondary={plan.secondary}")
        return plan

    def _prepare_subtitles(
        self,
        job: ClipRenderJob,
        source_width: int,
        source_height: int,
        reporter: _ProgressReporter,
    ) -> tuple[Optional[str], Optional[str]]:
        """Return (subtitle path to burn, temp file this job owns)."""
        if not job.burn_subtitles:
            return None, None

        if job.subtitle_segments:
            segments = job.subtitle_segments
        elif job.subtitle_path and os.path.isfile(job.subtitle_path):
            return job.subtitle_path, None
        elif self.transcript_store and job.source_draft_id:
            source_segments = self.transcript_store.load_segments(job.source_draft_id)
            segments = build_clip_subtitle_segments(source_segments, job.start_time_ms, job.end_time_ms)
        else:
            logger.warning(f"Job {job.id}: subtitles requested but no transcript available")
            return None, None

        if not segments:
            logger.info(f"Job {job.id}: no transcript in clip range, rendering without subtitles")
            return None, None

        reporter.phase(RenderPhase.SUBTITLE_GENERATION, "Generating subtitles")
        play_res_x = job.output_width or source_width
        play_res_y = job.output_height or source_height
        path = os.path.join(self.temp_directory, "subtitles", f"{job.id}.ass")
        try:
            written = self.subtitle_generator.write(
                path, segments, job.subtitle_settings, play_res_x, play_res_y
            )
        except OSError as e:
            logger.warning(f"Job {job.id}: failed to write subtitles, rendering without: {e}")
            return None, None
        return written, written

    def _build_encode_request(
        self,
        job: ClipRenderJob,
        output_path: str,
        crop: Optional[CropRegionResult],
        layout: Optional[SplitLayoutPlan],
        subtitle_path: Optional[str],
        source_width: int,
    ) -> EncodeRequest:
        request = EncodeRequest(
            input_path=job.source_video_path,
            output_path=output_path,
            start_time_ms=job.start_time_ms,
            duration_ms=job.duration_ms,
            video_codec=job.video_codec,
            crf=job.video_quality,
            preset=job.video_preset,
            audio_codec=job.audio_codec,
            audio_bitrate_kbps=job.audio_bitrate_kbps,
        )

        logo_path = job.logo_path
        if logo_path and not os.path.isfile(logo_path):
            logger.warning(f"Job {job.id}: logo not found at {logo_path}, skipping overlay")
            logo_path = None

        if not logo_path and layout is None:
            request.video_filter = render_chain(
                self.build_simple_filters(job.output_width, job.output_height, crop, subtitle_path)
            ) or None
            return request

        graph, output_label = self.build_filter_graph(
            job, crop, layout, subtitle_path, logo_path is not None, source_width
        )
        request.filter_complex = graph.render()
        request.output_label = output_label
        if logo_path:
            request.extra_inputs.append(logo_path)
        return request

    def build_simple_filters(
        self,
        output_width: int,
        output_height: int,
        crop: Optional[CropRegionResult],
        subtitle_path: Optional[str],
    ) -> list[Filter]:
        """Linear chain: crop, scale-to-fit, pad to exact size, burn subtitles."""
        filters: list[Filter] = []
        if crop is not None:
            filters.append(make_filter("crop", crop.region.width, crop.region.height, crop.region.x, crop.region.y))
        filters.extend(_fit_filters(output_width, output_height))
        if subtitle_path:
            filters.append(make_filter("ass", escape_filter_path(subtitle_path)))
        return filters

    def build_filter_graph(
        self,
        job: ClipRenderJob,
        crop: Optional[CropRegionResult],
        layout: Optional[SplitLayoutPlan],
        subtitle_path: Optional[str],
        with_logo: bool,
        source_width: int = 0,
    ) -> tuple[FilterGraph, str]:
        """
        Labelled graph for split layouts and logo overlays.

        Returns the graph and the label of its video output.
        """
        graph = FilterGraph()
        width = job.output_width or self.settings.target_output_width
        height = job.output_height or self.settings.target_output_height

        if layout is not None and not layout.is_solo:
            top_in, bottom_in = graph.add(make_filter("split", 2), "0:v", [graph.new_label(), graph.new_label()])
            top = graph.chain(
                _fill_filters(layout.primary, width, layout.primary_output_height), top_in
            )
            bottom = graph.chain(
                _fill_filters(layout.secondary, width, layout.secondary_output_height), bottom_in
            )
            current = graph.add(make_filter("vstack", inputs=2), [top, bottom])[0]
        elif layout is not None:
            x, y, w, h = layout.primary
            current = graph.chain(
                [make_filter("crop", w, h, x, y), *_fit_filters(width, height)], "0:v"
            )
        else:
            filters: list[Filter] = []
            if crop is not None:
                region = crop.region
                filters.append(make_filter("crop", region.width, region.height, region.x, region.y))
            filters.extend(_fit_filters(job.output_width, job.output_height))
            current = graph.chain(filters or [make_filter("null")], "0:v")

        if with_logo:
            canvas_width = job.output_width or source_width or width
            scale = min(max(job.logo_scale, 0.05), 0.5)
            logo_width = max(2, int(round(canvas_width * scale)) // 2 * 2)
            logo = graph.chain(make_filter("scale", logo_width, -1), "1:v")
            x, y = _logo_position(job.logo_position, job.logo_margin)
            current = graph.add(make_filter("overlay", x, y), [current, logo])[0]

        if subtitle_path:
            current = graph.chain(make_filter("ass", escape_filter_path(subtitle_path)), current)

        return graph, current


def _fit_filters(width: int, height: int) -> list[Filter]:
    if width <= 0 or height <= 0:
        return []
    return [
        make_filter("scale", width, height, force_original_aspect_ratio="decrease"),
        make_filter("pad", width, height, "(ow-iw)/2", "(oh-ih)/2"),
    ]


def _fill_filters(region: tuple[int, int, int, int], width: int, height: int) -> list[Filter]:
    """Crop a source region and scale it to cover a width x height row."""
    x, y, w, h = region
    return [
        make_filter("crop", w, h, x, y),
        make_filter("scale", width, height, force_original_aspect_ratio="increase"),
        make_filter("crop", width, height),
        make_filter("setsar", 1),
    ]


def _logo_position(position: LogoPosition, margin: int) -> tuple[str, str]:
    margin = max(0, margin)
    x = str(margin) if position in (LogoPosition.TOP_LEFT, LogoPosition.BOTTOM_LEFT) else f"main_w-overlay_w-{margin}"
    y = str(margin) if position in (LogoPosition.TOP_LEFT, LogoPosition.TOP_RIGHT) else f"main_h-overlay_h-{margin}"
    return x, y


def _remove_quietly(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")
