"""
Tests for the clip rendering service.
"""

import asyncio
import json
import os

import pytest

from clipforge.services.crop_calculator import CropStrategy, create_center_crop
from clipforge.services.ffmpeg_runner import EncoderError
from clipforge.services.frame_extractor import VideoMetadata
from clipforge.services.highlight_scoring import ClipCandidate
from clipforge.services.rendering_service import (
    ClipBatchRenderProgress,
    ClipRenderJob,
    ClipRenderProgress,
    CropMode,
    LogoPosition,
    RenderingService,
    RenderPhase,
    TEMP_OUTPUT_SUFFIX,
    _ProgressReporter,
)
from clipforge.services.split_layout import SplitLayoutConfig, SplitLayoutPreset, plan_split_layout
from clipforge.services.subtitle_generator import ClipSubtitleSegment, ClipSubtitleWord
from clipforge.services.transcript_store import TranscriptStore


class FakeEncoder:
    """Encoder that writes a placeholder file instead of running FFmpeg."""

    def __init__(self, block=False, fail_first=0, available=True, block_from=1):
        self.block = block
        self.block_from = block_from
        self.fail_first = fail_first
        self.available = available
        self.requests = []
        self.started = asyncio.Event()

    def is_available(self):
        return self.available

    async def encode(self, request, on_progress=None):
        self.requests.append(request)
        with open(request.output_path, "wb") as f:
            f.write(b"encoded video")
        if on_progress:
            on_progress(50.0)
        if self.block and len(self.requests) >= self.block_from:
            self.started.set()
            await asyncio.Event().wait()
        if len(self.requests) <= self.fail_first:
            raise EncoderError("FFmpeg failed (1): broken input")
        if on_progress:
            on_progress(100.0)


@pytest.fixture
def source_video(tmp_path):
    path = tmp_path / "interview.mp4"
    path.write_bytes(b"source")
    return str(path)


@pytest.fixture
def extractor(mocker):
    extractor = mocker.Mock()
    extractor.probe = mocker.AsyncMock(return_value=VideoMetadata(
        duration_ms=600000, width=1920, height=1080, fps=30.0, codec="h264",
    ))
    return extractor


def make_job(source_video, tmp_path, name="clip.mp4", **kwargs):
    return ClipRenderJob(
        source_video_path=source_video,
        output_path=str(tmp_path / "out" / name),
        start_time_ms=10000,
        end_time_ms=40000,
        **kwargs,
    )


def subtitle_segments():
    return [ClipSubtitleSegment(
        text="Hello world",
        start_time_ms=0,
        end_time_ms=2000,
        words=(ClipSubtitleWord("Hello", 0, 900), ClipSubtitleWord("world", 900, 2000)),
    )]


class TestRenderClip:
    """Tests for RenderingService.render_clip."""

    def run_render(self, extractor, tmp_path, job, encoder=None, **kwargs):
        async def run():
            service = RenderingService(
                frame_extractor=extractor,
                encoder=encoder or FakeEncoder(),
                temp_directory=str(tmp_path / "work"),
                **kwargs,
            )
            progress = []
            result = await service.render_clip(job, progress.append)
            return service, result, progress

        return asyncio.run(run())

    def test_successful_render(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path)

        service, result, progress = self.run_render(extractor, tmp_path, job)

        assert result.success
        assert result.output_path == job.output_path
        assert result.output_file_size == len(b"encoded video")
        assert result.applied_crop.strategy == CropStrategy.CENTER_FALLBACK
        assert os.path.isfile(job.output_path)
        assert not os.path.exists(job.output_path + TEMP_OUTPUT_SUFFIX)

        request = service.encoder.requests[0]
        assert request.output_path == job.output_path + TEMP_OUTPUT_SUFFIX
        assert request.start_time_ms == 10000
        assert request.duration_ms == 30000
        assert request.video_filter == (
            "crop=608:1080:656:0,"
            "scale=1080:1920:force_original_aspect_ratio=decrease,"
            "pad=1080:1920:(ow-iw)/2:(oh-ih)/2"
        )

    def test_progress_phases(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path)

        _, _, progress = self.run_render(extractor, tmp_path, job)

        phases = [p.phase for p in progress]
        assert phases[0] == RenderPhase.PENDING
        assert phases[-1] == RenderPhase.COMPLETED
        assert RenderPhase.CROP_CALCULATION in phases
        assert RenderPhase.VIDEO_RENDERING in phases
        assert RenderPhase.POST_PROCESSING in phases
        totals = [p.total_progress for p in progress]
        assert totals == sorted(totals)
        assert all(p.job_id == job.id for p in progress)

    def test_missing_source_fails(self, extractor, tmp_path):
        job = make_job(str(tmp_path / "missing.mp4"), tmp_path)
        encoder = FakeEncoder()

        _, result, progress = self.run_render(extractor, tmp_path, job, encoder)

        assert not result.success
        assert "not found" in result.error_message
        assert progress[-1].phase == RenderPhase.FAILED
        assert encoder.requests == []

    def test_invalid_range_fails(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path)
        job.end_time_ms = job.start_time_ms

        _, result, _ = self.run_render(extractor, tmp_path, job)

        assert not result.success

    def test_ffmpeg_unavailable_fails(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path)

        _, result, _ = self.run_render(
            extractor, tmp_path, job, FakeEncoder(available=False)
        )

        assert not result.success
        assert result.error_message == "FFmpeg not found"

    def test_encoder_failure_removes_temp_output(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path)

        _, result, progress = self.run_render(
            extractor, tmp_path, job, FakeEncoder(fail_first=1)
        )

        assert not result.success
        assert "broken input" in result.error_message
        assert progress[-1].phase == RenderPhase.FAILED
        assert not os.path.exists(job.output_path + TEMP_OUTPUT_SUFFIX)
        assert not os.path.exists(job.output_path)

    def test_no_crop_mode(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path, crop_mode=CropMode.NONE, output_width=0, output_height=0)

        service, result, _ = self.run_render(extractor, tmp_path, job)

        assert result.success
        assert result.applied_crop is None
        assert service.encoder.requests[0].video_filter is None

    def test_manual_crop(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path, crop_mode=CropMode.MANUAL, manual_crop_offset_x=-1.0)

        _, result, _ = self.run_render(extractor, tmp_path, job)

        assert result.applied_crop.strategy == CropStrategy.MANUAL
        assert result.applied_crop.region.x == 0

    def test_auto_detect_uses_face_analysis(self, mocker, extractor, tmp_path, source_video):
        face_analysis = mocker.Mock()
        face_analysis.is_ready.return_value = True
        face_analysis.analyze_video = mocker.AsyncMock(return_value=[])
        job = make_job(source_video, tmp_path)

        _, result, progress = self.run_render(
            extractor, tmp_path, job, face_analysis=face_analysis
        )

        face_analysis.analyze_video.assert_awaited_once_with(
            source_video, range_start_ms=10000, range_end_ms=40000,
        )
        assert RenderPhase.FACE_DETECTION in [p.phase for p in progress]
        assert result.applied_crop.strategy == CropStrategy.CENTER_FALLBACK

    def test_burned_subtitles_cleaned_up(self, extractor, tmp_path, source_video):
        job = make_job(
            source_video, tmp_path, burn_subtitles=True, subtitle_segments=subtitle_segments()
        )

        service, result, progress = self.run_render(extractor, tmp_path, job)

        subtitle_path = os.path.join(str(tmp_path / "work"), "subtitles", f"{job.id}.ass")
        assert result.success
        assert "ass='" in service.encoder.requests[0].video_filter
        assert subtitle_path in service.encoder.requests[0].video_filter
        assert RenderPhase.SUBTITLE_GENERATION in [p.phase for p in progress]
        assert not os.path.exists(subtitle_path)

    def test_subtitles_from_transcript_store(self, extractor, tmp_path, source_video):
        transcripts = tmp_path / "transcripts"
        transcripts.mkdir()
        (transcripts / "draft-7.json").write_text(json.dumps({"segments": [
            {"text": "Inside the clip", "start_time_ms": 12000, "end_time_ms": 15000},
        ]}))
        job = make_job(source_video, tmp_path, burn_subtitles=True, source_draft_id="draft-7")

        service, result, _ = self.run_render(
            extractor, tmp_path, job, transcript_store=TranscriptStore(str(transcripts))
        )

        assert result.success
        assert "ass=" in service.encoder.requests[0].video_filter

    def test_malformed_transcript_renders_plain(self, extractor, tmp_path, source_video):
        transcripts = tmp_path / "transcripts"
        transcripts.mkdir()
        (transcripts / "draft-8.json").write_text(json.dumps({"segments": None}))
        job = make_job(source_video, tmp_path, burn_subtitles=True, source_draft_id="draft-8")

        service, result, _ = self.run_render(
            extractor, tmp_path, job, transcript_store=TranscriptStore(str(transcripts))
        )

        assert result.success
        assert "ass=" not in service.encoder.requests[0].video_filter

    def test_subtitles_without_transcript_render_plain(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path, burn_subtitles=True)

        service, result, _ = self.run_render(extractor, tmp_path, job)

        assert result.success
        assert "ass=" not in service.encoder.requests[0].video_filter

    def test_logo_overlay_uses_filter_complex(self, extractor, tmp_path, source_video):
        logo = tmp_path / "logo.png"
        logo.write_bytes(b"png")
        job = make_job(source_video, tmp_path, logo_path=str(logo))

        service, result, _ = self.run_render(extractor, tmp_path, job)

        request = service.encoder.requests[0]
        assert result.success
        assert request.video_filter is None
        assert request.extra_inputs == [str(logo)]
        assert "[1:v]scale=162:-1" in request.filter_complex
        assert "overlay=main_w-overlay_w-30:30" in request.filter_complex

    def test_missing_logo_skipped(self, extractor, tmp_path, source_video):
        job = make_job(source_video, tmp_path, logo_path=str(tmp_path / "nope.png"))

        service, result, _ = self.run_render(extractor, tmp_path, job)

        assert result.success
        assert service.encoder.requests[0].filter_complex is None

    def test_split_layout_job(self, extractor, tmp_path, source_video):
        job = make_job(
            source_video, tmp_path,
            crop_mode=CropMode.SPLIT_LAYOUT,
            split_layout=SplitLayoutConfig(preset=SplitLayoutPreset.TOP_BOTTOM),
        )

        service, result, _ = self.run_render(extractor, tmp_path, job)

        request = service.encoder.requests[0]
        assert result.success
        assert "vstack=inputs=2" in request.filter_complex
        assert request.output_label


class TestRenderClips:
    """Tests for sequential batch rendering."""

    def test_failed_job_does_not_stop_batch(self, extractor, tmp_path, source_video):
        jobs = [make_job(source_video, tmp_path, "a.mp4"), make_job(source_video, tmp_path, "b.mp4")]
        batch_updates = []

        async def run():
            service = RenderingService(
                frame_extractor=extractor,
                encoder=FakeEncoder(fail_first=1),
                temp_directory=str(tmp_path / "work"),
            )
            return await service.render_clips(jobs, on_batch_progress=batch_updates.append)

        results = asyncio.run(run())

        assert [r.success for r in results] == [False, True]
        assert {u.current_job_index for u in batch_updates} == {0, 1}
        assert all(u.total_jobs == 2 for u in batch_updates)

    def test_cancellation_mid_batch(self, extractor, tmp_path, source_video):
        """Cancelling stops the current job, cleans its files and skips the rest."""
        first = make_job(
            source_video, tmp_path, "a.mp4", burn_subtitles=True, subtitle_segments=subtitle_segments()
        )
        second = make_job(source_video, tmp_path, "b.mp4")
        temp_output = first.output_path + TEMP_OUTPUT_SUFFIX
        subtitle_path = os.path.join(str(tmp_path / "work"), "subtitles", f"{first.id}.ass")
        progress = []
        seen_during_encode = {}

        async def run():
            encoder = FakeEncoder(block=True)
            service = RenderingService(
                frame_extractor=extractor,
                encoder=encoder,
                temp_directory=str(tmp_path / "work"),
            )
            task = asyncio.create_task(service.render_clips([first, second], progress.append))
            await encoder.started.wait()
            seen_during_encode["temp"] = os.path.exists(temp_output)
            seen_during_encode["subtitle"] = os.path.exists(subtitle_path)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return encoder

        encoder = asyncio.run(run())

        assert seen_during_encode == {"temp": True, "subtitle": True}
        assert progress[-1].phase == RenderPhase.CANCELLED
        assert progress[-1].job_id == first.id
        assert not os.path.exists(temp_output)
        assert not os.path.exists(subtitle_path)
        assert not os.path.exists(first.output_path)
        assert len(encoder.requests) == 1
        assert all(p.job_id != second.id for p in progress)

    def test_cancellation_keeps_finished_results(self, extractor, tmp_path, source_video):
        first = make_job(source_video, tmp_path, "a.mp4")
        second = make_job(source_video, tmp_path, "b.mp4")
        finished = []

        async def run():
            encoder = FakeEncoder(block=True, block_from=2)
            service = RenderingService(
                frame_extractor=extractor,
                encoder=encoder,
                temp_directory=str(tmp_path / "work"),
            )
            task = asyncio.create_task(service.render_clips([first, second], on_result=finished.append))
            await encoder.started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())

        assert len(finished) == 1
        assert finished[0].success is True
        assert finished[0].job_id == first.id
        assert os.path.exists(first.output_path)
        assert not os.path.exists(second.output_path)


class TestProgressReporting:

    def test_encoding_updates_throttled(self):
        updates = []
        reporter = _ProgressReporter("job", updates.append, min_interval_ms=60_000)

        reporter.encoding(10.0)
        reporter.encoding(20.0)

        assert len(updates) == 1
        assert updates[0].phase == RenderPhase.VIDEO_RENDERING
        assert updates[0].total_progress == pytest.approx(27.5)

    def test_encoding_maps_into_render_band(self):
        updates = []
        reporter = _ProgressReporter("job", updates.append, min_interval_ms=0)

        reporter.encoding(100.0)

        assert updates[0].total_progress == 95.0

    def test_batch_overall_percent(self):
        progress = ClipBatchRenderProgress(
            current_job_index=1,
            total_jobs=4,
            current_job_progress=ClipRenderProgress("j", RenderPhase.VIDEO_RENDERING, 50.0, 60.0),
        )

        assert progress.overall_percent == pytest.approx(40.0)
        assert ClipBatchRenderProgress(0, 0).overall_percent == 0.0


class TestFilterBuilding:
    """Tests for filter chain and graph construction."""

    @pytest.fixture
    def service(self, extractor):
        return RenderingService(frame_extractor=extractor, encoder=FakeEncoder())

    def test_simple_filters_without_crop_or_size(self, service):
        assert service.build_simple_filters(0, 0, None, None) == []

    def test_simple_filters_with_subtitles_last(self, service):
        crop = create_center_crop(1920, 1080)

        filters = service.build_simple_filters(1080, 1920, crop, "/tmp/s.ass")

        assert [f.name for f in filters] == ["crop", "scale", "pad", "ass"]

    def test_split_graph_with_logo_and_subtitles(self, service, source_video, tmp_path):
        job = make_job(source_video, tmp_path, logo_position=LogoPosition.TOP_RIGHT)
        layout = plan_split_layout(
            SplitLayoutConfig(preset=SplitLayoutPreset.TOP_BOTTOM), 1920, 1080, 1920
        )

        graph, output = service.build_filter_graph(job, None, layout, "/tmp/s.ass", True, 1920)

        assert output == "v8"
        assert graph.render() == (
            "[0:v]split=2[v1][v2];"
            "[v1]crop=1920:540:0:0,scale=1080:960:force_original_aspect_ratio=increase,"
            "crop=1080:960,setsar=1[v3];"
            "[v2]crop=1920:540:0:540,scale=1080:960:force_original_aspect_ratio=increase,"
            "crop=1080:960,setsar=1[v4];"
            "[v3][v4]vstack=inputs=2[v5];"
            "[1:v]scale=162:-1[v6];"
            "[v5][v6]overlay=main_w-overlay_w-30:30[v7];"
            "[v7]ass='/tmp/s.ass'[v8]"
        )

    def test_bottom_left_logo(self, service, source_video, tmp_path):
        job = make_job(source_video, tmp_path, logo_position=LogoPosition.BOTTOM_LEFT, logo_margin=12)

        graph, _ = service.build_filter_graph(job, None, None, None, True)

        assert "overlay=12:main_h-overlay_h-12" in graph.render()


class TestCreateJobFromCandidate:

    @pytest.fixture
    def candidate(self):
        return ClipCandidate(
            start_time_ms=3723000,
            end_time_ms=3753000,
            score=88,
            reason="Great hook",
            preview_text="...",
            source_draft_id="draft-1",
        )

    def test_portrait_job(self, extractor, candidate):
        service = RenderingService(frame_extractor=extractor, encoder=FakeEncoder())

        job = service.create_job_from_candidate(candidate, "/videos/My Talk.mp4", "/clips")

        assert job.output_path == os.path.join("/clips", "My Talk_clip_01-02-03.mp4")
        assert (job.start_time_ms, job.end_time_ms) == (3723000, 3753000)
        assert job.candidate_id == candidate.id
        assert job.source_draft_id == "draft-1"
        assert job.crop_mode == CropMode.AUTO_DETECT
        assert (job.output_width, job.output_height) == (1080, 1920)

    def test_keep_original_framing(self, extractor, candidate):
        service = RenderingService(frame_extractor=extractor, encoder=FakeEncoder())

        job = service.create_job_from_candidate(
            candidate, "/videos/talk.mp4", "/clips", convert_to_portrait=False
        )

        assert job.crop_mode == CropMode.NONE
        assert (job.output_width, job.output_height) == (0, 0)
