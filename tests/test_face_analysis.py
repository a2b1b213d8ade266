"""
Tests for frame sampling and face analysis.
"""

import asyncio

import pytest

from clipforge.services.face_analysis import FaceAnalysisService, build_sample_schedule
from clipforge.services.frame_extractor import VideoMetadata, VideoProbeError
from tests.conftest import make_face


class TestBuildSampleSchedule:
    """Tests for sample timestamp scheduling."""

    def test_regular_interval(self):
        assert build_sample_schedule(0, 10000, 2000, 30) == [0, 2000, 4000, 6000, 8000, 10000]

    def test_capped_at_max_samples(self):
        schedule = build_sample_schedule(0, 600000, 2000, 30)

        assert len(schedule) == 30
        assert schedule[0] == 0
        assert schedule[-1] == 600000

    def test_offset_range(self):
        schedule = build_sample_schedule(5000, 9000, 2000, 30)
        assert schedule == [5000, 7000, 9000]

    def test_never_past_end(self):
        schedule = build_sample_schedule(0, 7000, 3000, 30)

        assert schedule == [0, 3000, 6000]
        assert all(t <= 7000 for t in schedule)

    def test_zero_length_range(self):
        assert build_sample_schedule(4000, 4000, 2000, 30) == [4000]

    @pytest.mark.parametrize("start,end,interval,max_samples", [
        (5000, 1000, 2000, 30),
        (0, 10000, 0, 30),
        (0, 10000, 2000, 0),
    ])
    def test_invalid(self, start, end, interval, max_samples):
        assert build_sample_schedule(start, end, interval, max_samples) == []


class TestFaceAnalysisService:
    """Tests for FaceAnalysisService with stubbed extractor and detector."""

    @pytest.fixture
    def video_file(self, tmp_path):
        path = tmp_path / "source.mp4"
        path.write_bytes(b"not really a video")
        return str(path)

    @pytest.fixture
    def extractor(self, mocker):
        extractor = mocker.Mock()
        extractor.probe = mocker.AsyncMock(return_value=VideoMetadata(
            duration_ms=10000, width=1920, height=1080, fps=30.0, codec="h264",
        ))
        extractor.extract_frame = mocker.AsyncMock(
            side_effect=lambda path, timestamp_ms: f"frame-{timestamp_ms}".encode()
        )
        return extractor

    @pytest.fixture
    def detector(self, mocker):
        detector = mocker.Mock()
        detector.is_ready.return_value = True
        detector.detect.side_effect = lambda image: [make_face(500)]
        return detector

    def test_analyzes_every_sampled_frame(self, video_file, extractor, detector):
        service = FaceAnalysisService(detector, extractor, max_workers=2)

        analyses = asyncio.run(service.analyze_video(video_file, sample_interval_ms=2000))

        assert [a.timestamp_ms for a in analyses] == [0, 2000, 4000, 6000, 8000, 10000]
        assert all(len(a.faces) == 1 for a in analyses)
        assert detector.detect.call_count == 6

    def test_results_sorted_by_timestamp(self, video_file, extractor, detector):
        service = FaceAnalysisService(detector, extractor, max_workers=4)

        analyses = asyncio.run(service.analyze_video(video_file, sample_interval_ms=1000))

        timestamps = [a.timestamp_ms for a in analyses]
        assert timestamps == sorted(timestamps)

    def test_respects_range_and_sample_cap(self, video_file, extractor, detector):
        service = FaceAnalysisService(detector, extractor, max_samples=3)

        analyses = asyncio.run(service.analyze_video(
            video_file, sample_interval_ms=500, range_start_ms=2000, range_end_ms=6000,
        ))

        assert [a.timestamp_ms for a in analyses] == [2000, 4000, 6000]

    def test_range_clamped_to_duration(self, video_file, extractor, detector):
        service = FaceAnalysisService(detector, extractor)

        analyses = asyncio.run(service.analyze_video(
            video_file, sample_interval_ms=2000, range_start_ms=8000, range_end_ms=60000,
        ))

        assert [a.timestamp_ms for a in analyses] == [8000, 10000]

    def test_failed_extractions_skipped(self, video_file, extractor, detector):
        extractor.extract_frame.side_effect = (
            lambda path, timestamp_ms: None if timestamp_ms == 4000 else b"frame"
        )
        service = FaceAnalysisService(detector, extractor)

        analyses = asyncio.run(service.analyze_video(video_file, sample_interval_ms=2000))

        assert 4000 not in [a.timestamp_ms for a in analyses]
        assert len(analyses) == 5

    def test_detection_error_yields_empty_frame(self, video_file, extractor, detector):
        def detect(image):
            if image == b"frame-2000":
                raise RuntimeError("model crashed")
            return [make_face(500)]

        detector.detect.side_effect = detect
        service = FaceAnalysisService(detector, extractor)

        analyses = asyncio.run(service.analyze_video(video_file, sample_interval_ms=2000))

        by_time = {a.timestamp_ms: a for a in analyses}
        assert by_time[2000].faces == []
        assert len(by_time[4000].faces) == 1

    def test_detector_unavailable(self, video_file, extractor, detector):
        detector.is_ready.return_value = False
        service = FaceAnalysisService(detector, extractor)

        assert not service.is_ready()
        assert asyncio.run(service.analyze_video(video_file)) == []
        extractor.probe.assert_not_called()

    def test_no_detector(self, video_file, extractor):
        service = FaceAnalysisService(None, extractor)
        assert asyncio.run(service.analyze_video(video_file)) == []

    def test_missing_video(self, extractor, detector):
        service = FaceAnalysisService(detector, extractor)
        assert asyncio.run(service.analyze_video("/nonexistent/video.mp4")) == []

    def test_probe_failure(self, video_file, extractor, detector):
        extractor.probe.side_effect = VideoProbeError("unreadable")
        service = FaceAnalysisService(detector, extractor)

        assert asyncio.run(service.analyze_video(video_file)) == []
