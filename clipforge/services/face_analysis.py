"""
Face Analysis Service - Samples a video and detects faces per sampled frame.

Frames are extracted one after another (FFmpeg is the bottleneck and would
thrash the disk in parallel); detection runs on a bounded thread pool.
"""

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from clipforge.config import get_settings
from clipforge.services.face_detector import FaceDetector, FrameFaceAnalysis
from clipforge.services.frame_extractor import FrameExtractor, VideoProbeError

logger = logging.getLogger(__name__)


def build_sample_schedule(
    start_ms: int,
    end_ms: int,
    interval_ms: int,
    max_samples: int,
) -> List[int]:
    """
    Evenly spaced sample timestamps across [start_ms, end_ms].

    The interval is widened when the range would need more than max_samples
    samples. Timestamps never pass end_ms.
    """
    duration = end_ms - start_ms
    if duration < 0 or interval_ms <= 0 or max_samples <= 0:
        return []
    if duration == 0:
        return [start_ms]

    count = duration // interval_ms + 1
    step = float(interval_ms)
    if count > max_samples:
        count = max_samples
        step = duration / (max_samples - 1) if max_samples > 1 else float(duration)

    return [min(end_ms, start_ms + int(round(i * step))) for i in range(int(count))]


class FaceAnalysisService:
    """Runs face detection over sampled frames of a video."""

    def __init__(
        self,
        face_detector: Optional[FaceDetector],
        frame_extractor: Optional[FrameExtractor] = None,
        max_samples: Optional[int] = None,
        max_workers: Optional[int] = None,
    ):
        self.settings = get_settings()
        self.face_detector = face_detector
        self.frame_extractor = frame_extractor or FrameExtractor()
        self.max_samples = max_samples or self.settings.face_max_samples
        # Leave most cores to the encoder and the caller
        self.max_workers = max_workers or max(1, (os.cpu_count() or 1) // 3)

    def is_ready(self) -> bool:
        return self.face_detector is not None and self.face_detector.is_ready()

    async def analyze_video(
        self,
        video_path: str,
        sample_interval_ms: Optional[int] = None,
        range_start_ms: Optional[int] = None,
        range_end_ms: Optional[int] = None,
    ) -> List[FrameFaceAnalysis]:
        """
        Sample frames across a time range and detect faces in each.

        Args:
            video_path: Source video
            sample_interval_ms: Spacing between samples (widened to respect max_samples)
            range_start_ms: Range start (defaults to 0)
            range_end_ms: Range end (defaults to the video duration)

        Returns:
            One analysis per successfully extracted frame, sorted by timestamp
        """
        if not self.is_ready():
            logger.warning("Face detector not available, skipping face analysis")
            return []
        if not os.path.isfile(video_path):
            logger.warning(f"Video not found for face analysis: {video_path}")
            return []

        try:
            metadata = await self.frame_extractor.probe(video_path)
        except VideoProbeError as e:
            logger.warning(f"Cannot probe {video_path}: {e}")
            return []

        start_ms = min(max(range_start_ms or 0, 0), metadata.duration_ms)
        end_ms = metadata.duration_ms if range_end_ms is None else range_end_ms
        end_ms = min(max(end_ms, start_ms), metadata.duration_ms)

        interval_ms = sample_interval_ms or self.settings.face_sample_interval_ms
        timestamps = build_sample_schedule(start_ms, end_ms, interval_ms, self.max_samples)
        logger.info(f"Sampling {len(timestamps)} frames between {start_ms}ms and {end_ms}ms")

        frames: list[tuple[int, bytes]] = []
        for timestamp_ms in timestamps:
            image = await self.frame_extractor.extract_frame(video_path, timestamp_ms)
            if image:
                frames.append((timestamp_ms, image))

        if not frames:
            return []

        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            analyses = await asyncio.gather(*[
                loop.run_in_executor(executor, self._analyze_frame, timestamp_ms, image)
                for timestamp_ms, image in frames
            ])
        finally:
            # Queued detections are dropped on cancellation instead of blocking the loop
            executor.shutdown(wait=False, cancel_futures=True)

        analyses.sort(key=lambda a: a.timestamp_ms)
        face_count = sum(len(a.faces) for a in analyses)
        logger.info(f"Detected {face_count} faces in {len(analyses)} frames")
        return analyses

    def _analyze_frame(self, timestamp_ms: int, image: bytes) -> FrameFaceAnalysis:
        try:
            faces = self.face_detector.detect(image)
        except Exception as e:
            logger.warning(f"Face detection failed at {timestamp_ms}ms: {e}")
            faces = []
        return FrameFaceAnalysis(timestamp_ms=timestamp_ms, faces=faces)
