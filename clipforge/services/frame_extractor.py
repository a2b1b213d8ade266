"""
Frame extraction service using FFmpeg.

Provides the two video capabilities face analysis needs: probing a file for its
dimensions and duration, and pulling a single still frame as JPEG bytes.
"""

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

import cv2

from clipforge.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class VideoMetadata:
    """Video file metadata."""

    duration_ms: int
    width: int
    height: int
    fps: float
    codec: str


class VideoProbeError(Exception):
    """Exception raised when a video cannot be probed."""
    pass


class FrameExtractor:
    """
    Service for probing videos and extracting still frames with FFmpeg.
    """

    def __init__(self, ffmpeg_path: Optional[str] = None, ffprobe_path: Optional[str] = None):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path

    async def probe(self, video_path: str) -> VideoMetadata:
        """Probe a video without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.get_video_metadata, video_path)

    def get_video_metadata(self, video_path: str) -> VideoMetadata:
        """
        Get metadata for a video file using ffprobe.

        Falls back to OpenCV when ffprobe is missing or fails.

        Args:
            video_path: Path to the video file

        Returns:
            VideoMetadata object with video properties

        Raises:
            VideoProbeError: If neither ffprobe nor OpenCV can read the file
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height,r_frame_rate,codec_name,duration",
            "-show_entries", "format=duration",
            "-of", "json",
            video_path,
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
            metadata = parse_ffprobe_output(result.stdout)
            if metadata.width > 0 and metadata.height > 0 and metadata.duration_ms > 0:
                return metadata
            logger.warning(f"ffprobe returned incomplete metadata for {video_path}, using OpenCV fallback")
        except (OSError, subprocess.CalledProcessError, ValueError) as e:
            logger.warning(f"ffprobe failed, using OpenCV fallback: {e}")

        return self._get_metadata_with_opencv(video_path)

    def _get_metadata_with_opencv(self, video_path: str) -> VideoMetadata:
        cap = cv2.VideoCapture(video_path)
        if not cap.isOpened():
            raise VideoProbeError(f"Cannot open video file: {video_path}")

        try:
            width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        finally:
            cap.release()

        return VideoMetadata(
            duration_ms=int((frame_count / fps) * 1000) if fps > 0 else 0,
            width=width,
            height=height,
            fps=fps,
            codec="unknown",
        )

    async def extract_frame(self, video_path: str, timestamp_ms: int) -> Optional[bytes]:
        """
        Extract a single frame as JPEG bytes.

        Returns None if FFmpeg produced no image. The FFmpeg process is killed
        if the calling task is cancelled.
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-ss", f"{max(0, timestamp_ms) / 1000:.3f}",
            "-i", video_path,
            "-frames:v", "1",
            "-q:v", "2",
            "-f", "mjpeg",
            "pipe:1",
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Cannot start ffmpeg for frame extraction: {e}")
            return None

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0 or not stdout:
            error_msg = stderr.decode(errors="replace")[-300:] if stderr else "no output"
            logger.warning(f"Frame extraction at {timestamp_ms}ms failed: {error_msg}")
            return None
        return stdout


def parse_ffprobe_output(output: str) -> VideoMetadata:
    """Parse ``ffprobe -of json`` output for the first video stream."""
    data = json.loads(output or "{}")
    streams = data.get("streams") or [{}]
    stream = streams[0]

    fps = 30.0
    rate = stream.get("r_frame_rate", "")
    if "/" in rate:
        num, den = rate.split("/", 1)
        try:
            fps = float(num) / float(den)
        except (ValueError, ZeroDivisionError):
            pass

    duration_s = stream.get("duration") or (data.get("format") or {}).get("duration") or 0
    return VideoMetadata(
        duration_ms=int(float(duration_s) * 1000),
        width=int(stream.get("width") or 0),
        height=int(stream.get("height") or 0),
        fps=fps,
        codec=stream.get("codec_name") or "unknown",
    )
