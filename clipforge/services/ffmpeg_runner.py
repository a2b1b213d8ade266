"""
FFmpeg encoder invocation with progress reporting and cancellation.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from typing import Callable, Optional

from clipforge.config import get_settings

logger = logging.getLogger(__name__)

# Seconds to wait for FFmpeg to exit after SIGTERM before killing it
TERMINATE_GRACE_SECONDS = 5.0
STDERR_TAIL_CHARS = 1000


class EncoderError(Exception):
    """Exception raised when FFmpeg is missing or exits with an error."""
    pass


@dataclass
class EncodeRequest:
    """Everything FFmpeg needs for one clip."""

    input_path: str
    output_path: str
    start_time_ms: int
    duration_ms: int
    video_filter: Optional[str] = None  # Linear chain for -vf
    filter_complex: Optional[str] = None  # Labelled graph for -filter_complex
    output_label: Optional[str] = None  # Graph pad mapped as the video output
    extra_inputs: list[str] = field(default_factory=list)  # e.g. logo image
    video_codec: str = "libx264"
    crf: int = 23
    preset: str = "medium"
    audio_codec: str = "aac"
    audio_bitrate_kbps: int = 192


class FFmpegEncoder:
    """Runs FFmpeg as an asyncio subprocess."""

    def __init__(self, ffmpeg_path: Optional[str] = None):
        self.ffmpeg_path = ffmpeg_path or get_settings().ffmpeg_path

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None

    def build_command(self, request: EncodeRequest) -> list[str]:
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-nostats",
            "-progress", "pipe:1",
            "-ss", f"{request.start_time_ms / 1000:.3f}",
            "-i", request.input_path,
        ]
        for extra in request.extra_inputs:
            cmd.extend(["-i", extra])

        cmd.extend(["-t", f"{request.duration_ms / 1000:.3f}"])

        if request.filter_complex:
            cmd.extend(["-filter_complex", request.filter_complex])
            cmd.extend(["-map", f"[{request.output_label}]" if request.output_label else "0:v"])
            cmd.extend(["-map", "0:a?"])
        elif request.video_filter:
            cmd.extend(["-vf", request.video_filter])

        cmd.extend([
            "-c:v", request.video_codec,
            "-crf", str(request.crf),
            "-preset", request.preset,
            "-c:a", request.audio_codec,
            "-b:a", f"{request.audio_bitrate_kbps}k",
            "-movflags", "+faststart",
            "-pix_fmt", "yuv420p",
            request.output_path,
        ])
        return cmd

    async def encode(
        self,
        request: EncodeRequest,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> None:
        """
        Encode a clip.

        Args:
            request: Encode parameters
            on_progress: Called with the encoded share of the clip (0-100)

        Raises:
            EncoderError: If FFmpeg cannot start or exits with an error
            asyncio.CancelledError: After FFmpeg has been stopped
        """
        cmd = self.build_command(request)
        logger.debug(f"Running: {' '.join(cmd[:12])}...")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderError(f"Cannot start FFmpeg: {e}") from e

        stderr_task = asyncio.create_task(_read_tail(process.stderr))
        try:
            await self._read_progress(process.stdout, request.duration_ms, on_progress)
            return_code = await process.wait()
        except asyncio.CancelledError:
            await _stop_process(process)
            stderr_task.cancel()
            raise

        stderr_tail = await stderr_task
        if return_code != 0:
            raise EncoderError(f"FFmpeg failed ({return_code}): {stderr_tail or 'Unknown error'}")

        if on_progress:
            on_progress(100.0)

    async def _read_progress(
        self,
        stream: asyncio.StreamReader,
        duration_ms: int,
        on_progress: Optional[Callable[[float], None]],
    ) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            percent = parse_progress_line(line.decode(errors="replace"), duration_ms)
            if percent is not None and on_progress:
                on_progress(percent)


def parse_progress_line(line: str, duration_ms: int) -> Optional[float]:
    """
    Percent complete from a ``-progress`` key=value line.

    ``out_time_us`` and ``out_time_ms`` both carry microseconds.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms") or duration_ms <= 0:
        return None
    try:
        encoded_us = int(value)
    except ValueError:
        return None
    if encoded_us < 0:
        return None
    return min(100.0, encoded_us / 1000 / duration_ms * 100)


async def _read_tail(stream: asyncio.StreamReader) -> str:
    tail = ""
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return tail
        tail = (tail + chunk.decode(errors="replace"))[-STDERR_TAIL_CHARS:]


async def _stop_process(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    logger.info("Stopping FFmpeg")
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
    except ProcessLookupError:
        return
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
