"""
Candidate window generator.

Slides a window across the transcript and collects bounded time spans that are
worth sending to the highlight scorer. Pure and deterministic.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

from clipforge.services.transcript_store import TimedSegment

logger = logging.getLogger(__name__)

DEFAULT_MIN_DURATION_MS = 15_000
DEFAULT_MAX_DURATION_MS = 90_000
DEFAULT_STEP_MS = 10_000

# Windows overlapping more than this share of the shorter one are near-duplicates
DUPLICATE_OVERLAP_RATIO = 0.8


@dataclass(frozen=True)
class CandidateWindow:
    """A bounded transcript span considered for highlight scoring."""

    start_time_ms: int
    end_time_ms: int
    text: str
    segments: tuple[TimedSegment, ...]
    start_segment_index: int
    end_segment_index: int

    @property
    def duration_ms(self) -> int:
        return self.end_time_ms - self.start_time_ms


def generate_windows(
    segments: Sequence[TimedSegment],
    min_duration_ms: int = DEFAULT_MIN_DURATION_MS,
    max_duration_ms: int = DEFAULT_MAX_DURATION_MS,
    step_ms: int = DEFAULT_STEP_MS,
) -> list[CandidateWindow]:
    """
    Generate deduplicated candidate windows from transcript segments.

    At every step three target lengths are tried (min, midpoint, max). The
    window is snapped to the segments it overlaps and kept only if the snapped
    span still fits within [min_duration_ms, max_duration_ms].

    Args:
        segments: Transcript segments ordered by start time
        min_duration_ms: Shortest acceptable window
        max_duration_ms: Longest acceptable window
        step_ms: Distance between consecutive window starts

    Returns:
        Windows ordered by start time (longest first on ties)
    """
    if not segments or step_ms <= 0 or min_duration_ms <= 0 or max_duration_ms < min_duration_ms:
        return []

    total_duration_ms = segments[-1].end_time_ms
    targets = (
        min_duration_ms,
        (min_duration_ms + max_duration_ms) // 2,
        max_duration_ms,
    )

    windows: list[CandidateWindow] = []
    window_start = 0
    while window_start < total_duration_ms:
        for target in targets:
            window_end = min(window_start + target, total_duration_ms)
            window = _snap_to_segments(segments, window_start, window_end)
            if window and min_duration_ms <= window.duration_ms <= max_duration_ms:
                windows.append(window)
        window_start += step_ms

    deduplicated = _deduplicate(windows)
    logger.debug(
        f"Generated {len(deduplicated)} candidate windows "
        f"({len(windows)} before deduplication) from {len(segments)} segments"
    )
    return deduplicated


def _snap_to_segments(
    segments: Sequence[TimedSegment],
    window_start: int,
    window_end: int,
) -> CandidateWindow | None:
    first_index = -1
    last_index = -1
    for i, seg in enumerate(segments):
        if seg.end_time_ms > window_start and seg.start_time_ms < window_end:
            if first_index < 0:
                first_index = i
            last_index = i

    if first_index < 0:
        return None

    overlapping = tuple(segments[first_index:last_index + 1])
    start = overlapping[0].start_time_ms
    end = overlapping[-1].end_time_ms
    if end <= start:
        return None

    text = " ".join(s.text.strip() for s in overlapping if s.text.strip())
    if not text:
        return None

    return CandidateWindow(
        start_time_ms=start,
        end_time_ms=end,
        text=text,
        segments=overlapping,
        start_segment_index=first_index,
        end_segment_index=last_index,
    )


def _deduplicate(windows: list[CandidateWindow]) -> list[CandidateWindow]:
    ordered = sorted(windows, key=lambda w: (w.start_time_ms, -w.duration_ms))
    kept: list[CandidateWindow] = []
    for window in ordered:
        if not any(_is_near_duplicate(window, other) for other in kept):
            kept.append(window)
    return kept


def _is_near_duplicate(a: CandidateWindow, b: CandidateWindow) -> bool:
    overlap = min(a.end_time_ms, b.end_time_ms) - max(a.start_time_ms, b.start_time_ms)
    if overlap <= 0:
        return False
    shorter = min(a.duration_ms, b.duration_ms)
    return overlap > shorter * DUPLICATE_OVERLAP_RATIO
