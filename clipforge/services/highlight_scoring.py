"""
Highlight Scoring Service - Ranks candidate windows with an LLM.

Windows are packed into prompt-sized chunks, scored concurrently under a
permit limit, and the parsed results are merged into a non-overlapping
selection ordered by score.
"""

import asyncio
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

from clipforge.config import get_settings
from clipforge.services.llm_client import (
    LlmClient,
    LlmUnavailableError,
    is_unavailable_response,
)
from clipforge.services.window_generator import CandidateWindow

logger = logging.getLogger(__name__)

MAX_CANDIDATES_LIMIT = 20
PREVIEW_TEXT_LIMIT = 200

DEFAULT_SCORING_PROMPT = """You are a social media content expert. Analyze the following transcript \
excerpts and rate them as potential highlights for TikTok, Instagram Reels and YouTube Shorts.

CONTEXT (if any): {content_context}

SCORING CRITERIA (0-25 points each):
1. Hook: Does the opening grab attention immediately?
2. Clarity: Is it understandable without prior context?
3. Emotion: Does it trigger a reaction (laughter, surprise, reflection)?
4. Shareability: Would people share or comment on it?

CANDIDATES:
{windows}

RULES:
- Select at most {max_candidates} candidates with a score above 60
- Clip length: 15-90 seconds
- You may adjust start/end slightly for a cleaner cut
- Candidates must not overlap
- Prefer passages with a clear beginning and end

Respond with JSON only (just the array, no markdown):
[
  {
    "index": 1,
    "start": "00:01:23.500",
    "end": "00:02:15.200",
    "score": 85,
    "reason": "Strong hook, surprising twist, emotional"
  }
]"""

# H:MM:SS(.fff), MM:SS(.fff) and M:SS(.fff)
_TIMESTAMP_PATTERN = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{2})(?:\.(\d+))?$")


@dataclass
class ClipCandidate:
    """A scored highlight slated for rendering."""

    start_time_ms: int
    end_time_ms: int
    score: float
    reason: str
    preview_text: str
    source_draft_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def duration_ms(self) -> int:
        return self.end_time_ms - self.start_time_ms

    def overlaps(self, other: "ClipCandidate") -> bool:
        return self.start_time_ms < other.end_time_ms and other.start_time_ms < self.end_time_ms


@dataclass(frozen=True)
class ParsedCandidate:
    """One LLM array element that resolved to a window."""

    window: CandidateWindow
    start_time_ms: int
    end_time_ms: int
    score: float
    reason: str


@dataclass(frozen=True)
class ParseError:
    """One LLM array element that was dropped, with the reason."""

    position: int
    reason: str


ParseResult = Union[ParsedCandidate, ParseError]


class HighlightScoringService:
    """
    Scores candidate windows as short-form highlights.

    Fails soft: an unavailable LLM, malformed responses or failing chunks
    produce fewer (or no) candidates. Only cancellation propagates.
    """

    def __init__(
        self,
        llm_client: LlmClient,
        custom_prompt: Optional[str] = None,
        max_concurrent_requests: Optional[int] = None,
        min_clip_duration_ms: Optional[int] = None,
        max_clip_duration_ms: Optional[int] = None,
    ):
        self.settings = get_settings()
        self.llm_client = llm_client
        self.prompt_template = custom_prompt or DEFAULT_SCORING_PROMPT
        self.max_concurrent_requests = max(
            1, max_concurrent_requests or self.settings.max_scoring_requests
        )
        self.min_clip_duration_ms = min_clip_duration_ms or self.settings.min_clip_duration_ms
        self.max_clip_duration_ms = max_clip_duration_ms or self.settings.max_clip_duration_ms
        self.min_score = self.settings.min_highlight_score

    async def score_highlights(
        self,
        windows: Sequence[CandidateWindow],
        content_context: Optional[str] = None,
        source_draft_id: Optional[str] = None,
        max_candidates: Optional[int] = None,
        min_clip_duration_ms: Optional[int] = None,
        max_clip_duration_ms: Optional[int] = None,
    ) -> list[ClipCandidate]:
        """
        Score windows and select the best non-overlapping highlights.

        Args:
            windows: Candidate windows from the window generator
            content_context: Optional description of the video (title, topic)
            source_draft_id: Draft the candidates belong to
            max_candidates: Upper bound on returned candidates (clamped to 1..20)
            min_clip_duration_ms: Shortest clip to keep (defaults to the service bound)
            max_clip_duration_ms: Longest clip to keep (defaults to the service bound)

        Returns:
            Selected candidates, highest score first
        """
        limit = max_candidates if max_candidates is not None else self.settings.max_candidates
        limit = min(max(limit, 1), MAX_CANDIDATES_LIMIT)

        if not windows:
            return []

        if not await self.llm_client.try_initialize():
            logger.error("LLM client not available, skipping highlight scoring")
            return []

        bounds = (
            min_clip_duration_ms or self.min_clip_duration_ms,
            max_clip_duration_ms or self.max_clip_duration_ms,
        )
        chunks = self.build_chunks(windows)
        logger.info(f"Scoring {len(windows)} windows in {len(chunks)} chunks")

        semaphore = asyncio.Semaphore(self.max_concurrent_requests)
        chunk_results = await asyncio.gather(*[
            self._score_chunk(
                chunk, chunk_index, semaphore, content_context, source_draft_id, limit, bounds
            )
            for chunk_index, chunk in enumerate(chunks)
        ])

        all_candidates = [c for chunk in chunk_results for c in chunk]
        selected = select_candidates(all_candidates, limit, self.min_score)
        logger.info(
            f"Selected {len(selected)} of {len(all_candidates)} scored candidates "
            f"(min score {self.min_score:.0f})"
        )
        return selected

    def build_chunks(self, windows: Sequence[CandidateWindow]) -> list[list[CandidateWindow]]:
        """Pack windows into chunks bounded by an approximate character budget."""
        budget = self.settings.scoring_chunk_chars
        overhead = self.settings.scoring_window_overhead_chars

        chunks: list[list[CandidateWindow]] = []
        current: list[CandidateWindow] = []
        current_chars = 0

        for window in windows:
            estimate = len(window.text) + overhead
            if current and current_chars + estimate > budget:
                chunks.append(current)
                current = []
                current_chars = 0
            current.append(window)
            current_chars += estimate

        if current:
            chunks.append(current)
        return chunks

    def build_prompt(
        self,
        windows: Sequence[CandidateWindow],
        content_context: Optional[str],
        max_candidates: int,
    ) -> str:
        """Fill the prompt template for one chunk."""
        lines = [
            f"{i}. [{format_timestamp(w.start_time_ms)} - {format_timestamp(w.end_time_ms)}] {w.text}"
            for i, w in enumerate(windows, start=1)
        ]
        context = content_context.strip() if content_context and content_context.strip() else "-"
        return (
            self.prompt_template
            .replace("{content_context}", context)
            .replace("{max_candidates}", str(max_candidates))
            .replace("{windows}", "\n".join(lines))
        )

    async def _score_chunk(
        self,
        chunk: list[CandidateWindow],
        chunk_index: int,
        semaphore: asyncio.Semaphore,
        content_context: Optional[str],
        source_draft_id: Optional[str],
        max_candidates: int,
        bounds: tuple[int, int],
    ) -> list[ClipCandidate]:
        async with semaphore:
            prompt = self.build_prompt(chunk, content_context, max_candidates)
            try:
                response = await self.llm_client.complete(prompt)
            except LlmUnavailableError as e:
                logger.warning(f"Chunk {chunk_index}: LLM unavailable: {e}")
                return []
            except Exception as e:
                logger.warning(f"Chunk {chunk_index}: LLM request failed: {e}")
                return []

        if is_unavailable_response(response):
            logger.warning(f"Chunk {chunk_index}: LLM returned no usable response")
            return []

        candidates: list[ClipCandidate] = []
        for result in self.parse_response(response, chunk, bounds):
            if isinstance(result, ParseError):
                logger.warning(f"Chunk {chunk_index}: dropped element {result.position}: {result.reason}")
                continue
            candidates.append(ClipCandidate(
                start_time_ms=result.start_time_ms,
                end_time_ms=result.end_time_ms,
                score=result.score,
                reason=result.reason,
                preview_text=make_preview_text(result.window.text),
                source_draft_id=source_draft_id,
            ))

        logger.debug(f"Chunk {chunk_index}: {len(candidates)} candidates from {len(chunk)} windows")
        return candidates

    def parse_response(
        self,
        response: str,
        chunk: Sequence[CandidateWindow],
        bounds: Optional[tuple[int, int]] = None,
    ) -> list[ParseResult]:
        """
        Parse an LLM response against the windows of the chunk it was asked about.

        Returns one ParsedCandidate or ParseError per array element. A response
        that holds no JSON array yields an empty list. ``bounds`` overrides the
        service clip duration range as (min_ms, max_ms).
        """
        elements = extract_json_array(response)
        if elements is None:
            logger.warning("LLM response did not contain a JSON array")
            return []

        min_ms, max_ms = bounds or (self.min_clip_duration_ms, self.max_clip_duration_ms)
        return [
            self._parse_element(element, position, chunk, min_ms, max_ms)
            for position, element in enumerate(elements, start=1)
        ]

    def _parse_element(
        self,
        element: Any,
        position: int,
        chunk: Sequence[CandidateWindow],
        min_clip_duration_ms: int,
        max_clip_duration_ms: int,
    ) -> ParseResult:
        if not isinstance(element, dict):
            return ParseError(position, "element is not an object")

        index = element.get("index")
        if isinstance(index, bool) or not isinstance(index, int):
            return ParseError(position, f"invalid index {index!r}")
        if index < 1 or index > len(chunk):
            return ParseError(position, f"index {index} outside 1..{len(chunk)}")
        window = chunk[index - 1]

        score = parse_score(element.get("score"))
        if score is None:
            return ParseError(position, f"invalid score {element.get('score')!r}")

        reason = element.get("reason")
        reason = reason.strip() if isinstance(reason, str) else ""

        start_ms = window.start_time_ms
        if element.get("start") is not None:
            parsed = parse_timestamp(element.get("start"))
            if parsed is None:
                logger.debug(f"Unparseable start timestamp {element.get('start')!r}, using window start")
            else:
                start_ms = parsed

        end_ms = window.end_time_ms
        if element.get("end") is not None:
            parsed = parse_timestamp(element.get("end"))
            if parsed is None:
                logger.debug(f"Unparseable end timestamp {element.get('end')!r}, using window end")
            else:
                end_ms = parsed

        normalized = normalize_candidate_range(
            start_ms,
            end_ms,
            window.start_time_ms,
            window.end_time_ms,
            min_clip_duration_ms,
            max_clip_duration_ms,
        )
        if normalized is None:
            return ParseError(position, f"no valid range for {start_ms}-{end_ms}ms inside window")

        return ParsedCandidate(
            window=window,
            start_time_ms=normalized[0],
            end_time_ms=normalized[1],
            score=score,
            reason=reason,
        )


def select_candidates(
    candidates: Sequence[ClipCandidate],
    max_candidates: int,
    min_score: float = 60.0,
) -> list[ClipCandidate]:
    """
    Greedy interval selection by score.

    Candidates below min_score are dropped, the rest are visited highest score
    first (stable, so ties keep their input order) and accepted when they do
    not overlap an already accepted candidate.
    """
    eligible = [c for c in candidates if c.score >= min_score]
    eligible.sort(key=lambda c: c.score, reverse=True)

    selected: list[ClipCandidate] = []
    for candidate in eligible:
        if len(selected) >= max_candidates:
            break
        if any(candidate.overlaps(other) for other in selected):
            continue
        selected.append(candidate)
    return selected


def normalize_candidate_range(
    start_ms: int,
    end_ms: int,
    window_start_ms: int,
    window_end_ms: int,
    min_duration_ms: int,
    max_duration_ms: int,
) -> Optional[tuple[int, int]]:
    """
    Clamp a suggested range into its window and force its duration into bounds.

    Short ranges grow forward, or backward when the window end is reached.
    Long ranges are shortened from the end. Returns None when no range inside
    the window satisfies the bounds.
    """
    start = min(max(start_ms, window_start_ms), window_end_ms)
    end = min(max(end_ms, window_start_ms), window_end_ms)
    if end <= start:
        return None

    duration = end - start
    if duration < min_duration_ms:
        end = start + min_duration_ms
        if end > window_end_ms:
            end = window_end_ms
            start = max(window_start_ms, end - min_duration_ms)
    elif duration > max_duration_ms:
        end = start + max_duration_ms

    duration = end - start
    if duration <= 0 or duration < min_duration_ms or duration > max_duration_ms:
        return None
    return start, end


def extract_json_array(text: str) -> Optional[list]:
    """Decode the JSON array between the first '[' and the last ']'."""
    if not text:
        return None
    start = text.find("[")
    end = text.rfind("]")
    if start < 0 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, list) else None


def parse_score(value: Any) -> Optional[float]:
    """Accept numbers and numeric strings, clamped to 0..100."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        score = float(value)
    elif isinstance(value, str):
        try:
            score = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if score != score:  # NaN
        return None
    return min(max(score, 0.0), 100.0)


def parse_timestamp(value: Any) -> Optional[int]:
    """Parse ``H:MM:SS.fff`` style timestamps (hours and fraction optional) to ms."""
    if not isinstance(value, str):
        return None
    match = _TIMESTAMP_PATTERN.match(value.strip())
    if not match:
        return None

    hours = int(match.group(1) or 0)
    minutes = int(match.group(2))
    seconds = int(match.group(3))
    if seconds >= 60 or (match.group(1) is not None and minutes >= 60):
        return None

    fraction = match.group(4) or "0"
    millis = int(fraction[:3].ljust(3, "0"))
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + millis


def format_timestamp(ms: int) -> str:
    """Format milliseconds as ``HH:MM:SS.fff``."""
    ms = max(0, int(ms))
    hours, rem = divmod(ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def make_preview_text(text: str) -> str:
    text = text.strip()
    if len(text) <= PREVIEW_TEXT_LIMIT:
        return text
    return text[:PREVIEW_TEXT_LIMIT - 3] + "..."
