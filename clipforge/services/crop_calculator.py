"""
Crop calculation from sampled face detections.

Faces from all sampled frames are clustered by position and the crop window is
placed horizontally according to the cluster layout. The crop always spans the
full source height.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from statistics import median
from typing import Iterable, List, Optional, Sequence

from clipforge.services.face_detector import FaceDetectionResult, FrameFaceAnalysis

logger = logging.getLogger(__name__)

DEFAULT_TARGET_ASPECT = 9 / 16
DEFAULT_CLUSTER_DISTANCE_PX = 100.0

# Largest cluster holding this share of all faces counts as a single subject
SINGLE_FACE_DOMINANCE = 0.8
# Clusters whose centers span at most this multiple of the crop width share one crop
MULTI_FACE_SPAN_FACTOR = 1.2


class CropStrategy(str, Enum):
    CENTER_FALLBACK = "center_fallback"
    SINGLE_FACE = "single_face"
    MULTIPLE_FACES = "multiple_faces"
    DOMINANT_FACE = "dominant_face"
    MANUAL = "manual"


@dataclass(frozen=True)
class CropRectangle:
    x: int
    y: int
    width: int
    height: int

    def to_filter_args(self) -> str:
        """FFmpeg ``crop`` arguments (w:h:x:y)."""
        return f"{self.width}:{self.height}:{self.x}:{self.y}"


@dataclass(frozen=True)
class CropRegionResult:
    """The crop applied to a source video and how it was chosen."""

    region: CropRectangle
    strategy: CropStrategy
    source_width: int
    source_height: int
    faces_considered: int = 0
    based_on_face_detection: bool = False


class _FaceCluster:
    """Running centroid of nearby faces. Only used during a clustering pass."""

    def __init__(self, face: FaceDetectionResult):
        self.faces: List[FaceDetectionResult] = [face]
        self.center_x = face.center_x
        self.center_y = face.center_y
        self.area_sum = face.area

    def add(self, face: FaceDetectionResult) -> None:
        self.faces.append(face)
        count = len(self.faces)
        self.center_x += (face.center_x - self.center_x) / count
        self.center_y += (face.center_y - self.center_y) / count
        self.area_sum += face.area

    def distance_to(self, face: FaceDetectionResult) -> float:
        dx = face.center_x - self.center_x
        dy = face.center_y - self.center_y
        return (dx * dx + dy * dy) ** 0.5

    @property
    def count(self) -> int:
        return len(self.faces)

    @property
    def average_area(self) -> float:
        return self.area_sum / self.count

    @property
    def median_center_x(self) -> float:
        return median(f.center_x for f in self.faces)


@dataclass(frozen=True)
class FaceClusterSummary:
    """Read-only view of a face cluster."""

    center_x: float
    center_y: float
    face_count: int
    average_area: float


def _cluster(
    faces: Iterable[FaceDetectionResult],
    distance_threshold: float,
) -> List[_FaceCluster]:
    clusters: List[_FaceCluster] = []
    for face in faces:
        for cluster in clusters:
            if cluster.distance_to(face) <= distance_threshold:
                cluster.add(face)
                break
        else:
            clusters.append(_FaceCluster(face))
    return clusters


def cluster_faces(
    faces: Iterable[FaceDetectionResult],
    distance_threshold: float = DEFAULT_CLUSTER_DISTANCE_PX,
) -> List[FaceClusterSummary]:
    """
    Single-pass clustering: each face joins the first cluster whose centroid
    is within distance_threshold pixels, otherwise it starts a new cluster.
    """
    return [
        FaceClusterSummary(
            center_x=c.center_x,
            center_y=c.center_y,
            face_count=c.count,
            average_area=c.average_area,
        )
        for c in _cluster(faces, distance_threshold)
    ]


def crop_width_for(source_width: int, source_height: int, target_aspect: float) -> int:
    """Crop width for a full-height crop at the target aspect (width / height)."""
    width = int(round(source_height * target_aspect))
    return max(1, min(width, source_width))


def target_aspect_for(target_width: int, target_height: int) -> float:
    if target_width > 0 and target_height > 0:
        return target_width / target_height
    return DEFAULT_TARGET_ASPECT


def _region_centered_at(center_x: float, crop_width: int, source_width: int, source_height: int) -> CropRectangle:
    x = int(round(center_x - crop_width / 2))
    x = max(0, min(x, source_width - crop_width))
    return CropRectangle(x=x, y=0, width=crop_width, height=source_height)


def create_center_crop(
    source_width: int,
    source_height: int,
    target_aspect: float = DEFAULT_TARGET_ASPECT,
) -> CropRegionResult:
    """Full-height crop centered on the source frame."""
    crop_width = crop_width_for(source_width, source_height, target_aspect)
    return CropRegionResult(
        region=CropRectangle(
            x=max(0, (source_width - crop_width) // 2),
            y=0,
            width=crop_width,
            height=source_height,
        ),
        strategy=CropStrategy.CENTER_FALLBACK,
        source_width=source_width,
        source_height=source_height,
    )


def create_manual_crop(
    source_width: int,
    source_height: int,
    target_aspect: float,
    offset_x: float,
) -> CropRegionResult:
    """
    Full-height crop shifted by a normalized offset.

    offset_x is clamped to [-1, 1]: -1 puts the crop at the left edge, 1 at the
    right edge and 0 in the center.
    """
    crop_width = crop_width_for(source_width, source_height, target_aspect)
    offset = min(max(offset_x, -1.0), 1.0)
    travel = max(0, (source_width - crop_width) / 2)
    center_x = source_width / 2 + offset * travel
    return CropRegionResult(
        region=_region_centered_at(center_x, crop_width, source_width, source_height),
        strategy=CropStrategy.MANUAL,
        source_width=source_width,
        source_height=source_height,
    )


def calculate_crop_region(
    analyses: Sequence[FrameFaceAnalysis],
    source_width: int,
    source_height: int,
    target_width: int = 0,
    target_height: int = 0,
    preferred_strategy: CropStrategy = CropStrategy.MULTIPLE_FACES,
    distance_threshold: float = DEFAULT_CLUSTER_DISTANCE_PX,
) -> CropRegionResult:
    """
    Choose a crop window from face detections across sampled frames.

    Args:
        analyses: Per-frame face detections
        source_width: Source frame width in pixels
        source_height: Source frame height in pixels
        target_width: Output width (0 uses 9:16)
        target_height: Output height (0 uses 9:16)
        preferred_strategy: DOMINANT_FACE labels a shared multi-face crop as dominant
        distance_threshold: Clustering radius in pixels

    Returns:
        CropRegionResult with the region and chosen strategy
    """
    target_aspect = target_aspect_for(target_width, target_height)
    faces = [face for analysis in analyses for face in analysis.faces]
    if not faces:
        logger.debug("No faces detected, using center crop")
        return create_center_crop(source_width, source_height, target_aspect)

    crop_width = crop_width_for(source_width, source_height, target_aspect)
    clusters = _cluster(faces, distance_threshold)
    largest = max(clusters, key=lambda c: c.count)

    if len(clusters) == 1 or largest.count >= SINGLE_FACE_DOMINANCE * len(faces):
        strategy = CropStrategy.SINGLE_FACE
        center_x = largest.median_center_x
    else:
        centers = [c.center_x for c in clusters]
        span = max(centers) - min(centers)
        if span <= MULTI_FACE_SPAN_FACTOR * crop_width:
            strategy = (
                CropStrategy.DOMINANT_FACE
                if preferred_strategy == CropStrategy.DOMINANT_FACE
                else CropStrategy.MULTIPLE_FACES
            )
            center_x = (max(centers) + min(centers)) / 2
        else:
            strategy = CropStrategy.DOMINANT_FACE
            dominant = max(clusters, key=lambda c: c.average_area)
            center_x = dominant.median_center_x

    logger.debug(
        f"Crop strategy {strategy.value}: {len(faces)} faces in {len(clusters)} clusters, "
        f"center x={center_x:.0f}"
    )
    return CropRegionResult(
        region=_region_centered_at(center_x, crop_width, source_width, source_height),
        strategy=strategy,
        source_width=source_width,
        source_height=source_height,
        faces_considered=len(faces),
        based_on_face_detection=True,
    )


def faces_need_two_crops(
    analyses: Sequence[FrameFaceAnalysis],
    source_width: int,
    source_height: int,
    target_aspect: float = DEFAULT_TARGET_ASPECT,
    distance_threshold: float = DEFAULT_CLUSTER_DISTANCE_PX,
) -> Optional[tuple[float, float]]:
    """
    Centers of the two most populated clusters when they cannot share one crop.

    Returns (left_center_x, right_center_x) or None.
    """
    faces = [face for analysis in analyses for face in analysis.faces]
    clusters = sorted(_cluster(faces, distance_threshold), key=lambda c: c.count, reverse=True)
    if len(clusters) < 2:
        return None
    if clusters[0].count >= SINGLE_FACE_DOMINANCE * len(faces):
        return None

    crop_width = crop_width_for(source_width, source_height, target_aspect)
    first, second = clusters[0].median_center_x, clusters[1].median_center_x
    if abs(first - second) <= MULTI_FACE_SPAN_FACTOR * crop_width:
        return None
    return min(first, second), max(first, second)
