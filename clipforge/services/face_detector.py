"""
Face detection service with multi-tier detection fallback.

Detection Priority:
1. MediaPipe FaceDetection short-range (most accurate for close-up faces)
2. MediaPipe FaceDetection full-range (for small/distant faces)
3. Haar Cascade (final fallback)
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# MediaPipe keypoints: right eye, left eye, nose tip, mouth center, right ear, left ear
MAX_LANDMARKS = 5


@dataclass(frozen=True)
class FaceDetectionResult:
    """A face detected in one sampled frame (pixel coordinates)."""

    bbox: Tuple[int, int, int, int]  # x, y, width, height
    confidence: float
    landmarks: Tuple[Tuple[float, float], ...] = ()
    detection_method: str = "unknown"

    @property
    def center_x(self) -> float:
        return self.bbox[0] + self.bbox[2] / 2

    @property
    def center_y(self) -> float:
        return self.bbox[1] + self.bbox[3] / 2

    @property
    def area(self) -> float:
        return float(self.bbox[2] * self.bbox[3])


@dataclass
class FrameFaceAnalysis:
    """Face detections for one sampled frame."""

    timestamp_ms: int
    faces: List[FaceDetectionResult] = field(default_factory=list)


class FaceDetector:
    """
    Face detection with MediaPipe and a Haar cascade fallback.

    Detections below the confidence threshold are discarded.
    """

    def __init__(self, confidence_threshold: float = 0.7):
        """
        Initialize face detector.

        Args:
            confidence_threshold: Minimum confidence for kept detections
        """
        self.confidence_threshold = confidence_threshold

        self._mediapipe = None
        self._haar_cascade = None
        self._ready = False
        self._load_detectors()

    def _load_detectors(self) -> None:
        """Load all available detection backends."""
        detectors_loaded = []

        try:
            import mediapipe as mp
            self._mediapipe = mp.solutions.face_detection
            detectors_loaded.append("MediaPipe FaceDetection")
            logger.info("MediaPipe FaceDetection loaded (primary detector)")
        except ImportError:
            logger.warning("MediaPipe not available, will use fallback detectors")
        except AttributeError as e:
            logger.warning(f"MediaPipe FaceDetection solution unavailable: {e}")

        try:
            cascade_path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
            self._haar_cascade = cv2.CascadeClassifier(cascade_path)
            if self._haar_cascade.empty():
                self._haar_cascade = None
                logger.warning("Haar cascade failed to load")
            else:
                detectors_loaded.append("Haar Cascade")
                logger.info("Haar Cascade face detector loaded (final fallback)")
        except (AttributeError, cv2.error) as e:
            logger.warning(f"Haar cascade failed to load: {e}")

        self._ready = len(detectors_loaded) > 0
        logger.info(f"Face detector ready with {len(detectors_loaded)} backends: {detectors_loaded}")

    def is_ready(self) -> bool:
        """Check if at least one detector is ready."""
        return self._ready

    def detect(self, image_bytes: bytes) -> List[FaceDetectionResult]:
        """
        Detect faces in an encoded image (JPEG or PNG).

        Returns an empty list for undecodable images.
        """
        if not image_bytes:
            return []
        image = cv2.imdecode(np.frombuffer(image_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            logger.debug("Could not decode frame image")
            return []
        return self.detect_faces(image)

    def detect_faces(self, image: np.ndarray) -> List[FaceDetectionResult]:
        """
        Detect faces in a BGR image, trying detectors in priority order.

        Raises:
            RuntimeError: If no detection backend is available
        """
        if not self.is_ready():
            raise RuntimeError("No face detection backends available")

        height, width = image.shape[:2]
        detections: List[FaceDetectionResult] = []

        if self._mediapipe is not None:
            for model_selection in (0, 1):
                try:
                    detections = self._detect_with_mediapipe(image, width, height, model_selection)
                except Exception as e:
                    logger.warning(f"MediaPipe detection (model {model_selection}) failed: {e}")
                    detections = []
                if detections:
                    break

        if not detections and self._haar_cascade is not None:
            try:
                detections = self._detect_with_haar(image, width, height)
            except cv2.error as e:
                logger.warning(f"Haar Cascade detection failed: {e}")

        return [d for d in detections if d.confidence >= self.confidence_threshold]

    def _detect_with_mediapipe(
        self,
        image: np.ndarray,
        width: int,
        height: int,
        model_selection: int,
    ) -> List[FaceDetectionResult]:
        """
        Detect faces using MediaPipe FaceDetection.

        A fresh graph is created per call so concurrent worker threads never
        share one.
        """
        detections = []
        detector = self._mediapipe.FaceDetection(
            model_selection=model_selection,
            min_detection_confidence=self.confidence_threshold,
        )
        try:
            rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
            results = detector.process(rgb_image)
        finally:
            detector.close()

        for detection in results.detections or []:
            box = detection.location_data.relative_bounding_box
            x = max(0, int(box.xmin * width))
            y = max(0, int(box.ymin * height))
            w = min(width - x, int(box.width * width))
            h = min(height - y, int(box.height * height))
            if w <= 0 or h <= 0:
                continue

            landmarks = tuple(
                (kp.x * width, kp.y * height)
                for kp in list(detection.location_data.relative_keypoints)[:MAX_LANDMARKS]
            )
            detections.append(FaceDetectionResult(
                bbox=(x, y, w, h),
                confidence=float(detection.score[0]),
                landmarks=landmarks,
                detection_method="mediapipe_short" if model_selection == 0 else "mediapipe_full",
            ))

        return detections

    def _detect_with_haar(
        self,
        image: np.ndarray,
        width: int,
        height: int,
    ) -> List[FaceDetectionResult]:
        """Detect faces using Haar Cascade (final fallback)."""
        detections = []
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        faces = self._haar_cascade.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=5,
            minSize=(40, 40),
        )

        for (x, y, w, h) in faces:
            # Haar gives no score; approximate one from the relative face size
            relative_size = (w * h) / (width * height)
            confidence = min(0.9, 0.6 + relative_size * 4)
            detections.append(FaceDetectionResult(
                bbox=(int(x), int(y), int(w), int(h)),
                confidence=confidence,
                detection_method="haar_cascade",
            ))

        return detections

    def close(self) -> None:
        self._mediapipe = None
        self._haar_cascade = None
        self._ready = False


def create_face_detector(confidence_threshold: float) -> Optional[FaceDetector]:
    """Build a detector, or None when no backend could be loaded."""
    detector = FaceDetector(confidence_threshold=confidence_threshold)
    return detector if detector.is_ready() else None
