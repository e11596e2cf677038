"""Shared data models for the capture-guidance pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

import numpy as np

Point = tuple[float, float]


class PixelFormat(str, Enum):
    GRAY = "gray"
    BGR = "bgr"
    BGRA = "bgra"
    RGB = "rgb"


class GuideState(str, Enum):
    SEARCHING = "searching"
    CENTERING = "centering"
    TOO_FAR = "too_far"
    TOO_CLOSE = "too_close"
    POOR_LIGHTING = "poor_lighting"
    BLURRY = "blurry"
    READY = "ready"


class ValidationFailureReason(str, Enum):
    NOT_CENTERED = "not_centered"
    TOO_FAR = "too_far"
    TOO_CLOSE = "too_close"
    BLURRY = "blurry"
    POOR_LIGHTING = "poor_lighting"
    NO_MOLE_DETECTED = "no_mole_detected"
    LOW_CONFIDENCE = "low_confidence"


class ThermalState(IntEnum):
    NONE = 0
    LIGHT = 1
    MODERATE = 2
    SEVERE = 3
    CRITICAL = 4
    EMERGENCY = 5


class PerformanceLevel(IntEnum):
    """Higher value means more processing headroom."""
    MINIMAL = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class AutoCaptureState(str, Enum):
    IDLE = "idle"
    STABILITY_CHECK = "stability_check"
    COUNTING_DOWN = "counting_down"
    CAPTURED = "captured"
    CANCELLED = "cancelled"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class Frame:
    """A read-only view over one camera frame."""
    pixels: np.ndarray
    index: int = 0
    pixel_format: PixelFormat = PixelFormat.BGR
    timestamp: float = 0.0

    @classmethod
    def from_array(cls, array: np.ndarray, index: int = 0,
                   pixel_format: PixelFormat | None = None,
                   timestamp: float = 0.0) -> Frame:
        """Wrap an array without copying; the view is marked non-writeable."""
        view = array.view()
        view.flags.writeable = False
        if pixel_format is None:
            if view.ndim == 2 or (view.ndim == 3 and view.shape[2] == 1):
                pixel_format = PixelFormat.GRAY
            elif view.ndim == 3 and view.shape[2] == 4:
                pixel_format = PixelFormat.BGRA
            else:
                pixel_format = PixelFormat.BGR
        return cls(pixels=view, index=index, pixel_format=pixel_format,
                   timestamp=timestamp)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1]) if self.pixels.ndim >= 2 else 0

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0]) if self.pixels.ndim >= 2 else 0

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle; (x, y) is the top-left corner."""
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, point: Point) -> bool:
        px, py = point
        return (self.x <= px < self.x + self.width
                and self.y <= py < self.y + self.height)

    def translated(self, dx: float, dy: float) -> Rect:
        return Rect(self.x + dx, self.y + dy, self.width, self.height)


@dataclass(frozen=True)
class ROIResult:
    """Region of a frame selected for processing."""
    rect: Rect
    scale: float
    center: Point

    @property
    def offset_x(self) -> int:
        return int(self.rect.x)

    @property
    def offset_y(self) -> int:
        return int(self.rect.y)

    def to_frame(self, point: Point) -> Point:
        return (point[0] + self.offset_x, point[1] + self.offset_y)

    def to_roi(self, point: Point) -> Point:
        return (point[0] - self.offset_x, point[1] - self.offset_y)


@dataclass(frozen=True)
class DetectionCandidate:
    """A single lesion candidate found in one frame."""
    center: Point
    bbox: Rect
    confidence: float         # 0.0-1.0
    area: float               # contour area in pixels
    method: str               # segmentation strategy that produced it

    def translated(self, dx: float, dy: float) -> DetectionCandidate:
        return DetectionCandidate(
            center=(self.center[0] + dx, self.center[1] + dy),
            bbox=self.bbox.translated(dx, dy),
            confidence=self.confidence,
            area=self.area,
            method=self.method,
        )


@dataclass(frozen=True)
class QualityMetrics:
    sharpness: float          # >= 0, unbounded
    brightness: float         # 0-255 mean
    contrast: float
    is_blurry: bool
    is_overexposed: bool
    is_underexposed: bool

    @classmethod
    def unavailable(cls) -> QualityMetrics:
        """Neutral result used when a frame could not be analyzed."""
        return cls(sharpness=0.0, brightness=0.0, contrast=0.0,
                   is_blurry=False, is_overexposed=False,
                   is_underexposed=False)

    def is_good_quality(self) -> bool:
        return not (self.is_blurry or self.is_overexposed or self.is_underexposed)

    def feedback_message(self) -> str:
        if self.is_blurry:
            return "Image is blurry - hold the camera steady"
        if self.is_underexposed:
            return "More light needed"
        if self.is_overexposed:
            return "Too much light - move to the shade"
        return "Image quality is good"


@dataclass(frozen=True)
class HistogramAnalysis:
    distribution: tuple[float, ...]
    peak: int
    is_well_distributed: bool


@dataclass(frozen=True)
class ValidationResult:
    guide_state: GuideState
    can_capture: bool
    message: str
    confidence: float = 0.0
    failure_reason: Optional[ValidationFailureReason] = None
    distance_from_center: float = 0.0
    area_ratio: float = 0.0


@dataclass(frozen=True)
class GuidanceResult:
    """Per-frame decision handed to the presentation layer."""
    guide_state: GuideState
    can_capture: bool
    message: str
    confidence: float
    center: Optional[Point]
    frame_index: int = 0
    processing_ms: float = 0.0
    detection: Optional[DetectionCandidate] = None
    quality: QualityMetrics = field(default_factory=QualityMetrics.unavailable)
    validation: Optional[ValidationResult] = None
