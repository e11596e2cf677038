"""Region-of-interest selection biased towards recent detections."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any

import numpy as np

from moleguide.config import ROIConfig
from moleguide.guidance.models import Point, Rect, ROIResult, clamp

_MIN_SCALE = 0.01


class ROISelector:
    """Computes the sub-rectangle of a frame worth processing.

    In adaptive mode the rectangle follows the mean of the last few
    detection centers instead of staying on the frame center.
    """

    def __init__(self, config: ROIConfig):
        self._cfg = config
        self._history: deque[Point] = deque(maxlen=config.history_size)
        self._last_center: Point | None = None
        self._lock = threading.Lock()

    def compute_roi(self, frame_size: tuple[int, int],
                    roi_scale: float = 0.7) -> ROIResult:
        """Return a rectangle of roi_scale * frame_size, clipped to the frame."""
        width, height = int(frame_size[0]), int(frame_size[1])
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid frame size {frame_size}")
        scale = clamp(float(roi_scale), _MIN_SCALE, 1.0)

        roi_w = max(1, int(round(width * scale)))
        roi_h = max(1, int(round(height * scale)))

        center = self._average_center() if self._cfg.adaptive else None
        if center is None:
            cx, cy = width // 2, height // 2
        else:
            cx = int(round(clamp(center[0], 0, width - 1)))
            cy = int(round(clamp(center[1], 0, height - 1)))

        x = min(max(0, cx - roi_w // 2), width - 1)
        y = min(max(0, cy - roi_h // 2), height - 1)
        w = min(roi_w, width - x)
        h = min(roi_h, height - y)

        return ROIResult(rect=Rect(x, y, w, h), scale=scale,
                         center=(float(cx), float(cy)))

    def extract(self, image: np.ndarray, roi: ROIResult) -> np.ndarray:
        """Slice the ROI out of an image (a view, not a copy)."""
        r = roi.rect
        x, y = int(r.x), int(r.y)
        return image[y:y + int(r.height), x:x + int(r.width)]

    def roi_to_frame(self, point: Point, roi: ROIResult) -> Point:
        return roi.to_frame(point)

    def frame_to_roi(self, point: Point, roi: ROIResult) -> Point:
        return roi.to_roi(point)

    def record_detection(self, center: Point) -> None:
        """Remember a detection center (frame coordinates) for adaptive biasing."""
        with self._lock:
            self._last_center = center
            self._history.append(center)

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
            self._last_center = None

    def scale_for_performance(self, processing_ms: float,
                              target_ms: float) -> float:
        """Pick a discrete ROI scale from how far off target processing is."""
        if target_ms <= 0:
            return self._cfg.min_roi_scale
        ratio = processing_ms / target_ms
        if ratio > 1.5:
            return self._cfg.min_roi_scale
        if ratio > 1.2:
            return 0.5
        if ratio < 0.8:
            return self._cfg.max_roi_scale
        return 0.7

    def optimize_for_performance(self, frame_size: tuple[int, int],
                                 processing_ms: float,
                                 target_ms: float) -> ROIResult:
        scale = self.scale_for_performance(processing_ms, target_ms)
        return self.compute_roi(frame_size, scale)

    def expanded_roi(self, frame_size: tuple[int, int], bbox: Rect,
                     expansion_factor: float | None = None) -> ROIResult:
        """ROI around a detection's bounding box, grown by expansion_factor."""
        factor = expansion_factor or self._cfg.expansion_factor
        width, height = int(frame_size[0]), int(frame_size[1])
        cx = int(bbox.x + bbox.width / 2)
        cy = int(bbox.y + bbox.height / 2)
        exp_w = max(1, int(round(bbox.width * factor)))
        exp_h = max(1, int(round(bbox.height * factor)))

        x = min(max(0, cx - exp_w // 2), width - 1)
        y = min(max(0, cy - exp_h // 2), height - 1)
        w = min(exp_w, width - x)
        h = min(exp_h, height - y)
        scale = clamp(min(w / width, h / height), _MIN_SCALE, 1.0)
        return ROIResult(rect=Rect(x, y, w, h), scale=scale,
                         center=(float(cx), float(cy)))

    def contains(self, point: Point, roi: ROIResult) -> bool:
        return roi.rect.contains(point)

    def area_ratio(self, frame_size: tuple[int, int], roi: ROIResult) -> float:
        frame_area = float(frame_size[0] * frame_size[1])
        if frame_area <= 0:
            return 0.0
        return clamp(roi.rect.area / frame_area, 0.0, 1.0)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "history_size": len(self._history),
                "has_last_detection": self._last_center is not None,
                "adaptive": self._cfg.adaptive,
                "min_roi_scale": self._cfg.min_roi_scale,
                "max_roi_scale": self._cfg.max_roi_scale,
                "expansion_factor": self._cfg.expansion_factor,
            }

    def _average_center(self) -> Point | None:
        with self._lock:
            if not self._history:
                return None
            pts = np.array(self._history, dtype=np.float64)
        mean = pts.mean(axis=0)
        return float(mean[0]), float(mean[1])
