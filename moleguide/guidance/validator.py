"""Capture validation: maps detection, quality and geometry to a guide state."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from moleguide.config import ValidationConfig
from moleguide.guidance.models import (
    DetectionCandidate,
    GuideState,
    Point,
    QualityMetrics,
    Rect,
    ValidationFailureReason,
    ValidationResult,
    clamp,
)

logger = logging.getLogger(__name__)

MESSAGES = {
    GuideState.SEARCHING: "Searching for a mole...",
    GuideState.CENTERING: "Center the mole inside the guide",
    GuideState.TOO_FAR: "Too far - move closer to the mole",
    GuideState.TOO_CLOSE: "Too close - move back a little",
    GuideState.BLURRY: "Image is blurry - hold the camera steady",
    GuideState.READY: "Ready to capture",
}
UNDEREXPOSED_MESSAGE = "More light needed"
OVEREXPOSED_MESSAGE = "Too much light - move to the shade"
LOW_CONFIDENCE_MESSAGE = "Unreliable detection - adjust the position"


@dataclass(frozen=True)
class ValidationInput:
    detection: Optional[DetectionCandidate]
    quality: QualityMetrics
    guide_area: Rect


def _distance(a: Point, b: Point) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def evaluate(inputs: ValidationInput, config: ValidationConfig) -> ValidationResult:
    """Pure state selection; the first matching rule wins."""
    quality = inputs.quality
    if quality.is_blurry:
        return ValidationResult(
            guide_state=GuideState.BLURRY, can_capture=False,
            message=MESSAGES[GuideState.BLURRY],
            failure_reason=ValidationFailureReason.BLURRY,
        )
    if quality.is_underexposed or quality.is_overexposed:
        message = UNDEREXPOSED_MESSAGE if quality.is_underexposed else OVEREXPOSED_MESSAGE
        return ValidationResult(
            guide_state=GuideState.POOR_LIGHTING, can_capture=False,
            message=message,
            failure_reason=ValidationFailureReason.POOR_LIGHTING,
        )

    detection = inputs.detection
    if detection is None:
        return ValidationResult(
            guide_state=GuideState.SEARCHING, can_capture=False,
            message=MESSAGES[GuideState.SEARCHING],
            failure_reason=ValidationFailureReason.NO_MOLE_DETECTED,
        )

    confidence = clamp(detection.confidence, 0.0, 1.0)
    if confidence < config.min_confidence:
        return ValidationResult(
            guide_state=GuideState.SEARCHING, can_capture=False,
            message=LOW_CONFIDENCE_MESSAGE, confidence=confidence,
            failure_reason=ValidationFailureReason.LOW_CONFIDENCE,
        )

    guide = inputs.guide_area
    distance = _distance(detection.center, guide.center)
    area_ratio = detection.area / guide.area if guide.area > 0 else 0.0

    state, reason = GuideState.READY, None
    if config.enforce_geometry:
        if distance > config.centering_tolerance:
            state, reason = GuideState.CENTERING, ValidationFailureReason.NOT_CENTERED
        elif area_ratio < config.min_area_ratio:
            state, reason = GuideState.TOO_FAR, ValidationFailureReason.TOO_FAR
        elif area_ratio > config.max_area_ratio:
            state, reason = GuideState.TOO_CLOSE, ValidationFailureReason.TOO_CLOSE

    return ValidationResult(
        guide_state=state,
        can_capture=state == GuideState.READY,
        message=MESSAGES[state],
        confidence=confidence,
        failure_reason=reason,
        distance_from_center=distance,
        area_ratio=area_ratio,
    )


class CaptureValidator:
    """Config holder around evaluate() plus presentation helpers."""

    def __init__(self, config: ValidationConfig):
        self._cfg = config

    @property
    def config(self) -> ValidationConfig:
        return self._cfg

    def validate(self, detection: DetectionCandidate | None,
                 quality: QualityMetrics, guide_area: Rect) -> ValidationResult:
        result = evaluate(ValidationInput(detection, quality, guide_area), self._cfg)
        logger.debug("Validation: state=%s can_capture=%s confidence=%.2f",
                     result.guide_state.value, result.can_capture, result.confidence)
        return result

    def centering_percentage(self, center: Point, guide_center: Point) -> float:
        """100 when centered, 0 at or beyond the centering tolerance."""
        tolerance = self._cfg.centering_tolerance
        if tolerance <= 0:
            return 0.0
        distance = _distance(center, guide_center)
        return clamp((tolerance - distance) / tolerance * 100.0, 0.0, 100.0)

    def size_percentage(self, area_ratio: float) -> float:
        """100 at the middle of the allowed area-ratio band, 0 at its edges."""
        optimal = (self._cfg.min_area_ratio + self._cfg.max_area_ratio) / 2.0
        tolerance = (self._cfg.max_area_ratio - self._cfg.min_area_ratio) / 2.0
        if tolerance <= 0:
            return 0.0
        distance = abs(area_ratio - optimal)
        return clamp((tolerance - distance) / tolerance * 100.0, 0.0, 100.0)

    def guidance_message(self, result: ValidationResult) -> str:
        """Longer user-facing hint for a validation result."""
        state = result.guide_state
        if state == GuideState.SEARCHING:
            return "Look for a mole and place it in the center of the guide"
        if state == GuideState.CENTERING:
            if result.distance_from_center > self._cfg.centering_tolerance / 2.0:
                return "Move the camera to center the mole"
            return "Almost centered - adjust slightly"
        if state == GuideState.TOO_FAR:
            return "The mole is too far away - move closer"
        if state == GuideState.TOO_CLOSE:
            return "The mole is too close - move back a little"
        if state == GuideState.POOR_LIGHTING:
            return result.message
        if state == GuideState.BLURRY:
            return "Hold the camera steady and focus"
        return "Perfect! Tap to capture"
