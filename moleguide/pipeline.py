"""Pipeline orchestrator: governor → ROI → detect + quality → validate → auto-capture."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Sequence

import numpy as np

from moleguide.config import GuidanceConfig
from moleguide.guidance.auto_capture import (
    AutoCaptureController,
    AutoCaptureListener,
    CaptureFeedback,
)
from moleguide.guidance.models import Frame, GuidanceResult, Rect
from moleguide.guidance.timers import TimerScheduler
from moleguide.guidance.validator import CaptureValidator
from moleguide.performance.governor import PerformanceGovernor
from moleguide.performance.profiles import MAX_CONCURRENCY
from moleguide.performance.probes import SystemProbe
from moleguide.performance.thermal import (
    SensorThermalProvider,
    ThermalProvider,
    create_thermal_provider,
)
from moleguide.processing.centered_detector import CenteredLesionDetector
from moleguide.processing.detector import LesionDetector
from moleguide.processing.quality import QualityAnalyzer
from moleguide.processing.roi import ROISelector

logger = logging.getLogger(__name__)

# Memory and temperature sensors are sampled every N processed frames
MEMORY_SAMPLE_INTERVAL = 10


def run_bounded(executor: ThreadPoolExecutor, stages: Sequence[Callable[[], Any]],
                limit: int) -> list[Any]:
    """Run independent stages with at most ``limit`` of them in flight.

    The calling thread counts toward the limit and runs the first stage of
    each batch itself. Results come back in stage order.
    """
    limit = max(1, int(limit))
    results: list[Any] = []
    for i in range(0, len(stages), limit):
        batch = stages[i:i + limit]
        futures = [executor.submit(stage) for stage in batch[1:]]
        results.append(batch[0]())
        results.extend(f.result() for f in futures)
    return results


class GuidancePipeline:
    """Main per-frame guidance orchestrator.

    ``process_frame`` is meant to be called from a camera-analysis thread.
    Only one frame is processed at a time: a frame arriving while another
    is in flight is dropped.
    """

    def __init__(self, config: GuidanceConfig,
                 thermal: ThermalProvider | None = None,
                 probe: SystemProbe | None = None,
                 scheduler: TimerScheduler | None = None,
                 listener: AutoCaptureListener | None = None,
                 feedback: CaptureFeedback | None = None):
        self._config = config
        self._owns_thermal = thermal is None
        self._thermal = thermal or create_thermal_provider(config.thermal)

        # Components
        self._governor = PerformanceGovernor(config.performance, self._thermal, probe)
        self._roi = ROISelector(config.roi)
        if config.detector_mode == "centered":
            self._detector = CenteredLesionDetector(config.centered_detection)
        else:
            self._detector = LesionDetector(config.detection, self._roi)
        self._analyzer = QualityAnalyzer(
            config.quality, self._governor,
            min_frame_size=config.detection.min_frame_size,
        )
        self._validator = CaptureValidator(config.validation)
        self._auto_capture = AutoCaptureController(
            config.auto_capture, scheduler=scheduler,
            feedback=feedback, listener=listener,
        )

        self._executor = ThreadPoolExecutor(max_workers=MAX_CONCURRENCY,
                                            thread_name_prefix="guidance")
        self._busy = threading.Lock()
        self._stats_lock = threading.Lock()

        # Stats
        self._frame_count = 0
        self._processed = 0
        self._skipped = 0
        self._dropped = 0
        self._last_processing_ms = 0.0

        logger.info("Guidance pipeline ready (detector=%s, auto_capture=%s)",
                    config.detector_mode, config.auto_capture.enabled)

    @property
    def config(self) -> GuidanceConfig:
        return self._config

    @property
    def governor(self) -> PerformanceGovernor:
        return self._governor

    @property
    def roi_selector(self) -> ROISelector:
        return self._roi

    @property
    def detector(self) -> LesionDetector | CenteredLesionDetector:
        return self._detector

    @property
    def analyzer(self) -> QualityAnalyzer:
        return self._analyzer

    @property
    def validator(self) -> CaptureValidator:
        return self._validator

    @property
    def auto_capture(self) -> AutoCaptureController:
        return self._auto_capture

    @property
    def stats(self) -> dict[str, Any]:
        with self._stats_lock:
            snapshot = {
                "frame_count": self._frame_count,
                "processed": self._processed,
                "skipped": self._skipped,
                "dropped": self._dropped,
                "last_processing_ms": round(self._last_processing_ms, 1),
            }
        snapshot["level"] = self._governor.level.name
        snapshot["auto_capture_state"] = self._auto_capture.state.value
        return snapshot

    def status(self) -> dict[str, Any]:
        """Pipeline stats plus the governor and ROI diagnostics."""
        return {
            "pipeline": self.stats,
            "performance": self._governor.status(),
            "roi": self._roi.stats(),
        }

    def process_frame(self, frame: Frame | np.ndarray,
                      guide_area: Rect) -> GuidanceResult | None:
        """Run one guidance pass.

        Returns None when the frame is skipped by the active profile or
        dropped because a previous frame is still being processed.
        """
        with self._stats_lock:
            self._frame_count += 1
            index = frame.index if isinstance(frame, Frame) else self._frame_count - 1

        if self._governor.should_skip_frame(index):
            with self._stats_lock:
                self._skipped += 1
            return None

        if not self._busy.acquire(blocking=False):
            with self._stats_lock:
                self._dropped += 1
            logger.debug("Frame %d dropped, previous frame still in flight", index)
            return None

        try:
            return self._run(frame, index, guide_area)
        finally:
            self._busy.release()

    def close(self) -> None:
        """Cancel pending timers and release workers and pooled buffers."""
        self._auto_capture.close()
        self._executor.shutdown(wait=True)
        self._governor.close()
        if self._owns_thermal:
            self._thermal.close()
        logger.info("Guidance pipeline closed")

    def _run(self, frame: Frame | np.ndarray, index: int,
             guide_area: Rect) -> GuidanceResult:
        start = time.perf_counter()
        profile = self._governor.profile

        detection, quality = run_bounded(
            self._executor,
            [lambda: self._detector.detect(frame, profile),
             lambda: self._analyzer.analyze(frame, profile)],
            profile.max_concurrent_operations,
        )

        validation = self._validator.validate(detection, quality, guide_area)
        self._auto_capture.process(validation)

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        self._governor.record_processing_time(elapsed_ms)

        with self._stats_lock:
            self._processed += 1
            self._last_processing_ms = elapsed_ms
            sample = self._processed % MEMORY_SAMPLE_INTERVAL == 0
        if sample:
            self._sample_resources()

        logger.debug("Frame %d: state=%s confidence=%.2f (%.1f ms)",
                     index, validation.guide_state.value,
                     validation.confidence, elapsed_ms)

        return GuidanceResult(
            guide_state=validation.guide_state,
            can_capture=validation.can_capture,
            message=validation.message,
            confidence=validation.confidence,
            center=detection.center if detection is not None else None,
            frame_index=index,
            processing_ms=elapsed_ms,
            detection=detection,
            quality=quality,
            validation=validation,
        )

    def _sample_resources(self) -> None:
        self._governor.record_memory_usage()
        if isinstance(self._thermal, SensorThermalProvider):
            self._thermal.poll()
