"""End-to-end tests for the guidance pipeline on synthetic frames."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from moleguide.guidance.models import (
    AutoCaptureState,
    Frame,
    GuideState,
    PerformanceLevel,
    Rect,
    ThermalState,
)
from moleguide.performance.thermal import SignalThermalProvider
from moleguide.performance.profiles import MAX_CONCURRENCY
from moleguide.pipeline import GuidancePipeline, run_bounded
from moleguide.processing.centered_detector import CenteredLesionDetector
from moleguide.processing.detector import LesionDetector
from tests.conftest import make_lesion_frame, make_skin_frame

GUIDE = Rect(60, 20, 200, 200)      # centered on a 320x240 frame


@pytest.fixture
def pipeline(guidance_config, probe, scheduler, listener, feedback):
    pipe = GuidancePipeline(guidance_config, probe=probe, scheduler=scheduler,
                            listener=listener, feedback=feedback)
    yield pipe
    pipe.close()


class TestGuidancePipeline:
    def test_ready_on_centered_lesion(self, pipeline):
        result = pipeline.process_frame(make_lesion_frame(), GUIDE)

        assert result is not None
        assert result.guide_state == GuideState.READY
        assert result.can_capture
        assert result.detection is not None
        assert abs(result.center[0] - 160) < 3
        assert result.quality.is_good_quality()
        assert result.processing_ms >= 0.0
        assert 0.0 <= result.confidence <= 1.0

    def test_underexposed_frame(self, pipeline):
        frame = make_skin_frame(color=(15, 15, 15), noise=4)
        result = pipeline.process_frame(frame, GUIDE)

        assert result.guide_state == GuideState.POOR_LIGHTING
        assert not result.can_capture

    def test_flat_frame_is_blurry(self, pipeline):
        result = pipeline.process_frame(make_skin_frame(), GUIDE)
        assert result.guide_state == GuideState.BLURRY

    def test_invalid_frame_degrades_to_searching(self, pipeline):
        result = pipeline.process_frame(make_skin_frame(40, 40), GUIDE)
        assert result.guide_state == GuideState.SEARCHING
        assert result.detection is None

    def test_ready_frames_trigger_auto_capture(self, pipeline, scheduler, listener):
        pipeline.process_frame(make_lesion_frame(), GUIDE)
        scheduler.advance(0.1)
        pipeline.process_frame(make_lesion_frame(), GUIDE)
        assert pipeline.auto_capture.state == AutoCaptureState.STABILITY_CHECK

        scheduler.advance(5.0)
        assert listener.events[0] == ("started", 3)
        assert listener.count("captured") == 1

    def test_bad_frame_cancels_countdown(self, pipeline, scheduler, listener):
        pipeline.process_frame(make_lesion_frame(), GUIDE)
        scheduler.advance(0.1)
        pipeline.process_frame(make_lesion_frame(), GUIDE)
        scheduler.advance(1.5)
        assert pipeline.auto_capture.is_countdown_active()

        pipeline.process_frame(make_skin_frame(), GUIDE)
        scheduler.advance(5.0)
        assert listener.count("cancelled") == 1
        assert listener.count("captured") == 0

    def test_frame_index_from_wrapper(self, pipeline):
        frame = Frame.from_array(make_lesion_frame(), index=42)
        result = pipeline.process_frame(frame, GUIDE)
        assert result.frame_index == 42

    def test_overlapping_frame_is_dropped(self, pipeline):
        assert pipeline._busy.acquire(blocking=False)
        try:
            assert pipeline.process_frame(make_lesion_frame(), GUIDE) is None
        finally:
            pipeline._busy.release()
        assert pipeline.stats["dropped"] == 1
        assert pipeline.process_frame(make_lesion_frame(), GUIDE) is not None

    def test_profile_frame_skipping(self, guidance_config, probe, scheduler):
        thermal = SignalThermalProvider()
        pipe = GuidancePipeline(guidance_config, thermal=thermal, probe=probe,
                                scheduler=scheduler)
        thermal.publish_status(ThermalState.MODERATE)   # skip rate 2

        assert pipe.process_frame(Frame.from_array(make_lesion_frame(), index=1),
                                  GUIDE) is None
        assert pipe.process_frame(Frame.from_array(make_lesion_frame(), index=3),
                                  GUIDE) is not None
        assert pipe.stats["skipped"] == 1
        pipe.close()

    def test_sequential_when_single_operation(self, guidance_config, probe, scheduler):
        probe.saving = True                              # MINIMAL: one operation
        pipe = GuidancePipeline(guidance_config, probe=probe, scheduler=scheduler)
        assert pipe.governor.level == PerformanceLevel.MINIMAL

        result = pipe.process_frame(make_lesion_frame(), GUIDE)
        assert result is not None
        assert result.guide_state == GuideState.READY
        pipe.close()

    def test_records_processing_time(self, pipeline):
        pipeline.process_frame(make_lesion_frame(), GUIDE)
        assert pipeline.governor.status()["avg_processing_ms"] >= 0.0
        assert pipeline.stats["processed"] == 1

    def test_detector_mode(self, guidance_config, probe, scheduler):
        pipe = GuidancePipeline(guidance_config, probe=probe, scheduler=scheduler)
        assert isinstance(pipe.detector, LesionDetector)
        pipe.close()

        guidance_config.detector_mode = "centered"
        pipe = GuidancePipeline(guidance_config, probe=probe, scheduler=scheduler)
        assert isinstance(pipe.detector, CenteredLesionDetector)
        result = pipe.process_frame(make_lesion_frame(), GUIDE)
        assert result.guide_state == GuideState.READY
        pipe.close()

    def test_status_snapshot(self, pipeline):
        pipeline.process_frame(make_lesion_frame(), GUIDE)
        status = pipeline.status()
        assert status["pipeline"]["frame_count"] == 1
        assert status["performance"]["level"] == "HIGH"
        assert status["roi"]["history_size"] == 1

    def test_worker_pool_matches_concurrency_ceiling(self, pipeline):
        assert MAX_CONCURRENCY == 4
        assert pipeline._executor._max_workers == MAX_CONCURRENCY


class TestRunBounded:
    @pytest.fixture
    def executor(self):
        pool = ThreadPoolExecutor(max_workers=4)
        yield pool
        pool.shutdown(wait=True)

    def test_single_operation_stays_on_caller(self, executor):
        caller = threading.get_ident()
        stages = [lambda: threading.get_ident() for _ in range(3)]
        assert run_bounded(executor, stages, 1) == [caller] * 3

    def test_in_flight_never_exceeds_limit(self, executor):
        lock = threading.Lock()
        running, peak = [0], [0]

        def stage(value):
            def run():
                with lock:
                    running[0] += 1
                    peak[0] = max(peak[0], running[0])
                threading.Event().wait(0.02)
                with lock:
                    running[0] -= 1
                return value
            return run

        results = run_bounded(executor, [stage(i) for i in range(5)], 2)
        assert results == [0, 1, 2, 3, 4]
        assert peak[0] <= 2

    def test_parallel_batch_uses_a_worker(self, executor):
        caller = threading.get_ident()
        first, second = run_bounded(
            executor, [threading.get_ident, threading.get_ident], 2)
        assert first == caller
        assert second != caller
