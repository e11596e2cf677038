"""Shared test fixtures: synthetic skin frames with dark lesions, fake timers and probes."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from moleguide.config import (
    AutoCaptureConfig,
    CenteredDetectionConfig,
    DetectionConfig,
    GuidanceConfig,
    PerformanceConfig,
    QualityConfig,
    ROIConfig,
    ValidationConfig,
)
from moleguide.guidance.models import GuideState, ValidationResult
from moleguide.guidance.timers import TimerHandle

SKIN_BGR = (210, 220, 240)
LESION_BGR = (40, 60, 90)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in ("MOLEGUIDE_CONFIG", "MOLEGUIDE_LOG_LEVEL",
                 "MOLEGUIDE_AUTO_CAPTURE", "MOLEGUIDE_DETECTOR_MODE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def roi_config() -> ROIConfig:
    return ROIConfig()


@pytest.fixture
def detection_config() -> DetectionConfig:
    return DetectionConfig()


@pytest.fixture
def centered_config() -> CenteredDetectionConfig:
    return CenteredDetectionConfig()


@pytest.fixture
def quality_config() -> QualityConfig:
    return QualityConfig()


@pytest.fixture
def validation_config() -> ValidationConfig:
    return ValidationConfig()


@pytest.fixture
def performance_config() -> PerformanceConfig:
    return PerformanceConfig()


@pytest.fixture
def auto_capture_config() -> AutoCaptureConfig:
    return AutoCaptureConfig(enabled=True)


@pytest.fixture
def guidance_config() -> GuidanceConfig:
    config = GuidanceConfig()
    config.auto_capture.enabled = True
    return config


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def feedback() -> RecordingFeedback:
    return RecordingFeedback()


def make_skin_frame(width: int = 320, height: int = 240,
                    color: tuple[int, int, int] = SKIN_BGR,
                    noise: int = 0, seed: int = 0) -> np.ndarray:
    """Create a flat BGR skin-tone frame, optionally with sensor-like noise."""
    frame = np.empty((height, width, 3), dtype=np.uint8)
    frame[:] = color
    if noise:
        rng = np.random.default_rng(seed)
        jitter = rng.integers(-noise, noise + 1, size=frame.shape)
        frame = np.clip(frame.astype(np.int16) + jitter, 0, 255).astype(np.uint8)
    return frame


def add_lesion(frame: np.ndarray, x: int, y: int, radius: int = 20,
               color: tuple[int, int, int] = LESION_BGR) -> np.ndarray:
    """Add a filled dark-brown disc to a BGR frame."""
    result = frame.copy()
    cv2.circle(result, (x, y), radius, color, -1)
    return result


def make_lesion_frame(x: int = 160, y: int = 120, radius: int = 20,
                      width: int = 320, height: int = 240,
                      noise: int = 4) -> np.ndarray:
    """Textured skin frame with one lesion; sharp and well exposed."""
    return add_lesion(make_skin_frame(width, height, noise=noise), x, y, radius)


def ready_result(confidence: float = 0.9) -> ValidationResult:
    return ValidationResult(guide_state=GuideState.READY, can_capture=True,
                            message="Ready to capture", confidence=confidence)


def searching_result() -> ValidationResult:
    return ValidationResult(guide_state=GuideState.SEARCHING, can_capture=False,
                            message="Searching for a mole...")


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class ManualScheduler:
    """Deterministic TimerScheduler driven by advance()."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._timers: list[tuple[float, int, TimerHandle, object]] = []
        self._seq = 0

    def call_later(self, delay_s, callback, name="timer") -> TimerHandle:
        handle = TimerHandle(name)
        self._seq += 1
        self._timers.append((self.clock.now + delay_s, self._seq, handle, callback))
        return handle

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.clock.now + seconds
        while True:
            due = [t for t in self._timers if t[0] <= target and not t[2].cancelled]
            if not due:
                break
            entry = min(due, key=lambda t: (t[0], t[1]))
            self._timers.remove(entry)
            self.clock.now = max(self.clock.now, entry[0])
            entry[3]()
        self.clock.now = target
        self._timers = [t for t in self._timers if not t[2].cancelled]

    @property
    def pending(self) -> list[str]:
        return [t[2].name for t in self._timers if not t[2].cancelled]

    def shutdown(self) -> None:
        for timer in self._timers:
            timer[2].cancel()
        self._timers.clear()


class FakeProbe:
    def __init__(self, memory: float = 0.0, power_save: bool = False):
        self.memory = memory
        self.saving = power_save

    def memory_pressure(self) -> float:
        return self.memory

    def power_save(self) -> bool:
        return self.saving


class RecordingListener:
    def __init__(self):
        self.events: list[tuple] = []

    def on_countdown_started(self, seconds: int) -> None:
        self.events.append(("started", seconds))

    def on_countdown_tick(self, seconds: int) -> None:
        self.events.append(("tick", seconds))

    def on_countdown_cancelled(self) -> None:
        self.events.append(("cancelled",))

    def on_auto_capture(self) -> None:
        self.events.append(("captured",))

    def count(self, kind: str) -> int:
        return sum(1 for e in self.events if e[0] == kind)

    def ticks(self) -> list[int]:
        return [e[1] for e in self.events if e[0] == "tick"]


class RecordingFeedback:
    def __init__(self):
        self.vibrations: list[tuple[int, ...]] = []
        self.announcements: list[str] = []
        self.successes = 0

    def vibrate(self, pattern_ms) -> None:
        self.vibrations.append(tuple(pattern_ms))

    def announce(self, text: str) -> None:
        self.announcements.append(text)

    def capture_success(self) -> None:
        self.successes += 1
