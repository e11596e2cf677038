"""Closed-loop performance/thermal governor for the guidance pipeline."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any

import numpy as np

from moleguide.config import PerformanceConfig
from moleguide.guidance.models import PerformanceLevel, ThermalState
from moleguide.performance.pool import BufferPool
from moleguide.performance.probes import SystemProbe
from moleguide.performance.profiles import (
    DEFAULT_PROFILE,
    THERMAL_TO_LEVEL,
    PerformanceProfile,
    profile_for_level,
    profile_for_thermal,
)
from moleguide.performance.thermal import NoOpThermalProvider, ThermalProvider

logger = logging.getLogger(__name__)


def classify_level(avg_processing_ms: float, memory_pressure: float,
                   power_save: bool,
                   config: PerformanceConfig) -> PerformanceLevel:
    """Map resource signals to a tier, most severe condition first."""
    if power_save or memory_pressure > config.minimal_memory_pressure:
        return PerformanceLevel.MINIMAL
    if avg_processing_ms >= config.minimal_processing_ms:
        return PerformanceLevel.MINIMAL
    if (memory_pressure > config.low_memory_pressure
            or avg_processing_ms >= config.low_processing_ms):
        return PerformanceLevel.LOW
    if (memory_pressure > config.medium_memory_pressure
            or avg_processing_ms >= config.medium_processing_ms):
        return PerformanceLevel.MEDIUM
    return PerformanceLevel.HIGH


class PerformanceGovernor:
    """Owns the active PerformanceProfile and the scratch buffer pool.

    Two signals set the profile: the thermal provider's callback and the
    heuristic recomputation run after each recorded sample. Whichever fires
    last wins; the profile is swapped as one immutable snapshot.
    """

    def __init__(self, config: PerformanceConfig,
                 thermal: ThermalProvider | None = None,
                 probe: SystemProbe | None = None):
        self._cfg = config
        self._thermal = thermal or NoOpThermalProvider()
        self._probe = probe or SystemProbe(config.low_battery_percent)

        self._lock = threading.Lock()
        self._times: deque[float] = deque(maxlen=config.history_size)
        self._memory: deque[float] = deque(maxlen=config.history_size)

        self._power_save = self._safe_power_probe()
        self._level = PerformanceLevel.HIGH
        self._thermal_state = ThermalState.NONE
        self._source = "default"
        self._profile: PerformanceProfile = DEFAULT_PROFILE

        self._pool = BufferPool(lambda: self.profile.max_pool_size)

        self.recompute()
        self._thermal.add_listener(self.apply_thermal_state)
        try:
            initial = self._thermal.current_state()
        except Exception:
            logger.exception("Thermal provider failed, assuming no throttling")
            initial = ThermalState.NONE
        if initial != ThermalState.NONE:
            self.apply_thermal_state(initial)

    @property
    def profile(self) -> PerformanceProfile:
        with self._lock:
            return self._profile

    @property
    def level(self) -> PerformanceLevel:
        with self._lock:
            return self._level

    @property
    def thermal_state(self) -> ThermalState:
        with self._lock:
            return self._thermal_state

    @property
    def pool(self) -> BufferPool:
        return self._pool

    def apply_thermal_state(self, state: ThermalState) -> None:
        """Thermal-provider callback: switch to the thermal table's profile."""
        state = ThermalState(state)
        profile = profile_for_thermal(state)
        with self._lock:
            self._thermal_state = state
            self._set_profile(THERMAL_TO_LEVEL[state], profile, "thermal")

    def record_processing_time(self, time_ms: float) -> PerformanceLevel:
        with self._lock:
            self._times.append(max(0.0, float(time_ms)))
        return self.recompute()

    def record_memory_usage(self, sample: float | None = None) -> PerformanceLevel:
        """Record a memory-pressure sample (0-1); sampled from the probe if None.

        The cached power-save reading is refreshed alongside it.
        """
        if sample is None:
            sample = self._safe_memory_probe()
        power_save = self._safe_power_probe()
        with self._lock:
            self._power_save = power_save
            self._memory.append(min(1.0, max(0.0, float(sample))))
        return self.recompute()

    def recompute(self) -> PerformanceLevel:
        """Heuristic tier from power-save, memory pressure and processing time."""
        with self._lock:
            avg_ms = float(np.mean(self._times)) if self._times else 0.0
            memory = float(np.mean(self._memory)) if self._memory else 0.0
            level = classify_level(avg_ms, memory, self._power_save, self._cfg)
            self._set_profile(level, profile_for_level(level), "heuristic")
            return level

    def average_processing_time(self) -> float:
        with self._lock:
            return float(np.mean(self._times)) if self._times else 0.0

    def memory_pressure(self) -> float:
        with self._lock:
            return float(np.mean(self._memory)) if self._memory else 0.0

    def should_skip_frame(self, frame_index: int) -> bool:
        rate = self.profile.frame_skip_rate
        return rate > 0 and frame_index % (rate + 1) != 0

    def borrow_buffer(self, shape: tuple[int, ...],
                      dtype: np.dtype | type = np.uint8) -> np.ndarray:
        return self._pool.borrow(shape, dtype)

    def return_buffer(self, buf: np.ndarray) -> None:
        self._pool.give_back(buf)

    def status(self) -> dict[str, Any]:
        """Diagnostic snapshot for an external metrics collaborator."""
        with self._lock:
            profile = self._profile
            snapshot = {
                "level": self._level.name,
                "thermal_state": self._thermal_state.name,
                "source": self._source,
                "avg_processing_ms": round(float(np.mean(self._times)), 1) if self._times else 0.0,
                "memory_pressure": round(float(np.mean(self._memory)), 3) if self._memory else 0.0,
                "power_save": self._power_save,
                "processing_quality": profile.processing_quality,
                "frame_skip_rate": profile.frame_skip_rate,
                "resolution_scale": profile.resolution_scale,
                "max_concurrent_operations": profile.max_concurrent_operations,
                "advanced_filters": profile.enable_advanced_filters,
                "roi_enabled": profile.enable_roi,
                "roi_scale": profile.roi_scale,
            }
        snapshot["pool"] = self._pool.stats()
        return snapshot

    def close(self) -> None:
        self._thermal.remove_listener(self.apply_thermal_state)
        self._pool.clear()
        with self._lock:
            self._times.clear()
            self._memory.clear()

    def _set_profile(self, level: PerformanceLevel, profile: PerformanceProfile,
                     source: str) -> None:
        # Caller holds the lock
        if profile != self._profile or level != self._level:
            logger.info("Performance profile -> %s (from %s)", level.name, source)
        self._level = level
        self._profile = profile
        self._source = source

    def _safe_power_probe(self) -> bool:
        try:
            return bool(self._probe.power_save())
        except Exception:
            logger.exception("Power-save probe failed")
            return False

    def _safe_memory_probe(self) -> float:
        try:
            return float(self._probe.memory_pressure())
        except Exception:
            logger.exception("Memory probe failed")
            return 0.0
