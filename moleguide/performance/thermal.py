"""Thermal status providers feeding the performance governor."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable

import psutil

from moleguide.config import ThermalConfig
from moleguide.guidance.models import ThermalState

logger = logging.getLogger(__name__)

ThermalListener = Callable[[ThermalState], None]


class ThermalProvider(ABC):
    """Source of device thermal status with change notifications."""

    def __init__(self) -> None:
        self._listeners: list[ThermalListener] = []
        self._state = ThermalState.NONE
        self._lock = threading.Lock()

    @abstractmethod
    def current_state(self) -> ThermalState:
        ...

    def add_listener(self, listener: ThermalListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ThermalListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()

    def _update(self, state: ThermalState) -> None:
        """Store the new state and notify listeners when it changed."""
        with self._lock:
            if state == self._state:
                return
            self._state = state
            listeners = list(self._listeners)
        logger.info("Thermal state changed to %s", state.name)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Error in thermal listener")


class NoOpThermalProvider(ThermalProvider):
    """Reports no throttling; used when the platform exposes nothing."""

    def current_state(self) -> ThermalState:
        return ThermalState.NONE


class SignalThermalProvider(ThermalProvider):
    """Thermal status pushed by the host from the platform's own callback.

    Status codes follow the usual 0 (none) .. 5 (emergency) scale; anything
    else is treated as no throttling.
    """

    def __init__(self, initial_status: int = 0):
        super().__init__()
        self._state = self.map_status(initial_status)

    @staticmethod
    def map_status(status: int) -> ThermalState:
        try:
            return ThermalState(int(status))
        except (TypeError, ValueError):
            return ThermalState.NONE

    def current_state(self) -> ThermalState:
        with self._lock:
            return self._state

    def publish_status(self, status: int) -> None:
        self._update(self.map_status(status))


class SensorThermalProvider(ThermalProvider):
    """Polls hardware temperature sensors through psutil.

    The hottest reading is mapped through the configured Celsius thresholds.
    """

    def __init__(self, config: ThermalConfig,
                 reader: Callable[[], dict] | None = None):
        super().__init__()
        self._cfg = config
        self._reader = reader or (lambda: psutil.sensors_temperatures())

    def current_state(self) -> ThermalState:
        with self._lock:
            return self._state

    def poll(self) -> ThermalState:
        """Read the sensors once, update and return the state."""
        state = self.classify(self._read_max_celsius())
        self._update(state)
        return state

    def classify(self, celsius: float | None) -> ThermalState:
        if celsius is None:
            return ThermalState.NONE
        bands = [
            (self._cfg.emergency_celsius, ThermalState.EMERGENCY),
            (self._cfg.critical_celsius, ThermalState.CRITICAL),
            (self._cfg.severe_celsius, ThermalState.SEVERE),
            (self._cfg.moderate_celsius, ThermalState.MODERATE),
            (self._cfg.light_celsius, ThermalState.LIGHT),
        ]
        for threshold, state in bands:
            if celsius >= threshold:
                return state
        return ThermalState.NONE

    def _read_max_celsius(self) -> float | None:
        try:
            readings = self._reader() or {}
        except (AttributeError, OSError, psutil.Error):
            logger.debug("Temperature sensors unavailable", exc_info=True)
            return None
        temps = [
            entry.current
            for entries in readings.values()
            for entry in entries
            if getattr(entry, "current", None) is not None
        ]
        return max(temps) if temps else None


def create_thermal_provider(config: ThermalConfig) -> ThermalProvider:
    """Build the provider named in the config (noop, signal or sensor)."""
    if config.provider == "signal":
        return SignalThermalProvider()
    if config.provider == "sensor":
        return SensorThermalProvider(config)
    if config.provider != "noop":
        logger.warning("Unknown thermal provider %r, using noop", config.provider)
    return NoOpThermalProvider()
