"""Cancellable one-shot timers used by the auto-capture controller."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle:
    """Handle to a scheduled callback; cancel() is idempotent."""

    def __init__(self, name: str = "timer") -> None:
        self.name = name
        self._stop_event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def cancel(self) -> None:
        self._stop_event.set()

    def wait(self, timeout: float) -> bool:
        """Block up to timeout; True if cancelled meanwhile."""
        return self._stop_event.wait(timeout)


class TimerScheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], None],
                   name: str = "timer") -> TimerHandle:
        ...

    def shutdown(self) -> None:
        ...


class ThreadTimerScheduler:
    """Runs each one-shot timer on its own daemon thread."""

    def __init__(self) -> None:
        self._handles: set[TimerHandle] = set()
        self._lock = threading.Lock()

    def call_later(self, delay_s: float, callback: Callable[[], None],
                   name: str = "timer") -> TimerHandle:
        handle = TimerHandle(name)

        def _run() -> None:
            try:
                if not handle.wait(delay_s):
                    callback()
            except Exception:
                logger.exception("Error in timer %s", name)
            finally:
                with self._lock:
                    self._handles.discard(handle)

        with self._lock:
            self._handles.add(handle)
        thread = threading.Thread(target=_run, name=f"Timer-{name}", daemon=True)
        thread.start()
        return handle

    def shutdown(self) -> None:
        with self._lock:
            handles = list(self._handles)
            self._handles.clear()
        for handle in handles:
            handle.cancel()
