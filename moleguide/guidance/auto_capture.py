"""Auto-capture: arms a countdown once READY validation holds steadily."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from functools import partial
from typing import Callable, Optional, Protocol, Sequence

from moleguide.config import AutoCaptureConfig
from moleguide.guidance.models import AutoCaptureState, GuideState, ValidationResult
from moleguide.guidance.timers import ThreadTimerScheduler, TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)

# Haptic pulse (delay, duration) in ms for the last seconds of a countdown
_COUNTDOWN_PULSES = {3: (0, 100), 2: (0, 150), 1: (0, 200)}

_ACTIVE_STATES = (AutoCaptureState.STABILITY_CHECK, AutoCaptureState.COUNTING_DOWN)


class AutoCaptureListener(Protocol):
    def on_countdown_started(self, seconds: int) -> None: ...

    def on_countdown_tick(self, seconds: int) -> None: ...

    def on_countdown_cancelled(self) -> None: ...

    def on_auto_capture(self) -> None: ...


class CaptureFeedback:
    """Haptic/spoken feedback renderer. The base class does nothing."""

    def vibrate(self, pattern_ms: Sequence[int]) -> None:
        pass

    def announce(self, text: str) -> None:
        pass

    def capture_success(self) -> None:
        pass


class AutoCaptureController:
    """State machine: idle -> stability check -> countdown -> captured.

    Any non-READY result during the stability check or the countdown
    cancels it. Every scheduled callback carries the token current at
    scheduling time; bumping the token invalidates all pending callbacks,
    so cancellation is visible as soon as cancel returns.

    Feedback and listener calls are queued while the state lock is held
    and run after it is released, in the order the transitions happened.
    A host callback may therefore read or drive the controller, from any
    thread, without blocking frame processing.
    """

    def __init__(self, config: AutoCaptureConfig,
                 scheduler: TimerScheduler | None = None,
                 feedback: CaptureFeedback | None = None,
                 listener: AutoCaptureListener | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self._cfg = config
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or ThreadTimerScheduler()
        self._feedback = feedback or CaptureFeedback()
        self._listener = listener
        self._clock = clock

        self._lock = threading.RLock()
        self._dispatch_lock = threading.RLock()
        # (token or None, name, call); a tokened call is dropped once stale
        self._pending: deque[tuple[Optional[int], str, Callable[[], None]]] = deque()

        self._enabled = config.enabled
        self._countdown_seconds = config.countdown_seconds
        self._state = AutoCaptureState.IDLE
        self._consecutive_valid = 0
        self._last_valid_time: Optional[float] = None
        self._last_result_valid = False
        self._remaining = 0
        self._token = 0
        self._handle: Optional[TimerHandle] = None

    @property
    def state(self) -> AutoCaptureState:
        with self._lock:
            return self._state

    @property
    def consecutive_valid(self) -> int:
        with self._lock:
            return self._consecutive_valid

    @property
    def remaining_seconds(self) -> int:
        with self._lock:
            return self._remaining if self._state == AutoCaptureState.COUNTING_DOWN else 0

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set_listener(self, listener: AutoCaptureListener | None) -> None:
        with self._lock:
            self._listener = listener

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._enabled = enabled
            logger.info("Auto capture %s", "enabled" if enabled else "disabled")
            if not enabled:
                self._cancel(announce=False)
        self._dispatch()

    def set_countdown_duration(self, seconds: int) -> None:
        with self._lock:
            self._countdown_seconds = max(0, int(seconds))

    def is_countdown_active(self) -> bool:
        with self._lock:
            return self._state == AutoCaptureState.COUNTING_DOWN

    def process(self, result: ValidationResult) -> AutoCaptureState:
        """Feed one frame's validation result; returns the resulting state."""
        with self._lock:
            if not self._enabled:
                return self._state

            now = self._clock()
            if result.can_capture and result.guide_state == GuideState.READY:
                if (self._last_valid_time is not None
                        and now - self._last_valid_time <= self._cfg.valid_gap):
                    self._consecutive_valid += 1
                else:
                    self._consecutive_valid = 1
                self._last_valid_time = now
                self._last_result_valid = True

                if (self._consecutive_valid >= self._cfg.stability_frames
                        and self._state not in _ACTIVE_STATES):
                    self._start_stability_check()
            else:
                self._last_result_valid = False
                if self._state in _ACTIVE_STATES:
                    self._cancel(announce=True)
                self._consecutive_valid = 0
            state = self._state
        self._dispatch()
        return state

    def start_countdown(self) -> None:
        """Start a fresh countdown, cancelling any one already running."""
        with self._lock:
            if not self._enabled:
                return
            self._cancel(announce=False)
            self._begin_countdown()
        self._dispatch()

    def cancel_countdown(self) -> bool:
        """Cancel a pending stability check or countdown; False if idle."""
        with self._lock:
            cancelled = self._cancel(announce=False)
        self._dispatch()
        return cancelled

    def force_capture(self) -> bool:
        """Capture immediately, bypassing stability and countdown."""
        with self._lock:
            if not self._enabled:
                return False
            logger.info("Forcing immediate capture")
            self._cancel(announce=False)
            self._execute_capture()
        self._dispatch()
        return True

    def close(self) -> None:
        with self._lock:
            self._cancel(announce=False)
            self._listener = None
        self._dispatch()
        if self._owns_scheduler:
            self._scheduler.shutdown()

    def _start_stability_check(self) -> None:
        self._invalidate()
        self._state = AutoCaptureState.STABILITY_CHECK
        token = self._token
        logger.debug("Starting stability check (%.1fs)", self._cfg.stability_duration)
        self._handle = self._scheduler.call_later(
            self._cfg.stability_duration,
            lambda: self._on_stability_elapsed(token),
            name="stability",
        )

    def _on_stability_elapsed(self, token: int) -> None:
        with self._lock:
            if token != self._token or self._state != AutoCaptureState.STABILITY_CHECK:
                return
            if (self._last_result_valid
                    and self._consecutive_valid >= self._cfg.stability_frames):
                self._begin_countdown()
            else:
                self._state = AutoCaptureState.IDLE
        self._dispatch()

    def _begin_countdown(self) -> None:
        self._invalidate()
        total = self._countdown_seconds
        self._state = AutoCaptureState.COUNTING_DOWN
        self._remaining = total
        logger.info("Auto-capture countdown started (%ds)", total)

        self._queue("announce", partial(self._feedback.announce,
                                        f"Auto capture in {total} seconds"))
        self._notify("on_countdown_started", total)
        if total <= 0:
            self._execute_capture()
            return
        self._emit_tick()

    def _emit_tick(self) -> None:
        remaining = self._remaining
        token = self._token
        pulse = _COUNTDOWN_PULSES.get(remaining)
        if pulse is not None:
            self._queue("vibrate", partial(self._feedback.vibrate, pulse), token)
        if remaining <= 3:
            self._queue("announce", partial(self._feedback.announce, str(remaining)),
                        token)
        self._notify("on_countdown_tick", remaining, token=token)

        self._handle = self._scheduler.call_later(
            self._cfg.tick_interval,
            lambda: self._advance(token),
            name="countdown",
        )

    def _advance(self, token: int) -> None:
        with self._lock:
            if token != self._token or self._state != AutoCaptureState.COUNTING_DOWN:
                return
            self._remaining -= 1
            if self._remaining <= 0:
                self._execute_capture()
            else:
                self._emit_tick()
        self._dispatch()

    def _execute_capture(self) -> None:
        self._invalidate()
        self._state = AutoCaptureState.CAPTURED
        self._remaining = 0
        self._consecutive_valid = 0
        self._last_valid_time = None
        logger.info("Auto capture fired")

        self._queue("capture_success", self._feedback.capture_success)
        self._queue("announce", partial(self._feedback.announce,
                                        "Capturing image automatically"))
        self._notify("on_auto_capture")

    def _cancel(self, announce: bool) -> bool:
        if self._state not in _ACTIVE_STATES:
            return False
        was = self._state
        self._invalidate()
        self._state = AutoCaptureState.CANCELLED
        self._remaining = 0
        self._consecutive_valid = 0
        logger.info("Auto capture cancelled during %s", was.value)

        if announce:
            self._queue("announce", partial(
                self._feedback.announce, "Auto capture cancelled - adjust the position"))
        self._notify("on_countdown_cancelled")
        return True

    def _invalidate(self) -> None:
        # Bump the token and drop the pending timer; stale callbacks become no-ops
        self._token += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _queue(self, name: str, call: Callable[[], None],
               token: Optional[int] = None) -> None:
        # Caller holds the lock
        self._pending.append((token, name, call))

    def _notify(self, method: str, *args: int, token: Optional[int] = None) -> None:
        listener = self._listener
        if listener is None:
            return
        self._queue(method, lambda: getattr(listener, method)(*args), token)

    def _dispatch(self) -> None:
        """Run queued calls outside the state lock.

        One thread drains at a time. A thread that finds another one
        draining leaves its calls to that thread, so a callback that hands
        work to a second thread never waits on itself.
        """
        while self._dispatch_lock.acquire(blocking=False):
            try:
                while True:
                    with self._lock:
                        if not self._pending:
                            break
                        token, name, call = self._pending.popleft()
                        stale = token is not None and token != self._token
                    if stale:
                        continue
                    try:
                        call()
                    except Exception:
                        logger.exception("Error in auto-capture callback %s", name)
            finally:
                self._dispatch_lock.release()
            with self._lock:
                if not self._pending:
                    return
