"""Bounded free list of reusable numpy image buffers."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)


class BufferPool:
    """Borrow/return pool for scratch image buffers.

    The cap is read on every return so it follows the active performance
    profile; buffers returned past the cap are dropped, never queued.
    """

    def __init__(self, capacity: Callable[[], int] | int = 10):
        self._capacity = capacity if callable(capacity) else (lambda: capacity)
        self._free: deque[np.ndarray] = deque()
        self._lock = threading.Lock()
        self._allocated = 0
        self._reused = 0
        self._dropped = 0

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._free)

    def borrow(self, shape: tuple[int, ...],
               dtype: np.dtype | type = np.uint8) -> np.ndarray:
        """Return a buffer with the given shape and dtype (contents undefined)."""
        dtype = np.dtype(dtype)
        with self._lock:
            for i, buf in enumerate(self._free):
                if buf.shape == tuple(shape) and buf.dtype == dtype:
                    del self._free[i]
                    self._reused += 1
                    return buf
            self._allocated += 1
        return np.empty(shape, dtype=dtype)

    def give_back(self, buf: np.ndarray) -> None:
        """Return a buffer; it is dropped if the pool is already full."""
        cap = max(0, int(self._capacity()))
        with self._lock:
            if len(self._free) < cap:
                self._free.append(buf)
                return
            self._dropped += 1
            logger.debug("Buffer pool full (%d), dropping buffer", cap)
            # Shrink when the profile tightened the cap
            while len(self._free) > cap:
                self._free.popleft()

    def clear(self) -> None:
        with self._lock:
            self._free.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "pooled": len(self._free),
                "capacity": max(0, int(self._capacity())),
                "allocated": self._allocated,
                "reused": self._reused,
                "dropped": self._dropped,
            }
