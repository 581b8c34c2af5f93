"""
Rolling window of brightness samples.

Values and timestamps live in two bounded deques that are always appended
and evicted together under one lock, so a snapshot taken by the consumer can
never see one array a sample ahead of the other.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Optional, Tuple

from pulse_monitor.config import BUFFER_CAPACITY
from pulse_monitor.models import Sample


class SampleBuffer:
    """
    Fixed-capacity FIFO of (value, timestamp) pairs.

    Parameters
    ----------
    capacity:
        Maximum number of samples kept.  Once full, every push silently
        drops the oldest sample.  Default: 225 (15 s at 15 Hz).
    """

    def __init__(self, capacity: int = BUFFER_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._values: Deque[float] = deque(maxlen=capacity)
        self._timestamps: Deque[int] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def push(self, sample: Sample) -> None:
        """Append *sample*, evicting the oldest entry when full."""
        with self._lock:
            self._values.append(float(sample.value))
            self._timestamps.append(int(sample.timestamp_ms))

    def snapshot(self) -> Tuple[Tuple[float, ...], Tuple[int, ...]]:
        """Return ``(values, timestamps)`` in insertion order."""
        with self._lock:
            return tuple(self._values), tuple(self._timestamps)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._timestamps.clear()

    @property
    def capacity(self) -> int:
        return self._values.maxlen

    @property
    def fill_ratio(self) -> float:
        """How full the window is (0 – 1)."""
        return len(self) / self.capacity

    @property
    def latest_timestamp(self) -> Optional[int]:
        with self._lock:
            return self._timestamps[-1] if self._timestamps else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
