"""
Tuning constants and session timings.

The estimator constants are calibrated for a ~15 Hz brightness stream; the
session timings reproduce a 15 second measurement with a 1 second progress
tick.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# Rolling window: 15 s at 15 Hz
BUFFER_CAPACITY: Final[int] = 225
HISTORY_SIZE: Final[int] = 5

# Estimator
MIN_SAMPLES: Final[int] = 60             # ~4 s at 15 Hz
SMOOTHING_HALF_WINDOW: Final[int] = 5    # 11-point moving average
PEAK_THRESHOLD: Final[float] = 0.6       # on the normalised signal
MAX_INTERVAL_DEVIATION: Final[float] = 0.30
MIN_BPM: Final[int] = 40
MAX_BPM: Final[int] = 200

# Acquisition
MIN_SAMPLE_INTERVAL_MS: Final[int] = 66  # ~15 Hz
POLL_INTERVAL_S: Final[float] = 0.05
TICK_INTERVAL_S: Final[float] = 1.0
SESSION_TICKS: Final[int] = 15


@dataclass
class MeasurementConfig:
    """Timings of one measurement session."""

    duration_ticks: int = SESSION_TICKS
    tick_interval_s: float = TICK_INTERVAL_S
    poll_interval_s: float = POLL_INTERVAL_S
    min_sample_interval_ms: int = MIN_SAMPLE_INTERVAL_MS
    buffer_capacity: int = BUFFER_CAPACITY
    history_size: int = HISTORY_SIZE
