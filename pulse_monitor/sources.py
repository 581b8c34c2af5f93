"""
Sample sources feeding a measurement session.

A source is polled by the session's acquisition task with the current
monotonic time and returns a ``Sample`` (or ``None`` when nothing could be
read).  Rate limiting is the session's job, not the source's.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import numpy as np

from pulse_monitor.camera import FingerCamera
from pulse_monitor.models import Sample

logger = logging.getLogger(__name__)


class SampleSource(Protocol):
    def read(self, timestamp_ms: int) -> Optional[Sample]:
        ...


class SyntheticSource:
    """
    Simulated fingertip brightness.

    A noisy baseline around 0.7 – 0.85 carries a 0.15-amplitude pulse whose
    rate drifts slowly between 55 and 75 BPM.  Handy for demos and for
    exercising a session without camera hardware; not a validation signal.

    Parameters
    ----------
    seed:
        Seed for the random generator (``None`` → non-deterministic).
    base_rate_bpm, rate_swing_bpm:
        Centre and amplitude of the simulated heart-rate drift.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        base_rate_bpm: float = 65.0,
        rate_swing_bpm: float = 10.0,
    ) -> None:
        self.base_rate_bpm = base_rate_bpm
        self.rate_swing_bpm = rate_swing_bpm
        self._rng = np.random.default_rng(seed)

    def read(self, timestamp_ms: int) -> Sample:
        t = timestamp_ms / 1000.0
        baseline = 0.7 + self._rng.random() * 0.15
        rate = self.base_rate_bpm + np.sin(t * 0.1) * self.rate_swing_bpm
        pulse = 0.15 * np.sin(2 * np.pi * t / (60.0 / rate))
        noise = (self._rng.random() - 0.5) * 0.03
        return Sample(value=float(baseline + pulse + noise), timestamp_ms=timestamp_ms)


class CameraSource:
    """
    Mean red brightness of the frame centre, scaled to [0, 1].

    Red carries the strongest pulsatile component when the torch shines
    through the fingertip.  The camera must already be open.

    Parameters
    ----------
    camera:
        An opened ``FingerCamera`` (or any object with ``read_red()``).
    roi_fraction:
        Side of the central square used, as a fraction of the shorter
        frame dimension.
    """

    def __init__(self, camera: FingerCamera, roi_fraction: float = 0.5) -> None:
        self.camera = camera
        self.roi_fraction = roi_fraction

    def read(self, timestamp_ms: int) -> Optional[Sample]:
        red = self.camera.read_red()
        if red is None:
            return None
        h, w = red.shape[:2]
        side = max(1, int(min(w, h) * self.roi_fraction))
        y0, x0 = (h - side) // 2, (w - side) // 2
        red_mean = float(np.mean(red[y0:y0 + side, x0:x0 + side]))
        return Sample(value=red_mean / 255.0, timestamp_ms=timestamp_ms)
