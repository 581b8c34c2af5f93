"""
PPG heart-rate estimator.

Algorithm
---------
1. Smooth the raw brightness with a centred moving average (half-window 5,
   clipped at both ends) to suppress sensor noise.
2. Rescale the smoothed signal to [0, 1].
3. Find peaks: points above 0.6 that are strictly greater than their two
   neighbours on each side.  Peaks are kept as *timestamps*, so an uneven
   capture rate does not bias the result.
4. Take peak-to-peak intervals, reject those deviating more than 30 % from
   the median interval, and convert the mean of the rest to BPM.
5. Accept only 40 – 200 BPM.

Every way this can go wrong is reported as an ``EstimationFailure`` rather
than a guessed number.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from scipy.signal import argrelmax

from pulse_monitor.config import (
    MAX_BPM,
    MAX_INTERVAL_DEVIATION,
    MIN_BPM,
    MIN_SAMPLES,
    PEAK_THRESHOLD,
    SMOOTHING_HALF_WINDOW,
)
from pulse_monitor.models import EstimationFailure, EstimationResult

logger = logging.getLogger(__name__)


class _Failed(Exception):
    """Internal short-circuit carrying a failure reason."""

    def __init__(self, failure: EstimationFailure) -> None:
        super().__init__(failure.value)
        self.failure = failure


class HeartRateEstimator:
    """
    Stateless BPM estimator for one window of brightness samples.

    Parameters
    ----------
    min_samples:
        Windows shorter than this fail with ``INSUFFICIENT_DATA``.
    half_window:
        Half-width of the moving-average filter (5 → up to 11 points).
    peak_threshold:
        Minimum normalised height of a peak (0 – 1).
    max_deviation:
        Largest accepted relative deviation of an interval from the median.
    bpm_low, bpm_high:
        Inclusive range of accepted results.
    """

    def __init__(
        self,
        min_samples: int = MIN_SAMPLES,
        half_window: int = SMOOTHING_HALF_WINDOW,
        peak_threshold: float = PEAK_THRESHOLD,
        max_deviation: float = MAX_INTERVAL_DEVIATION,
        bpm_low: int = MIN_BPM,
        bpm_high: int = MAX_BPM,
    ) -> None:
        self.min_samples = min_samples
        self.half_window = half_window
        self.peak_threshold = peak_threshold
        self.max_deviation = max_deviation
        self.bpm_low = bpm_low
        self.bpm_high = bpm_high

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def estimate(
        self, values: Sequence[float], timestamps: Sequence[int]
    ) -> EstimationResult:
        """
        Estimate BPM from parallel ``values`` / ``timestamps`` (ms).

        Raises
        ------
        ValueError
            If both sequences are long enough but differ in length.
        """
        if len(values) < self.min_samples or len(timestamps) < self.min_samples:
            logger.debug("Only %d samples – need %d.", len(values), self.min_samples)
            return EstimationResult.failed(EstimationFailure.INSUFFICIENT_DATA)
        if len(values) != len(timestamps):
            raise ValueError(
                f"values ({len(values)}) and timestamps ({len(timestamps)}) "
                "must have the same length"
            )
        return self._guarded(self._estimate, values, timestamps)

    def bpm_from_peak_times(self, peak_times: Sequence[int]) -> EstimationResult:
        """Run the interval stage on already-detected peak timestamps."""
        return self._guarded(self._from_peak_times, peak_times)

    def smooth(self, values: Sequence[float]) -> np.ndarray:
        """Centred moving average whose window shrinks at the edges."""
        signal = np.asarray(values, dtype=np.float64)
        kernel = np.ones(2 * self.half_window + 1)
        sums = np.convolve(signal, kernel, mode="same")
        counts = np.convolve(np.ones_like(signal), kernel, mode="same")
        return sums / counts

    def detect_peaks(self, normalised: np.ndarray) -> np.ndarray:
        """Indices of 5-point strict local maxima above the threshold."""
        n = len(normalised)
        (candidates,) = argrelmax(normalised, order=2)
        keep = (
            (candidates >= 2)
            & (candidates < n - 2)
            & (normalised[candidates] > self.peak_threshold)
        )
        return candidates[keep]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _guarded(self, stage, *args) -> EstimationResult:
        try:
            with np.errstate(divide="raise", over="raise", invalid="raise"):
                bpm = stage(*args)
        except _Failed as exc:
            logger.info("Estimation failed: %s", exc.failure.value)
            return EstimationResult.failed(exc.failure)
        except (ArithmeticError, ValueError, IndexError) as exc:
            logger.exception("Heart-rate calculation error: %s", exc)
            return EstimationResult.failed(EstimationFailure.CALCULATION_ERROR)
        logger.info("Estimated heart rate: %d BPM", bpm)
        return EstimationResult.success(bpm)

    def _estimate(self, values: Sequence[float], timestamps: Sequence[int]) -> int:
        raw = np.asarray(values, dtype=np.float64)
        if not np.all(np.isfinite(raw)):
            raise FloatingPointError("non-finite sample value")

        smoothed = self.smooth(raw)
        lo, hi = float(smoothed.min()), float(smoothed.max())
        if np.isclose(hi, lo, rtol=1e-9, atol=1e-12):
            raise _Failed(EstimationFailure.DEGENERATE_SIGNAL)
        normalised = (smoothed - lo) / (hi - lo)

        peaks = self.detect_peaks(normalised)
        peak_times = np.asarray(timestamps, dtype=np.int64)[peaks]
        logger.debug("Detected %d peaks in %d samples.", len(peak_times), len(raw))
        return self._from_peak_times(peak_times)

    def _from_peak_times(self, peak_times: Sequence[int]) -> int:
        if len(peak_times) < 3:
            raise _Failed(EstimationFailure.NO_RELIABLE_PEAKS)

        intervals = np.diff(np.asarray(peak_times, dtype=np.float64))
        median = np.sort(intervals)[len(intervals) // 2]
        deviation = np.abs(intervals - median) / median
        regular = intervals[deviation <= self.max_deviation]
        logger.debug(
            "Median interval %.1f ms, kept %d of %d intervals.",
            median, len(regular), len(intervals),
        )
        if len(regular) < 2:
            raise _Failed(EstimationFailure.IRREGULAR_RHYTHM)

        # Half-up rounding
        bpm = int(np.floor(60000.0 / regular.mean() + 0.5))
        if bpm < self.bpm_low or bpm > self.bpm_high:
            logger.debug("Rejected out-of-range result: %d BPM", bpm)
            raise _Failed(EstimationFailure.OUT_OF_PHYSIOLOGICAL_RANGE)
        return bpm


_DEFAULT = HeartRateEstimator()


def estimate(values: Sequence[float], timestamps: Sequence[int]) -> EstimationResult:
    """Estimate BPM with the default tuning."""
    return _DEFAULT.estimate(values, timestamps)
