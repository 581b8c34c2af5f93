"""
Value types shared by the buffer, estimator, classifier and session.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PulseMonitorError(Exception):
    """Base exception for pulse_monitor."""


class SessionStateError(PulseMonitorError):
    """An operation was requested in a session state that does not allow it."""


@dataclass(frozen=True)
class Sample:
    """One brightness reading and the monotonic time (ms) it was captured."""

    value: float
    timestamp_ms: int


class EstimationFailure(Enum):
    """Why a window did not produce a heart rate."""

    INSUFFICIENT_DATA = "insufficient_data"
    DEGENERATE_SIGNAL = "degenerate_signal"
    NO_RELIABLE_PEAKS = "no_reliable_peaks"
    IRREGULAR_RHYTHM = "irregular_rhythm"
    OUT_OF_PHYSIOLOGICAL_RANGE = "out_of_physiological_range"
    CALCULATION_ERROR = "calculation_error"

    @property
    def advice(self) -> str:
        """User-facing guidance for this failure."""
        return _ADVICE[self]


_ADVICE = {
    EstimationFailure.INSUFFICIENT_DATA: (
        "Not enough data. Please make sure your finger covers the camera "
        "completely and try again."
    ),
    EstimationFailure.DEGENERATE_SIGNAL: (
        "No signal variation detected. Turn on the flash and cover both the "
        "camera and flash with your fingertip."
    ),
    EstimationFailure.NO_RELIABLE_PEAKS: (
        "Could not detect heart rate. Make sure your finger is still and "
        "fully covering the camera."
    ),
    EstimationFailure.IRREGULAR_RHYTHM: (
        "The signal was too irregular. Keep your finger still and try again."
    ),
    EstimationFailure.OUT_OF_PHYSIOLOGICAL_RANGE: (
        "The reading was outside the expected range. Please try again."
    ),
    EstimationFailure.CALCULATION_ERROR: (
        "Error calculating heart rate. Please try again."
    ),
}


@dataclass(frozen=True)
class EstimationResult:
    """Either a validated ``bpm`` or a ``failure`` reason, never both."""

    bpm: Optional[int] = None
    failure: Optional[EstimationFailure] = None

    def __post_init__(self) -> None:
        if (self.bpm is None) == (self.failure is None):
            raise ValueError("EstimationResult needs exactly one of bpm / failure")

    @classmethod
    def success(cls, bpm: int) -> "EstimationResult":
        return cls(bpm=bpm)

    @classmethod
    def failed(cls, failure: EstimationFailure) -> "EstimationResult":
        return cls(failure=failure)

    @property
    def ok(self) -> bool:
        return self.bpm is not None


class StatusLevel(Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"


@dataclass(frozen=True)
class HealthStatus:
    """Qualitative reading of a BPM value, with a display colour (hex)."""

    level: StatusLevel
    message: str
    color: str

    @property
    def label(self) -> str:
        return self.level.value
