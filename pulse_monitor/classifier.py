"""
Age-aware heart-rate status classifier.

Resting heart-rate brackets
---------------------------
=============  ======  ========  =====
Age            Low     Normal    High
=============  ======  ========  =====
unknown        < 60    60 – 100  > 100
under 18       < 70    70 – 100  > 100
18 – 59        < 60    60 – 100  > 100
60 and over    < 60    60 – 100  > 100
=============  ======  ========  =====

The senior bracket currently shares the adult thresholds; it is kept as a
separate row so it can diverge without touching the lookup.
"""

from __future__ import annotations

from typing import Optional, Tuple

from pulse_monitor.models import HealthStatus, StatusLevel

LOW_COLOR = "#3498db"
NORMAL_COLOR = "#2ecc71"
HIGH_COLOR = "#e74c3c"

_GENERIC_MESSAGES = {
    StatusLevel.LOW: "Your heart rate is lower than average",
    StatusLevel.NORMAL: "Your heart rate is within normal range",
    StatusLevel.HIGH: "Your heart rate is higher than average",
}

_AGE_MESSAGES = {
    StatusLevel.LOW: "For your age, this heart rate is lower than average",
    StatusLevel.NORMAL: "Your heart rate is perfect for your age",
    StatusLevel.HIGH: "For your age, this heart rate is higher than average",
}

_COLORS = {
    StatusLevel.LOW: LOW_COLOR,
    StatusLevel.NORMAL: NORMAL_COLOR,
    StatusLevel.HIGH: HIGH_COLOR,
}

# (upper age bound exclusive, low threshold, high threshold)
_AGE_BRACKETS: Tuple[Tuple[float, int, int], ...] = (
    (18, 70, 100),
    (60, 60, 100),
    (float("inf"), 60, 100),
)
_DEFAULT_THRESHOLDS = (60, 100)


def thresholds_for_age(age: Optional[int]) -> Tuple[int, int]:
    """Return ``(low, high)``: below *low* is Low, above *high* is High."""
    if age is None:
        return _DEFAULT_THRESHOLDS
    for upper, low, high in _AGE_BRACKETS:
        if age < upper:
            return low, high
    return _DEFAULT_THRESHOLDS


def classify(bpm: int, age: Optional[int] = None) -> HealthStatus:
    """
    Classify *bpm* for a subject of the given *age* (years, optional).

    Works for any BPM source, camera-derived or provider-reported.
    """
    low, high = thresholds_for_age(age)
    if bpm < low:
        level = StatusLevel.LOW
    elif bpm <= high:
        level = StatusLevel.NORMAL
    else:
        level = StatusLevel.HIGH

    messages = _GENERIC_MESSAGES if age is None else _AGE_MESSAGES
    return HealthStatus(level=level, message=messages[level], color=_COLORS[level])
