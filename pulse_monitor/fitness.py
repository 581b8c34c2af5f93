"""
Adapter for fitness-data provider records (Google Fit / HealthKit style).

Provider samples are loose dictionaries with many optional fields.  Each
record is validated into a pydantic model at the boundary; records that do
not validate are logged and dropped, so the rest of the package only ever
sees well-formed ``SleepEntry`` / ``HeartRateReading`` values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Type, TypeVar

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

CALORIES_PER_STEP = 0.04
KM_PER_STEP = 0.0008


class FitnessProvider(Protocol):
    """Time-ranged queries a fitness backend answers."""

    def steps(self, start: datetime, end: datetime) -> int:
        ...

    def heart_rate_samples(self, start: datetime, end: datetime) -> List[Mapping[str, Any]]:
        ...

    def sleep_samples(self, start: datetime, end: datetime) -> List[Mapping[str, Any]]:
        ...


# ---------------------------------------------------------------------------
# Provider records
# ---------------------------------------------------------------------------

class ProviderRecord(BaseModel):
    """Base for provider records: unknown fields are ignored, values frozen."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class SleepEntry(ProviderRecord):
    start: AwareDatetime = Field(alias="startDate")
    end: AwareDatetime = Field(alias="endDate")

    @model_validator(mode="after")
    def _ends_after_start(self) -> "SleepEntry":
        if self.end < self.start:
            raise ValueError("endDate before startDate")
        return self

    @property
    def hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600.0


class HeartRateReading(ProviderRecord):
    value: float = Field(gt=0, allow_inf_nan=False)
    end: AwareDatetime = Field(alias="endDate")


RecordT = TypeVar("RecordT", bound=ProviderRecord)


def _validate_records(
    model: Type[RecordT], records: Iterable[Any], kind: str
) -> List[RecordT]:
    parsed: List[RecordT] = []
    for record in records:
        try:
            parsed.append(model.model_validate(record))
        except ValidationError as exc:
            first = exc.errors()[0]
            logger.warning(
                "Skipping %s record: %s (%s)",
                kind, first["msg"], ".".join(str(p) for p in first["loc"]) or "record",
            )
    return parsed


def parse_sleep_entries(records: Iterable[Mapping[str, Any]]) -> List[SleepEntry]:
    """Map provider sleep samples to ``SleepEntry``; skip unusable records."""
    return _validate_records(SleepEntry, records, "sleep")


def total_sleep_hours(entries: Iterable[SleepEntry]) -> float:
    """Total sleep in hours, rounded to one decimal."""
    return round(sum(entry.hours for entry in entries), 1)


def parse_heart_rate_samples(records: Iterable[Mapping[str, Any]]) -> List[HeartRateReading]:
    return _validate_records(HeartRateReading, records, "heart-rate")


def latest_heart_rate(readings: Iterable[HeartRateReading]) -> Optional[int]:
    """Rounded value of the most recent reading, or *None* if there is none."""
    latest = max(readings, key=lambda r: r.end, default=None)
    if latest is None:
        return None
    return int(round(latest.value))


def estimate_calories(steps: int) -> int:
    return int(round(steps * CALORIES_PER_STEP))


def estimate_distance_km(steps: int) -> float:
    return round(steps * KM_PER_STEP, 2)


# ---------------------------------------------------------------------------
# Dashboard analyses
# ---------------------------------------------------------------------------

class AnalysisLevel(Enum):
    GOOD = "good"
    WARNING = "warning"
    BAD = "bad"


@dataclass(frozen=True)
class MetricAnalysis:
    level: AnalysisLevel
    message: str


def analyse_heart_rate(bpm: float) -> MetricAnalysis:
    if bpm < 60:
        return MetricAnalysis(AnalysisLevel.WARNING, "Low heart rate. Consult doctor if dizzy.")
    if bpm > 100:
        return MetricAnalysis(AnalysisLevel.WARNING, "Elevated heart rate. Try deep breathing.")
    return MetricAnalysis(AnalysisLevel.GOOD, "Heart rate normal.")


def analyse_blood_pressure(systolic: float, diastolic: float) -> MetricAnalysis:
    if systolic > 140 or diastolic > 90:
        return MetricAnalysis(AnalysisLevel.BAD, "High blood pressure. Monitor & consult doctor.")
    if systolic < 90 or diastolic < 60:
        return MetricAnalysis(AnalysisLevel.WARNING, "Low blood pressure. Stay hydrated.")
    return MetricAnalysis(AnalysisLevel.GOOD, "Blood pressure normal.")


def analyse_steps(steps: int) -> MetricAnalysis:
    if steps < 5000:
        return MetricAnalysis(AnalysisLevel.WARNING, "Walk more today.")
    if steps < 10000:
        return MetricAnalysis(AnalysisLevel.GOOD, "Good step count.")
    return MetricAnalysis(AnalysisLevel.GOOD, "Step goal achieved!")


def analyse_sleep(hours: float) -> MetricAnalysis:
    if hours < 6:
        return MetricAnalysis(AnalysisLevel.BAD, "Too little sleep. Need 7–9 hours.")
    if hours < 7:
        return MetricAnalysis(AnalysisLevel.WARNING, "Slightly less sleep. Aim for 7+ hours.")
    return MetricAnalysis(AnalysisLevel.GOOD, "Great sleep duration.")


def analyse_oxygen(spo2: float) -> MetricAnalysis:
    if spo2 < 92:
        return MetricAnalysis(AnalysisLevel.BAD, "Low oxygen. Consult doctor.")
    if spo2 < 95:
        return MetricAnalysis(AnalysisLevel.WARNING, "Slightly low oxygen. Rest if needed.")
    return MetricAnalysis(AnalysisLevel.GOOD, "Oxygen level normal.")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DashboardMetrics:
    steps: int
    calories: int
    distance_km: float
    sleep_hours: float
    heart_rate: Optional[int]


def collect_dashboard(provider: FitnessProvider, now: datetime) -> DashboardMetrics:
    """
    Query *provider* for today's activity, the last hour of heart rate and
    the last 24 h of sleep.
    """
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    steps = int(provider.steps(day_start, now))
    readings = parse_heart_rate_samples(
        provider.heart_rate_samples(now - timedelta(hours=1), now)
    )
    sleep = parse_sleep_entries(provider.sleep_samples(now - timedelta(days=1), now))
    metrics = DashboardMetrics(
        steps=steps,
        calories=estimate_calories(steps),
        distance_km=estimate_distance_km(steps),
        sleep_hours=total_sleep_hours(sleep),
        heart_rate=latest_heart_rate(readings),
    )
    logger.debug("Dashboard metrics: %s", metrics)
    return metrics


# ---------------------------------------------------------------------------
# Exported provider data
# ---------------------------------------------------------------------------

class ProviderExport(BaseModel):
    """
    One dashboard refresh saved as JSON::

        {"steps": 6000,
         "heartRate": [{"value": 72, "endDate": "2024-03-02T09:40:00Z"}],
         "sleep": [{"startDate": "...", "endDate": "..."}]}

    Records stay raw here; they are validated one by one when parsed, so a
    single bad record does not reject the whole export.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    step_count: int = Field(default=0, ge=0, alias="steps")
    heart_rate: List[Any] = Field(default_factory=list, alias="heartRate")
    sleep: List[Any] = Field(default_factory=list)


class ExportedProvider:
    """
    ``FitnessProvider`` answering from a ``ProviderExport``.

    The export was taken for the dashboard's own query windows, so the
    requested ranges are not applied again.
    """

    def __init__(self, export: ProviderExport) -> None:
        self.export = export

    @classmethod
    def from_json(cls, text: str) -> "ExportedProvider":
        """Raises ``pydantic.ValidationError`` if *text* is not a valid export."""
        return cls(ProviderExport.model_validate_json(text))

    def steps(self, start: datetime, end: datetime) -> int:
        return self.export.step_count

    def heart_rate_samples(self, start: datetime, end: datetime) -> List[Any]:
        return list(self.export.heart_rate)

    def sleep_samples(self, start: datetime, end: datetime) -> List[Any]:
        return list(self.export.sleep)
