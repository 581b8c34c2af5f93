"""
Measurement session: owns the sample buffer for one 15 second measurement.

State machine
-------------
::

    IDLE ──start()──▶ ACQUIRING ──15th tick / stop()──▶ PROCESSING ──▶ COMPLETED
                          │
                          └──cancel()──▶ CANCELLED

COMPLETED and CANCELLED sessions can be started again.  Two periodic tasks
run while acquiring: one polls the sample source every 50 ms, the other
advances the progress counter once per second.  Both are cancelled the
moment the session leaves ACQUIRING.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Iterator, List, Optional

from pulse_monitor.classifier import classify
from pulse_monitor.config import HISTORY_SIZE, MeasurementConfig
from pulse_monitor.estimator import HeartRateEstimator
from pulse_monitor.models import (
    EstimationResult,
    HealthStatus,
    Sample,
    SessionStateError,
)
from pulse_monitor.sample_buffer import SampleBuffer
from pulse_monitor.sources import SampleSource

logger = logging.getLogger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class PeriodicTask:
    """
    Run *callback* every *interval_s* seconds on a daemon thread until
    cancelled.

    The first call happens one interval after ``start()``.  ``cancel()`` is
    idempotent and may be called from inside *callback*.
    """

    def __init__(
        self,
        interval_s: float,
        callback: Callable[[], None],
        name: str = "periodic-task",
    ) -> None:
        self.interval_s = interval_s
        self.callback = callback
        self.name = name
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval_s):
            try:
                self.callback()
            except Exception:
                logger.exception("%s failed – stopping.", self.name)
                self._cancelled.set()


class SessionState(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MeasurementOutcome:
    """Estimation result plus, on success, its health status."""

    result: EstimationResult
    status: Optional[HealthStatus] = None


class MeasurementHistory:
    """Most-recent-first list of successful BPM readings, bounded."""

    def __init__(self, size: int = HISTORY_SIZE) -> None:
        self._entries: Deque[int] = deque(maxlen=size)

    def record(self, bpm: int) -> None:
        self._entries.appendleft(bpm)

    def entries(self) -> List[int]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._entries))


class MeasurementSession:
    """
    One camera-PPG measurement at a time.

    Parameters
    ----------
    source:
        Where samples come from (camera or synthetic).
    config:
        Session timings; see ``MeasurementConfig``.
    estimator:
        BPM estimator (default tuning if omitted).
    age:
        Subject age in years, forwarded to the classifier.  ``None`` uses
        the age-independent thresholds.
    history:
        Shared history to record successful readings into.
    on_complete:
        Called once with the outcome when a session completes (not when it
        is cancelled).  Runs on the thread that completed the session.
    clock:
        Monotonic millisecond clock used to timestamp polled samples.
    """

    def __init__(
        self,
        source: SampleSource,
        config: Optional[MeasurementConfig] = None,
        estimator: Optional[HeartRateEstimator] = None,
        age: Optional[int] = None,
        history: Optional[MeasurementHistory] = None,
        on_complete: Optional[Callable[[MeasurementOutcome], None]] = None,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.source = source
        self.config = config or MeasurementConfig()
        self.estimator = estimator or HeartRateEstimator()
        self.age = age
        self.history = (
            history if history is not None
            else MeasurementHistory(self.config.history_size)
        )
        self.on_complete = on_complete
        self._clock = clock

        self.buffer = SampleBuffer(self.config.buffer_capacity)
        self._lock = threading.RLock()
        self._done = threading.Event()
        self._done.set()
        self._state = SessionState.IDLE
        self._progress = 0
        self._last_accepted_ms: Optional[int] = None
        self._outcome: Optional[MeasurementOutcome] = None
        self._tasks: List[PeriodicTask] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SessionState.ACQUIRING, SessionState.PROCESSING)

    @property
    def progress(self) -> int:
        """Elapsed one-second ticks of the current session."""
        return self._progress

    @property
    def progress_ratio(self) -> float:
        return min(1.0, self._progress / self.config.duration_ticks)

    @property
    def outcome(self) -> Optional[MeasurementOutcome]:
        """Latest completed outcome; survives cancellation of a later run."""
        return self._outcome

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, drive: bool = True) -> None:
        """
        Begin acquiring.

        With ``drive=False`` no background tasks are started and the caller
        is responsible for calling ``feed()`` and ``tick()``.
        """
        with self._lock:
            if self._state in (SessionState.ACQUIRING, SessionState.PROCESSING):
                raise SessionStateError(f"cannot start while {self._state.value}")
            self.buffer.clear()
            self._progress = 0
            self._last_accepted_ms = None
            self._state = SessionState.ACQUIRING
            self._done.clear()
            if drive:
                self._tasks = [
                    PeriodicTask(self.config.poll_interval_s, self._poll, "acquisition"),
                    PeriodicTask(self.config.tick_interval_s, self.tick, "progress"),
                ]
                for task in self._tasks:
                    task.start()
        logger.info(
            "Measurement started – %d s, age=%s.", self.config.duration_ticks, self.age
        )

    def feed(self, sample: Sample) -> bool:
        """
        Offer *sample* to the buffer.

        Returns *False* when the session is not acquiring or the sample
        arrives sooner than the minimum sample interval after the last one.
        """
        with self._lock:
            if self._state is not SessionState.ACQUIRING:
                return False
            last = self._last_accepted_ms
            if last is not None and sample.timestamp_ms - last < self.config.min_sample_interval_ms:
                logger.debug("Dropped sample %d ms after previous.", sample.timestamp_ms - last)
                return False
            self.buffer.push(sample)
            self._last_accepted_ms = sample.timestamp_ms
            return True

    def tick(self) -> None:
        """Advance progress by one tick; the last tick completes the session."""
        with self._lock:
            if self._state is not SessionState.ACQUIRING:
                return
            self._progress += 1
            logger.debug(
                "Progress %d/%d (%d samples).",
                self._progress, self.config.duration_ticks, len(self.buffer),
            )
            if self._progress < self.config.duration_ticks:
                return
            outcome, tasks = self._finish()
        self._after_finish(outcome, tasks)

    def stop(self) -> MeasurementOutcome:
        """End acquisition now and estimate from what has been collected."""
        with self._lock:
            if self._state is not SessionState.ACQUIRING:
                raise SessionStateError(f"cannot stop while {self._state.value}")
            outcome, tasks = self._finish()
        self._after_finish(outcome, tasks)
        return outcome

    def cancel(self) -> None:
        """Abort acquisition and discard the window without estimating."""
        with self._lock:
            if self._state is not SessionState.ACQUIRING:
                raise SessionStateError(f"cannot cancel while {self._state.value}")
            tasks = self._halt_tasks()
            self.buffer.clear()
            self._state = SessionState.CANCELLED
            self._done.set()
        self._join(tasks)
        logger.info("Measurement cancelled after %d s.", self._progress)

    def wait(self, timeout: Optional[float] = None) -> Optional[MeasurementOutcome]:
        """Block until the session completes or is cancelled."""
        self._done.wait(timeout)
        return self._outcome

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _poll(self) -> None:
        sample = self.source.read(self._clock())
        if sample is not None:
            self.feed(sample)

    def _halt_tasks(self) -> List[PeriodicTask]:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        return tasks

    @staticmethod
    def _join(tasks: List[PeriodicTask]) -> None:
        for task in tasks:
            task.join(timeout=1.0)

    def _finish(self):
        # Caller holds self._lock.
        tasks = self._halt_tasks()
        self._state = SessionState.PROCESSING
        values, timestamps = self.buffer.snapshot()
        logger.info("Processing %d samples.", len(values))

        result = self.estimator.estimate(values, timestamps)
        status = classify(result.bpm, self.age) if result.ok else None
        outcome = MeasurementOutcome(result=result, status=status)
        if result.ok:
            self.history.record(result.bpm)
        else:
            logger.warning("Measurement failed: %s", result.failure.value)

        self.buffer.clear()
        self._outcome = outcome
        self._state = SessionState.COMPLETED
        return outcome, tasks

    def _after_finish(self, outcome: MeasurementOutcome, tasks: List[PeriodicTask]) -> None:
        try:
            self._join(tasks)
            if self.on_complete is not None:
                self.on_complete(outcome)
        finally:
            self._done.set()
