"""
Unit tests for MeasurementSession, PeriodicTask and MeasurementHistory.
Run with:  pytest tests/
"""

from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from pulse_monitor.config import MeasurementConfig
from pulse_monitor.estimator import HeartRateEstimator
from pulse_monitor.models import (
    EstimationFailure,
    EstimationResult,
    Sample,
    SessionStateError,
    StatusLevel,
)
from pulse_monitor.session import (
    MeasurementHistory,
    MeasurementSession,
    PeriodicTask,
    SessionState,
)


def _pulse_samples(freq_hz: float = 1.2, n: int = 225, phase: float = 1.825):
    """
    Noise-free 15 Hz pulse; same shape and phase as the estimator tests.

    The phase matters: see ``TestEdgeSensitivity`` in test_estimator.py.
    """
    i = np.arange(n)
    values = 0.75 + 0.15 * np.sin(2 * np.pi * freq_hz * i / 15.0 + phase)
    timestamps = np.round(i * 1000.0 / 15.0).astype(int)
    return [Sample(float(v), int(t)) for v, t in zip(values, timestamps)]


class _ConstantSource:
    def read(self, timestamp_ms):
        return Sample(0.8, timestamp_ms)


class _CountingEstimator(HeartRateEstimator):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def estimate(self, values, timestamps):
        self.calls += 1
        return super().estimate(values, timestamps)


class _FixedEstimator(HeartRateEstimator):
    def __init__(self, bpm):
        super().__init__()
        self.bpm = bpm

    def estimate(self, values, timestamps):
        return EstimationResult.success(self.bpm)


def _manual_session(**kwargs) -> MeasurementSession:
    session = MeasurementSession(_ConstantSource(), **kwargs)
    session.start(drive=False)
    return session


# ---------------------------------------------------------------------------
# Manually driven sessions
# ---------------------------------------------------------------------------

class TestMeasurementSession:

    def test_initial_state(self):
        session = MeasurementSession(_ConstantSource())
        assert session.state is SessionState.IDLE
        assert session.outcome is None
        assert not session.is_active

    def test_completes_on_last_tick(self):
        completed = []
        session = _manual_session(age=30, on_complete=completed.append)
        assert all(session.feed(s) for s in _pulse_samples())

        for _ in range(14):
            session.tick()
        assert session.state is SessionState.ACQUIRING
        assert session.progress == 14

        session.tick()
        assert session.state is SessionState.COMPLETED
        outcome = session.outcome
        assert outcome.result.ok
        assert abs(outcome.result.bpm - 72) <= 1
        assert outcome.status.level is StatusLevel.NORMAL
        assert session.history.entries() == [outcome.result.bpm]
        assert completed == [outcome]
        assert len(session.buffer) == 0

    @pytest.mark.parametrize("age, level", [(17, StatusLevel.LOW), (19, StatusLevel.NORMAL)])
    def test_age_reaches_classifier(self, age, level):
        session = _manual_session(age=age, estimator=_FixedEstimator(65))
        outcome = session.stop()
        assert outcome.result.bpm == 65
        assert outcome.status.level is level
        assert "for your age" in outcome.status.message.lower()

    def test_rate_gate(self):
        session = _manual_session()
        assert session.feed(Sample(0.5, 1000))
        assert not session.feed(Sample(0.5, 1030))
        assert not session.feed(Sample(0.5, 1065))
        assert session.feed(Sample(0.5, 1066))
        assert len(session.buffer) == 2

    def test_feed_ignored_when_not_acquiring(self):
        session = MeasurementSession(_ConstantSource())
        assert not session.feed(Sample(0.5, 0))
        assert len(session.buffer) == 0

    def test_stop_early_processes_what_was_collected(self):
        completed = []
        session = _manual_session(on_complete=completed.append)
        for s in _pulse_samples()[:40]:
            session.feed(s)
        outcome = session.stop()
        assert session.state is SessionState.COMPLETED
        assert outcome.result.failure is EstimationFailure.INSUFFICIENT_DATA
        assert outcome.status is None
        assert len(session.history) == 0
        assert completed == [outcome]

    def test_cancel_discards_window_and_keeps_previous_outcome(self):
        estimator = _CountingEstimator()
        session = MeasurementSession(_ConstantSource(), estimator=estimator)
        session.start(drive=False)
        for s in _pulse_samples():
            session.feed(s)
        previous = session.stop()
        assert estimator.calls == 1

        session.start(drive=False)
        for s in _pulse_samples():
            session.feed(s)
        session.cancel()

        assert session.state is SessionState.CANCELLED
        assert len(session.buffer) == 0
        assert estimator.calls == 1
        assert session.outcome is previous
        assert session.wait(timeout=0) is previous

    def test_finishes_exactly_once(self):
        completed = []
        estimator = _CountingEstimator()
        session = _manual_session(
            config=MeasurementConfig(duration_ticks=1),
            estimator=estimator,
            on_complete=completed.append,
        )
        session.tick()
        with pytest.raises(SessionStateError):
            session.stop()
        session.tick()
        assert estimator.calls == 1
        assert len(completed) == 1
        assert session.state is SessionState.COMPLETED

    def test_tick_after_completion_is_noop(self):
        session = _manual_session(config=MeasurementConfig(duration_ticks=2))
        session.tick()
        session.tick()
        assert session.state is SessionState.COMPLETED
        session.tick()
        assert session.progress == 2

    def test_restart_resets_progress_and_gate(self):
        session = _manual_session(config=MeasurementConfig(duration_ticks=1))
        session.feed(Sample(0.5, 5000))
        session.tick()
        session.start(drive=False)
        assert session.progress == 0
        assert len(session.buffer) == 0
        assert session.feed(Sample(0.5, 10))

    @pytest.mark.parametrize("action", ["stop", "cancel"])
    def test_stop_or_cancel_when_idle_raises(self, action):
        session = MeasurementSession(_ConstantSource())
        with pytest.raises(SessionStateError):
            getattr(session, action)()

    def test_start_twice_raises(self):
        session = _manual_session()
        with pytest.raises(SessionStateError):
            session.start(drive=False)

    def test_history_is_shared_and_capped(self):
        history = MeasurementHistory()
        session = MeasurementSession(_ConstantSource(), history=history)
        for _ in range(7):
            session.start(drive=False)
            for s in _pulse_samples():
                session.feed(s)
            session.stop()
        assert len(history) == 5


# ---------------------------------------------------------------------------
# Background-driven sessions
# ---------------------------------------------------------------------------

class TestDrivenSession:

    def test_runs_to_completion(self):
        completed = []
        config = MeasurementConfig(
            duration_ticks=3, tick_interval_s=0.02,
            poll_interval_s=0.005, min_sample_interval_ms=0,
        )
        session = MeasurementSession(
            _ConstantSource(), config=config, on_complete=completed.append
        )
        session.start()
        outcome = session.wait(timeout=5.0)
        assert session.state is SessionState.COMPLETED
        assert outcome is not None
        assert outcome.result.failure is EstimationFailure.INSUFFICIENT_DATA
        assert completed == [outcome]

    def test_cancel_halts_acquisition(self):
        completed = []
        config = MeasurementConfig(
            duration_ticks=1000, tick_interval_s=0.01, poll_interval_s=0.005
        )
        session = MeasurementSession(
            _ConstantSource(), config=config, on_complete=completed.append
        )
        session.start()
        time.sleep(0.05)
        session.cancel()
        assert session.state is SessionState.CANCELLED
        assert session.wait(timeout=0) is None
        time.sleep(0.03)
        assert len(session.buffer) == 0
        assert completed == []


# ---------------------------------------------------------------------------
# PeriodicTask / MeasurementHistory
# ---------------------------------------------------------------------------

class TestPeriodicTask:

    def test_cancel_from_callback(self):
        calls = []
        done = threading.Event()

        def callback():
            calls.append(1)
            if len(calls) == 3:
                task.cancel()
                done.set()

        task = PeriodicTask(0.005, callback, name="test-task")
        task.start()
        assert done.wait(timeout=2.0)
        task.join(timeout=1.0)
        assert task.cancelled
        assert len(calls) == 3

    def test_failing_callback_stops_task(self):
        def callback():
            raise RuntimeError("boom")

        task = PeriodicTask(0.005, callback, name="failing-task")
        task.start()
        task.join(timeout=2.0)
        assert task.cancelled

    def test_start_twice_raises(self):
        task = PeriodicTask(10.0, lambda: None)
        task.start()
        try:
            with pytest.raises(RuntimeError):
                task.start()
        finally:
            task.cancel()
            task.join(timeout=1.0)


class TestMeasurementHistory:

    def test_most_recent_first_and_capped(self):
        history = MeasurementHistory(size=5)
        for bpm in range(60, 67):
            history.record(bpm)
        assert history.entries() == [66, 65, 64, 63, 62]
        assert list(history) == [66, 65, 64, 63, 62]

    def test_clear(self):
        history = MeasurementHistory()
        history.record(70)
        history.clear()
        assert len(history) == 0
