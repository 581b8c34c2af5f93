#!/usr/bin/env python3
"""
Pulse Monitor – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --source NAME        synthetic | camera (default: synthetic)
    --age INT            Age in years for the status classification
    --duration INT       Measurement length in seconds (default: 15)
    --runs INT           Number of consecutive measurements (default: 1)
    --seed INT           Seed for the synthetic source
    --resolution WxH     Camera resolution (default: 160x120)
    --camera-index INT   OpenCV camera index (default: 0)
    --dashboard FILE     Summarise an exported fitness-provider JSON instead
    --verbose            Debug logging

Press Ctrl+C during a measurement to cancel it.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
from datetime import datetime, timezone

from pydantic import ValidationError

from pulse_monitor.camera import FingerCamera
from pulse_monitor.classifier import classify
from pulse_monitor.config import SESSION_TICKS, MeasurementConfig
from pulse_monitor.fitness import (
    DashboardMetrics,
    ExportedProvider,
    analyse_sleep,
    analyse_steps,
    collect_dashboard,
)
from pulse_monitor.session import MeasurementHistory, MeasurementOutcome, MeasurementSession
from pulse_monitor.sources import CameraSource, SyntheticSource

logger = logging.getLogger("pulse_monitor")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Finger-on-lens PPG heart-rate monitor",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--source", choices=("synthetic", "camera"), default="synthetic",
                        help="Where brightness samples come from")
    parser.add_argument("--age", type=int, default=None,
                        help="Age in years (omit for age-independent thresholds)")
    parser.add_argument("--duration", type=int, default=SESSION_TICKS,
                        help="Measurement length in seconds")
    parser.add_argument("--runs", type=int, default=1,
                        help="Number of consecutive measurements")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for the synthetic source")
    parser.add_argument("--resolution", default="160x120",
                        help="Camera resolution, e.g. 160x120")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index (fallback)")
    parser.add_argument("--dashboard", metavar="FILE", default=None,
                        help="Summarise an exported fitness-provider JSON and exit")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def format_outcome(outcome: MeasurementOutcome) -> str:
    result = outcome.result
    if not result.ok:
        return f"No reading ({result.failure.value}): {result.failure.advice}"
    status = outcome.status
    return f"{result.bpm} BPM – {status.label}: {status.message} [{status.color}]"


def format_dashboard(metrics: DashboardMetrics, age: int | None = None) -> list[str]:
    lines = [
        f"Steps: {metrics.steps} ({analyse_steps(metrics.steps).message})",
        f"Calories: {metrics.calories} kcal, distance: {metrics.distance_km} km",
        f"Sleep: {metrics.sleep_hours} h ({analyse_sleep(metrics.sleep_hours).message})",
    ]
    if metrics.heart_rate is None:
        lines.append("Heart rate: no recent reading")
    else:
        status = classify(metrics.heart_rate, age)
        lines.append(
            f"Heart rate: {metrics.heart_rate} BPM – {status.label}: {status.message}"
        )
    return lines


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run_dashboard(path: str, age: int | None = None) -> int:
    try:
        with open(path, encoding="utf-8") as fh:
            provider = ExportedProvider.from_json(fh.read())
    except OSError as exc:
        logger.error("Cannot read %s: %s", path, exc)
        return 1
    except ValidationError as exc:
        logger.error("%s is not a fitness export: %d error(s)", path, exc.error_count())
        return 1

    metrics = collect_dashboard(provider, datetime.now(timezone.utc))
    for line in format_dashboard(metrics, age):
        print(line)
    return 0


def run(args: argparse.Namespace) -> int:
    if args.dashboard is not None:
        return run_dashboard(args.dashboard, args.age)
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 160x120.")
        return 1
    if args.duration <= 0 or args.runs <= 0:
        logger.error("--duration and --runs must be positive.")
        return 1

    config = MeasurementConfig(duration_ticks=args.duration)
    history = MeasurementHistory(config.history_size)

    with contextlib.ExitStack() as stack:
        if args.source == "camera":
            camera = stack.enter_context(
                FingerCamera(resolution=(res_w, res_h), camera_index=args.camera_index)
            )
            source = CameraSource(camera)
        else:
            source = SyntheticSource(seed=args.seed)

        session = MeasurementSession(source, config=config, age=args.age, history=history)
        logger.info("Cover the camera and flash with your fingertip and keep still.")

        for run_idx in range(1, args.runs + 1):
            session.start()
            try:
                while session.is_active:
                    session.wait(timeout=config.tick_interval_s)
                    if session.is_active:
                        print(f"  {session.progress}/{config.duration_ticks} seconds "
                              f"({len(session.buffer)} samples)")
            except KeyboardInterrupt:
                if session.is_active:
                    session.cancel()
                print("Measurement cancelled.")
                break

            print(f"[{run_idx}/{args.runs}] {format_outcome(session.outcome)}")

    if len(history):
        print("History: " + ", ".join(f"{bpm} BPM" for bpm in history))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
