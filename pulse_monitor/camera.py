"""
Camera capture tuned for a fingertip pressed over the lens.

With the lens covered and the torch on, the frame is a near-uniform red
glow whose brightness rises and falls with each pulse.  Auto exposure and
auto white balance would chase exactly that change, so both are switched
off and a short fixed exposure is used instead.  Only the red plane is
handed on.

Backends: picamera2 on Raspberry Pi OS, OpenCV ``VideoCapture`` elsewhere.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

try:
    from picamera2 import Picamera2
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False

# Both backends deliver pixels in B, G, R order (picamera2 "RGB888" included).
_RED = 2


class _Picamera2Backend:
    name = "picamera2"

    def __init__(self, resolution: Tuple[int, int], fps: int,
                 exposure_us: Optional[int], gain: float) -> None:
        frame_us = int(1_000_000 / fps)
        controls = {"FrameDurationLimits": (frame_us, frame_us), "AwbEnable": False}
        if exposure_us is not None:
            controls.update(AeEnable=False, ExposureTime=exposure_us, AnalogueGain=gain)
        cam = Picamera2()
        cam.configure(cam.create_video_configuration(
            main={"size": resolution, "format": "RGB888"},
            controls=controls,
        ))
        cam.start()
        self._cam = cam

    def read_red(self) -> Optional[np.ndarray]:
        frame = self._cam.capture_array("main")
        return None if frame is None else frame[:, :, _RED]

    def release(self) -> None:
        self._cam.stop()
        self._cam.close()


class _OpenCVBackend:
    name = "opencv"

    def __init__(self, index: int, resolution: Tuple[int, int], fps: int,
                 exposure_us: Optional[int]) -> None:
        cap = cv2.VideoCapture(index)
        if not cap.isOpened():
            cap.release()
            raise RuntimeError(f"No camera at index {index}")
        w, h = resolution
        props = [
            (cv2.CAP_PROP_FRAME_WIDTH, w),
            (cv2.CAP_PROP_FRAME_HEIGHT, h),
            (cv2.CAP_PROP_FPS, fps),
            (cv2.CAP_PROP_AUTO_WB, 0),
        ]
        if exposure_us is not None:
            # V4L2: 0.25 selects manual exposure, set in 100 µs units.
            props += [
                (cv2.CAP_PROP_AUTO_EXPOSURE, 0.25),
                (cv2.CAP_PROP_EXPOSURE, exposure_us / 100.0),
            ]
        for prop, value in props:
            if not cap.set(prop, value):
                logger.debug("Camera ignored property %d=%s", prop, value)
        self._cap = cap

    def read_red(self) -> Optional[np.ndarray]:
        ok, frame = self._cap.read()
        if not ok:
            return None
        return frame if frame.ndim == 2 else frame[:, :, _RED]

    def release(self) -> None:
        self._cap.release()


class FingerCamera:
    """
    Rear camera covered by a fingertip.

    Parameters
    ----------
    resolution:
        (width, height).  Only a mean is taken, so small frames suffice.
    fps:
        Requested capture rate; the session gates samples to ~15 Hz anyway.
    camera_index:
        OpenCV device index when picamera2 is unavailable.
    exposure_us:
        Fixed exposure time.  ``None`` leaves auto exposure on.
    gain:
        Analogue gain used with a fixed exposure (picamera2 only).
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (160, 120),
        fps: int = 30,
        camera_index: int = 0,
        exposure_us: Optional[int] = 8000,
        gain: float = 1.0,
    ) -> None:
        self.resolution = resolution
        self.fps = fps
        self.camera_index = camera_index
        self.exposure_us = exposure_us
        self.gain = gain
        self._backend: "_Picamera2Backend | _OpenCVBackend | None" = None

    @property
    def is_open(self) -> bool:
        return self._backend is not None

    def open(self) -> None:
        if self._backend is not None:
            return
        if _PICAMERA2_AVAILABLE:
            backend = _Picamera2Backend(self.resolution, self.fps, self.exposure_us, self.gain)
        else:
            backend = _OpenCVBackend(
                self.camera_index, self.resolution, self.fps, self.exposure_us
            )
        self._backend = backend
        logger.info(
            "Camera open (%s, %dx%d, exposure=%s).",
            backend.name, *self.resolution,
            "auto" if self.exposure_us is None else f"{self.exposure_us} us",
        )

    def close(self) -> None:
        if self._backend is None:
            return
        self._backend.release()
        self._backend = None
        logger.info("Camera closed.")

    def __enter__(self) -> "FingerCamera":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def read_red(self) -> Optional[np.ndarray]:
        """Red plane of the next frame (uint8, H x W), or *None* if dropped."""
        if self._backend is None:
            raise RuntimeError("FingerCamera.read_red() called before open()")
        plane = self._backend.read_red()
        if plane is None:
            logger.warning("Dropped frame.")
        return plane
