from __future__ import annotations

import sys
import threading

import cv2
import numpy as np

from sitewatch.errors import StreamAcquisitionError
from sitewatch.util.logging import get_logger

from .base import VIDEO_INPUT, DeviceInfo, MediaBackend, MediaStream

logger = get_logger(__name__)


def _source_for(device_id: str) -> int | str:
    value = str(device_id).strip()
    if value.isdigit():
        return int(value)
    return value


def _open_capture(source: int | str) -> cv2.VideoCapture:
    # On Windows, DirectShow avoids MSMF hangs when a webcam device is already busy.
    if isinstance(source, int) and sys.platform.startswith("win"):
        return cv2.VideoCapture(source, cv2.CAP_DSHOW)
    return cv2.VideoCapture(source)


class OpenCVMediaStream(MediaStream):
    def __init__(self, device_id: str, capture: cv2.VideoCapture) -> None:
        self.device_id = device_id
        self._capture: cv2.VideoCapture | None = capture
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._capture is not None and bool(self._capture.isOpened())

    def read_frame(self) -> np.ndarray | None:
        with self._lock:
            capture = self._capture
            if capture is None:
                return None
            ok, frame = capture.read()
        if not ok or frame is None:
            return None
        return frame

    def stop(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
            self._capture = None


class OpenCVMediaBackend(MediaBackend):
    """Local webcams addressed by capture index ("0", "1", ...)."""

    def __init__(self, max_index: int = 5) -> None:
        self.max_index = max(0, min(max_index, 20))

    def open_stream(self, device_id: str, width: int, height: int) -> MediaStream:
        capture = _open_capture(_source_for(device_id))
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        if width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, int(width))
        if height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, int(height))
        if hasattr(cv2, "CAP_PROP_OPEN_TIMEOUT_MSEC"):
            capture.set(cv2.CAP_PROP_OPEN_TIMEOUT_MSEC, 1500)
        if hasattr(cv2, "CAP_PROP_READ_TIMEOUT_MSEC"):
            capture.set(cv2.CAP_PROP_READ_TIMEOUT_MSEC, 1500)
        if not capture.isOpened():
            capture.release()
            raise StreamAcquisitionError(f"Could not open video device {device_id}")
        return OpenCVMediaStream(str(device_id), capture)

    def request_permission(self) -> MediaStream:
        # OpenCV has no permission prompt; opening any device is the equivalent probe.
        for index in range(self.max_index + 1):
            try:
                return self.open_stream(str(index), 0, 0)
            except StreamAcquisitionError:
                continue
        raise StreamAcquisitionError("No camera devices found")

    def enumerate_devices(self) -> list[DeviceInfo]:
        devices: list[DeviceInfo] = []
        for index in range(self.max_index + 1):
            if probe_device(str(index)):
                devices.append(DeviceInfo(device_id=str(index), label=f"Webcam {index}", kind=VIDEO_INPUT))
        return devices


def probe_device(device_id: str) -> bool:
    capture = _open_capture(_source_for(device_id))
    try:
        if not capture.isOpened():
            return False
        ok, frame = capture.read()
        return bool(ok and frame is not None)
    except cv2.error:
        logger.debug("probe failed for device %s", device_id, exc_info=True)
        return False
    finally:
        capture.release()
