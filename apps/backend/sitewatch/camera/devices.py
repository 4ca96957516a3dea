from __future__ import annotations

import threading

from sitewatch.util.logging import get_logger

from .base import VIDEO_INPUT, DeviceInfo, MediaBackend

logger = get_logger(__name__)


def placeholder_label(device_id: str) -> str:
    return f"Camera {device_id[:5]}..."


class DeviceRegistry:
    """Discovers video input devices and caches the last scan.

    The registry never binds devices to cameras; binding uniqueness is the
    camera manager's concern.
    """

    def __init__(self, backend: MediaBackend) -> None:
        self.backend = backend
        self._lock = threading.Lock()
        self._devices: list[DeviceInfo] = []
        self._last_error: str | None = None

    @property
    def devices(self) -> list[DeviceInfo]:
        with self._lock:
            return list(self._devices)

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def scan(self) -> list[DeviceInfo]:
        try:
            probe = self.backend.request_permission()
            probe.stop()
            found = self.backend.enumerate_devices()
        except Exception as exc:
            logger.warning("device scan failed: %s", exc)
            with self._lock:
                self._devices = []
                self._last_error = "Unable to access camera devices. Please check permissions."
            return []

        devices = [
            DeviceInfo(
                device_id=item.device_id,
                label=item.label.strip() or placeholder_label(item.device_id),
                kind=item.kind,
            )
            for item in found
            if item.kind == VIDEO_INPUT
        ]
        with self._lock:
            self._devices = devices
            self._last_error = None if devices else "No camera devices found"
        logger.info("device scan found %d video input(s)", len(devices))
        return list(devices)

    def get(self, device_id: str) -> DeviceInfo | None:
        with self._lock:
            return next((d for d in self._devices if d.device_id == device_id), None)
