from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import Any

from sitewatch.capture.frames import CapturedImage
from sitewatch.config.defaults import DEFAULT_HISTORY_LIMIT
from sitewatch.util.logging import get_logger
from sitewatch.util.time import parse_iso8601

from .alerts import NotificationCenter, detection_alert
from .models import SEVERITIES, Detection, Severity

logger = get_logger(__name__)

NO_HAZARD_MARKERS = ("no danger detected", "no hazard detected")
HIGH_KEYWORDS = ("fire", "explosion", "weapon", "violence", "emergency")
LOW_KEYWORDS = ("minor", "low risk")


def classify(description: str) -> Severity | None:
    """Map model text to a severity, or ``None`` when the model reported no hazard."""
    text = description.lower()
    if any(marker in text for marker in NO_HAZARD_MARKERS):
        return None
    if any(keyword in text for keyword in HIGH_KEYWORDS):
        return "high"
    if any(keyword in text for keyword in LOW_KEYWORDS):
        return "low"
    return "medium"


def detection_id_for(camera_id: str, captured_at: str) -> str:
    parsed = parse_iso8601(captured_at)
    stamp = int(round(parsed.timestamp() * 1000)) if parsed else 0
    return f"{camera_id}-{stamp}"


class DetectionAggregator:
    def __init__(self, notifications: NotificationCenter | None = None, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.notifications = notifications
        self._limit = max(1, limit)
        self._history: list[Detection] = []
        self._lock = threading.Lock()
        self._emit_lock = threading.Lock()
        self._listeners: list[Callable[[list[Detection]], None]] = []

    @property
    def limit(self) -> int:
        return self._limit

    def set_limit(self, limit: int) -> None:
        with self._lock:
            self._limit = max(1, limit)
            del self._history[self._limit :]
        self._emit()

    def add_listener(self, callback: Callable[[list[Detection]], None]) -> None:
        self._listeners.append(callback)

    def record(
        self,
        camera_id: str,
        camera_name: str,
        captured_at: str,
        image: CapturedImage,
        description: str,
        severity: Severity,
    ) -> Detection:
        detection = self.insert(camera_id, camera_name, captured_at, image, description, severity)
        self.publish(detection)
        return detection

    def insert(
        self,
        camera_id: str,
        camera_name: str,
        captured_at: str,
        image: CapturedImage,
        description: str,
        severity: Severity,
    ) -> Detection:
        """Add to the history without alerting or notifying listeners; pair with ``publish``."""
        detection = Detection(
            id=detection_id_for(camera_id, captured_at),
            camera_id=camera_id,
            camera_name=camera_name,
            timestamp=captured_at,
            image=image,
            description=description.strip(),
            severity=severity,
        )
        with self._lock:
            self._history.insert(0, detection)
            del self._history[self._limit :]
        logger.info("hazard recorded: camera=%s severity=%s id=%s", camera_id, severity, detection.id)
        return detection

    def publish(self, detection: Detection) -> None:
        self._alert(detection)
        self._emit()

    def restore(self, detections: Iterable[Detection]) -> None:
        """Replace the history with previously persisted detections (newest first)."""
        with self._lock:
            self._history = list(detections)[: self._limit]

    def purge_camera(self, camera_id: str) -> int:
        with self._lock:
            before = len(self._history)
            self._history = [d for d in self._history if d.camera_id != camera_id]
            removed = before - len(self._history)
        if removed:
            self._emit()
        return removed

    def clear(self) -> int:
        with self._lock:
            removed = len(self._history)
            self._history = []
        self._emit()
        return removed

    def list(
        self,
        camera_id: str | None = None,
        severity: str | None = None,
        limit: int | None = None,
    ) -> list[Detection]:
        with self._lock:
            items = list(self._history)
        if camera_id:
            items = [d for d in items if d.camera_id == camera_id]
        if severity:
            items = [d for d in items if d.severity == severity]
        if limit is not None:
            items = items[: max(0, limit)]
        return items

    def get(self, detection_id: str) -> Detection | None:
        with self._lock:
            return next((d for d in self._history if d.id == detection_id), None)

    def stats(self, camera_id: str | None = None) -> dict[str, Any]:
        items = self.list(camera_id=camera_id)
        by_severity = {severity: 0 for severity in SEVERITIES}
        by_camera: dict[str, int] = {}
        for detection in items:
            by_severity[detection.severity] += 1
            by_camera[detection.camera_id] = by_camera.get(detection.camera_id, 0) + 1
        return {
            "total": len(items),
            "by_severity": by_severity,
            "by_camera": by_camera,
            "latest": items[0].timestamp if items else None,
        }

    def _alert(self, detection: Detection) -> None:
        if self.notifications is None:
            return
        try:
            self.notifications.notify(detection_alert(detection))
        except Exception:
            logger.exception("failed to raise alert for detection %s", detection.id)

    def _emit(self) -> None:
        # Snapshot and fan-out under one lock so listeners never see histories out of order.
        with self._emit_lock:
            with self._lock:
                history = list(self._history)
            for callback in list(self._listeners):
                try:
                    callback(history)
                except Exception:
                    logger.exception("detection history listener failed")
