from __future__ import annotations

import json
from typing import Any

from sitewatch.capture.frames import CapturedImage
from sitewatch.config.schema import CameraSettings
from sitewatch.pipeline.aggregator import DetectionAggregator
from sitewatch.pipeline.lifecycle import CameraManager
from sitewatch.pipeline.models import SEVERITIES, Camera, Detection
from sitewatch.util.logging import get_logger
from sitewatch.util.time import now_utc_iso

from .db import Database

logger = get_logger(__name__)

CAMERAS_KEY = "cameras"
DETECTIONS_KEY = "detections"


class ViewStateStore:
    """JSON values keyed by name; unreadable values load as the default."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, key: str, value: Any) -> None:
        self.db.execute(
            """
            INSERT INTO view_state (key, value_json, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value_json=excluded.value_json, updated_at=excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=True), now_utc_iso()),
        )

    def load(self, key: str, default: Any = None) -> Any:
        row = self.db.query_one("SELECT value_json FROM view_state WHERE key = ?", (key,))
        if row is None:
            return default
        try:
            return json.loads(row["value_json"])
        except (TypeError, ValueError):
            logger.warning("discarding unreadable view state: %s", key)
            return default

    def delete(self, key: str) -> None:
        self.db.execute("DELETE FROM view_state WHERE key = ?", (key,))

    def record_setting(self, key: str, value: Any) -> None:
        self.db.execute(
            "INSERT INTO settings_history (created_at, key, value_json) VALUES (?, ?, ?)",
            (now_utc_iso(), key, json.dumps(value, ensure_ascii=True)),
        )

    def setting_history(self, key: str, limit: int = 50) -> list[dict[str, Any]]:
        rows = self.db.query(
            "SELECT created_at, value_json FROM settings_history WHERE key = ? ORDER BY id DESC LIMIT ?",
            (key, limit),
        )
        return [{"created_at": row["created_at"], "value": json.loads(row["value_json"])} for row in rows]


def detection_from_dict(payload: dict[str, Any]) -> Detection | None:
    try:
        severity = payload["severity"]
        if severity not in SEVERITIES:
            return None
        timestamp = str(payload["timestamp"])
        return Detection(
            id=str(payload["id"]),
            camera_id=str(payload["camera_id"]),
            camera_name=str(payload.get("camera_name") or ""),
            timestamp=timestamp,
            image=CapturedImage.from_data_url(str(payload["image"]), captured_at=timestamp),
            description=str(payload.get("description") or ""),
            severity=severity,
        )
    except (KeyError, TypeError, ValueError):
        return None


class ViewStateMirror:
    """Keeps the camera set and detection history mirrored into ``ViewStateStore``.

    Cameras come back as paused slots; streams are never restored.
    """

    def __init__(self, store: ViewStateStore, manager: CameraManager, aggregator: DetectionAggregator) -> None:
        self.store = store
        self.manager = manager
        self.aggregator = aggregator
        self._last_cameras: list[dict[str, Any]] | None = None

    def restore(self) -> tuple[int, int]:
        records: list[dict[str, Any]] = []
        for raw in self.store.load(CAMERAS_KEY, default=[]) or []:
            try:
                records.append(CameraSettings.model_validate(raw).model_dump())
            except ValueError:
                logger.warning("skipping invalid persisted camera: %r", raw)
        restored = self.manager.restore(records)
        known = {camera.id for camera in self.manager.list()}

        detections: list[Detection] = []
        for raw in self.store.load(DETECTIONS_KEY, default=[]) or []:
            detection = detection_from_dict(raw) if isinstance(raw, dict) else None
            if detection is not None and detection.camera_id in known:
                detections.append(detection)
        self.aggregator.restore(detections)
        logger.info("restored %d camera(s) and %d detection(s)", len(restored), len(detections))
        return len(restored), len(detections)

    def attach(self) -> None:
        self.manager.add_listener(self.save_cameras)
        self.aggregator.add_listener(self.save_detections)

    def save_cameras(self, cameras: list[Camera]) -> None:
        payload = [camera.to_settings() for camera in cameras]
        if payload == self._last_cameras:
            return
        self._last_cameras = payload
        self.store.save(CAMERAS_KEY, payload)

    def save_detections(self, detections: list[Detection]) -> None:
        self.store.save(DETECTIONS_KEY, [detection.to_dict() for detection in detections])
