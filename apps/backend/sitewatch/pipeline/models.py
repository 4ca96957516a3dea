from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import uuid4

from sitewatch.camera.base import MediaStream
from sitewatch.capture.frames import CapturedImage
from sitewatch.util.time import now_utc_iso

CameraStatus = Literal["active", "paused", "error"]
Severity = Literal["low", "medium", "high"]

SEVERITIES: tuple[Severity, ...] = ("low", "medium", "high")


def new_camera_id() -> str:
    return f"cam-{uuid4().hex[:12]}"


@dataclass
class Camera:
    id: str
    name: str
    device_id: str
    status: CameraStatus = "paused"
    stream: MediaStream | None = field(default=None, repr=False)
    last_capture: CapturedImage | None = field(default=None, repr=False)
    error_message: str | None = None
    is_analyzing: bool = False
    analysis_enabled: bool = False
    last_analysis_at: str | None = None
    danger_detected: bool = False
    created_at: str = field(default_factory=now_utc_iso)
    total_detections: int = 0
    # Completions carrying an older token than the record are stale and get discarded.
    stream_token: int = field(default=0, repr=False)
    analysis_token: int = field(default=0, repr=False)

    def snapshot(self) -> "Camera":
        return dataclasses.replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "device_id": self.device_id,
            "status": self.status,
            "streaming": self.stream is not None,
            "error_message": self.error_message,
            "is_analyzing": self.is_analyzing,
            "analysis_enabled": self.analysis_enabled,
            "last_analysis_at": self.last_analysis_at,
            "danger_detected": self.danger_detected,
            "created_at": self.created_at,
            "total_detections": self.total_detections,
            "last_capture_at": self.last_capture.captured_at if self.last_capture else None,
        }

    def to_settings(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "device_id": self.device_id,
            "created_at": self.created_at,
            "total_detections": self.total_detections,
        }


@dataclass(frozen=True)
class Detection:
    id: str
    camera_id: str
    camera_name: str
    timestamp: str
    image: CapturedImage = field(repr=False)
    description: str
    severity: Severity

    def to_dict(self, include_image: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "camera_id": self.camera_id,
            "camera_name": self.camera_name,
            "timestamp": self.timestamp,
            "description": self.description,
            "severity": self.severity,
        }
        if include_image:
            payload["image"] = self.image.data_url
        return payload
