from __future__ import annotations

import base64
from dataclasses import dataclass

import cv2
import numpy as np

from sitewatch.camera.base import MediaStream
from sitewatch.config.defaults import (
    ANALYSIS_JPEG_QUALITY,
    ANALYSIS_MAX_HEIGHT,
    ANALYSIS_MAX_WIDTH,
    USER_CAPTURE_JPEG_QUALITY,
)
from sitewatch.util.logging import get_logger
from sitewatch.util.time import monotonic_ms, now_utc_iso

logger = get_logger(__name__)


@dataclass(frozen=True)
class CaptureProfile:
    name: str
    max_width: int | None
    max_height: int | None
    jpeg_quality: int


ANALYSIS_PROFILE = CaptureProfile("analysis", ANALYSIS_MAX_WIDTH, ANALYSIS_MAX_HEIGHT, ANALYSIS_JPEG_QUALITY)
USER_PROFILE = CaptureProfile("user", None, None, USER_CAPTURE_JPEG_QUALITY)


@dataclass(frozen=True)
class CapturedImage:
    data: bytes
    mime_type: str
    width: int
    height: int
    captured_at: str
    captured_monotonic_ms: int

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"

    @classmethod
    def from_data_url(cls, value: str, captured_at: str | None = None) -> "CapturedImage":
        header, _, payload = value.partition(",")
        if not header.startswith("data:") or ";base64" not in header or not payload:
            raise ValueError("Invalid image data URL")
        mime_type = header[len("data:") :].split(";", 1)[0] or "image/jpeg"
        data = base64.b64decode(payload, validate=True)
        decoded = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
        height, width = decoded.shape[:2] if decoded is not None else (0, 0)
        return cls(
            data=data,
            mime_type=mime_type,
            width=int(width),
            height=int(height),
            captured_at=captured_at or now_utc_iso(),
            captured_monotonic_ms=monotonic_ms(),
        )


def fit_within(width: int, height: int, max_width: int | None, max_height: int | None) -> tuple[int, int]:
    """Scale ``width`` x ``height`` down (never up) to fit the bounds, keeping aspect ratio."""
    ratio = 1.0
    if max_width and width > max_width:
        ratio = min(ratio, max_width / width)
    if max_height and height > max_height:
        ratio = min(ratio, max_height / height)
    if ratio >= 1.0:
        return width, height
    return max(1, int(round(width * ratio))), max(1, int(round(height * ratio)))


def encode_frame(frame: np.ndarray, profile: CaptureProfile) -> CapturedImage | None:
    if frame is None or frame.size == 0:
        return None
    height, width = frame.shape[:2]
    if width == 0 or height == 0:
        return None

    target_w, target_h = fit_within(width, height, profile.max_width, profile.max_height)
    if (target_w, target_h) != (width, height):
        frame = cv2.resize(frame, (target_w, target_h), interpolation=cv2.INTER_AREA)

    ok, encoded = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, profile.jpeg_quality])
    if not ok:
        return None
    return CapturedImage(
        data=encoded.tobytes(),
        mime_type="image/jpeg",
        width=target_w,
        height=target_h,
        captured_at=now_utc_iso(),
        captured_monotonic_ms=monotonic_ms(),
    )


def capture_frame(stream: MediaStream | None, profile: CaptureProfile = ANALYSIS_PROFILE) -> CapturedImage | None:
    """Grab the current frame as a still image, or ``None`` when nothing usable is available."""
    if stream is None:
        return None
    try:
        frame = stream.read_frame()
        if frame is None:
            return None
        return encode_frame(frame, profile)
    except Exception:
        # Any read or encode failure means no frame.
        logger.debug("frame capture failed for device %s", getattr(stream, "device_id", "?"), exc_info=True)
        return None
