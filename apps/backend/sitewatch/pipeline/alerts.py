from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Literal
from uuid import uuid4

from sitewatch.config.defaults import NOTIFICATION_BACKLOG
from sitewatch.util.logging import get_logger
from sitewatch.util.time import now_utc_iso

from .models import Detection, Severity

logger = get_logger(__name__)

NotificationLevel = Literal["error", "warning", "info", "success"]


@dataclass(frozen=True)
class AlertStyle:
    level: NotificationLevel
    icon: str
    title: str
    duration_ms: int


ALERT_STYLES: dict[Severity, AlertStyle] = {
    "high": AlertStyle(level="error", icon="🚨", title="CRITICAL DANGER!", duration_ms=15_000),
    "medium": AlertStyle(level="warning", icon="⚠️", title="Danger Detected", duration_ms=8_000),
    "low": AlertStyle(level="info", icon="⚡", title="Potential Risk", duration_ms=5_000),
}

_LOG_LEVELS: dict[str, int] = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "success": logging.INFO,
}


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    level: NotificationLevel = "info"
    duration_ms: int = 5_000
    camera_id: str | None = None
    detection_id: str | None = None
    id: str = field(default_factory=lambda: f"ntf-{uuid4().hex[:12]}")
    created_at: str = field(default_factory=now_utc_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def detection_alert(detection: Detection) -> Notification:
    style = ALERT_STYLES[detection.severity]
    return Notification(
        title=f"{style.icon} {style.title}",
        description=f"{detection.camera_name}: {detection.description[:60]}...",
        level=style.level,
        duration_ms=style.duration_ms,
        camera_id=detection.camera_id,
        detection_id=detection.id,
    )


class NotificationCenter:
    """Bounded, newest-first feed of user-facing notifications."""

    def __init__(self, backlog: int = NOTIFICATION_BACKLOG) -> None:
        self._items: deque[Notification] = deque(maxlen=max(1, backlog))
        self._lock = threading.Lock()

    def notify(self, notification: Notification) -> None:
        logger.log(_LOG_LEVELS.get(notification.level, logging.INFO), "%s %s", notification.title, notification.description)
        with self._lock:
            self._items.appendleft(notification)

    def push(self, title: str, description: str = "", level: NotificationLevel = "info", **extra: Any) -> None:
        self.notify(Notification(title=title, description=description, level=level, **extra))

    def list(self, limit: int | None = None, level: str | None = None) -> list[Notification]:
        with self._lock:
            items = list(self._items)
        if level:
            items = [item for item in items if item.level == level]
        if limit is not None:
            items = items[: max(0, limit)]
        return items

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items.clear()
        return count
