from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sitewatch.camera.base import MediaBackend, MediaStream
from sitewatch.capture.frames import USER_PROFILE, CapturedImage, capture_frame
from sitewatch.config.defaults import CAPTURE_HEIGHT, CAPTURE_WIDTH, MAX_CAMERAS
from sitewatch.errors import (
    CameraNotActiveError,
    CameraNotFoundError,
    CapacityError,
    CaptureUnavailableError,
    DuplicateDeviceError,
)
from sitewatch.util.logging import get_logger
from sitewatch.util.time import now_utc_iso

from .aggregator import DetectionAggregator
from .alerts import NotificationCenter
from .models import Camera, new_camera_id

if TYPE_CHECKING:
    from .scheduler import AnalysisScheduler

logger = get_logger(__name__)


@dataclass(frozen=True)
class AnalysisLease:
    """What one analysis cycle needs from a camera, pinned to the tokens it saw."""

    camera_id: str
    camera_name: str
    stream: MediaStream
    stream_token: int
    analysis_token: int


def _stop_stream(stream: MediaStream | None, camera_id: str) -> None:
    if stream is None:
        return
    try:
        stream.stop()
    except Exception:
        logger.debug("stream stop failed: %s", camera_id, exc_info=True)


class CameraManager:
    """Owns the camera set and every stream bound to it.

    All reads and writes of camera records happen under ``lock``. The lock is
    never held while a stream is being acquired or while the analysis
    collaborator is being called.
    """

    def __init__(
        self,
        backend: MediaBackend,
        aggregator: DetectionAggregator,
        notifications: NotificationCenter | None = None,
        executor: Executor | None = None,
        max_cameras: int = MAX_CAMERAS,
        capture_width: int = CAPTURE_WIDTH,
        capture_height: int = CAPTURE_HEIGHT,
    ) -> None:
        self.backend = backend
        self.aggregator = aggregator
        self.notifications = notifications
        self.max_cameras = max_cameras
        self.capture_width = capture_width
        self.capture_height = capture_height
        self.lock = threading.RLock()
        self.scheduler: AnalysisScheduler | None = None
        self._cameras: dict[str, Camera] = {}
        self._executor = executor or ThreadPoolExecutor(max_workers=max_cameras, thread_name_prefix="camera-start")
        self._owns_executor = executor is None
        self._pending: set[Future[Any]] = set()
        self._listeners: list[Callable[[list[Camera]], None]] = []

    def attach_scheduler(self, scheduler: AnalysisScheduler) -> None:
        self.scheduler = scheduler

    def add_listener(self, callback: Callable[[list[Camera]], None]) -> None:
        self._listeners.append(callback)

    # Queries -----------------------------------------------------------------

    def list(self) -> list[Camera]:
        with self.lock:
            return [camera.snapshot() for camera in self._cameras.values()]

    def get(self, camera_id: str) -> Camera:
        with self.lock:
            return self._require(camera_id).snapshot()

    def count(self) -> int:
        with self.lock:
            return len(self._cameras)

    def bound_device_ids(self) -> set[str]:
        with self.lock:
            return {camera.device_id for camera in self._cameras.values()}

    # Lifecycle ---------------------------------------------------------------

    def add_camera(self, device_id: str, name: str | None = None, auto_start: bool = True) -> Camera:
        device_id = str(device_id or "").strip()
        if not device_id:
            raise ValueError("Please select a camera device")
        with self.lock:
            if len(self._cameras) >= self.max_cameras:
                raise CapacityError(f"Maximum of {self.max_cameras} cameras allowed")
            if any(camera.device_id == device_id for camera in self._cameras.values()):
                raise DuplicateDeviceError("This camera is already in use")
            camera = Camera(
                id=self._unique_id(),
                name=(name or "").strip() or f"Camera {len(self._cameras) + 1}",
                device_id=device_id,
            )
            self._cameras[camera.id] = camera
            snapshot = camera.snapshot()

        logger.info("camera added: %s device=%s", snapshot.id, device_id)
        self._notify(f"{snapshot.name} has been added", level="success", camera_id=snapshot.id)
        self._emit()
        if auto_start:
            self._submit(self._auto_start, snapshot.id)
        return snapshot

    def start(self, camera_id: str) -> Camera | None:
        """Acquire a fresh stream; returns ``None`` when the result went stale."""
        with self.lock:
            camera = self._require(camera_id)
            previous = camera.stream
            camera.stream = None
            if camera.status == "active":
                camera.status = "paused"
            camera.stream_token += 1
            camera.analysis_token += 1
            camera.is_analyzing = False
            camera.danger_detected = False
            token = camera.stream_token
            device_id = camera.device_id
            name = camera.name

        self._disable_analysis(camera_id)
        _stop_stream(previous, camera_id)

        try:
            stream = self.backend.open_stream(device_id, self.capture_width, self.capture_height)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            with self.lock:
                camera = self._cameras.get(camera_id)
                if camera is None or camera.stream_token != token:
                    return None
                camera.status = "error"
                camera.stream = None
                camera.error_message = f"Failed to access camera: {reason}"
                snapshot = camera.snapshot()
            logger.warning("camera start failed: %s (%s)", camera_id, reason)
            self._notify(f"Failed to access {name}: {reason}", level="error", camera_id=camera_id)
            self._emit()
            return snapshot

        with self.lock:
            camera = self._cameras.get(camera_id)
            stale = camera is None or camera.stream_token != token
            if not stale:
                camera.stream = stream
                camera.status = "active"
                camera.error_message = None
                snapshot = camera.snapshot()
        if stale:
            logger.info("discarding late stream for camera %s", camera_id)
            _stop_stream(stream, camera_id)
            return None

        logger.info("camera streaming: %s", camera_id)
        self._notify(f"{name} is now streaming", level="success", camera_id=camera_id)
        if self.scheduler is not None and self.scheduler.ai_enabled:
            self.scheduler.enable(camera_id)
            snapshot = self.get(camera_id)
        self._emit()
        return snapshot

    def stop(self, camera_id: str) -> Camera:
        name = self._pause(camera_id)
        if name is not None:
            self._notify(f"{name} stream paused", level="info", camera_id=camera_id)
            self._emit()
        return self.get(camera_id)

    def toggle(self, camera_id: str) -> Camera | None:
        with self.lock:
            active = self._require(camera_id).status == "active"
        if active:
            return self.stop(camera_id)
        return self.start(camera_id)

    def remove(self, camera_id: str) -> Camera:
        self._pause(camera_id)
        with self.lock:
            camera = self._cameras.pop(camera_id, None)
            if camera is None:
                raise CameraNotFoundError(camera_id)
            camera.stream_token += 1
            camera.analysis_token += 1
            stream = camera.stream
            camera.stream = None
        self._disable_analysis(camera_id)
        _stop_stream(stream, camera_id)
        purged = self.aggregator.purge_camera(camera_id)
        logger.info("camera removed: %s (purged %d detection(s))", camera_id, purged)
        self._notify(f"{camera.name} has been removed", level="success", camera_id=camera_id)
        self._emit()
        return camera.snapshot()

    def rename(self, camera_id: str, name: str) -> Camera:
        name = name.strip()
        if not name:
            raise ValueError("Camera name cannot be empty")
        with self.lock:
            camera = self._require(camera_id)
            camera.name = name
            snapshot = camera.snapshot()
        self._emit()
        return snapshot

    def start_all(self) -> list[Camera]:
        started: list[Camera] = []
        for camera in self.list():
            if camera.status == "active":
                continue
            try:
                result = self.start(camera.id)
            except CameraNotFoundError:
                continue
            if result is not None:
                started.append(result)
        return started

    def stop_all(self) -> None:
        for camera in self.list():
            try:
                self.stop(camera.id)
            except CameraNotFoundError:
                continue

    def capture(self, camera_id: str) -> CapturedImage:
        with self.lock:
            camera = self._require(camera_id)
            if camera.status != "active" or camera.stream is None:
                raise CameraNotActiveError("Camera is not active")
            stream = camera.stream
            token = camera.stream_token

        image = capture_frame(stream, USER_PROFILE)
        if image is None:
            raise CaptureUnavailableError("Failed to capture image")

        with self.lock:
            camera = self._cameras.get(camera_id)
            if camera is not None and camera.stream_token == token:
                camera.last_capture = image
        return image

    def restore(self, records: Iterable[dict[str, Any]]) -> list[Camera]:
        """Recreate persisted cameras as paused slots without streams."""
        restored: list[Camera] = []
        with self.lock:
            for record in records:
                if len(self._cameras) >= self.max_cameras:
                    logger.warning("skipping persisted camera beyond capacity: %s", record.get("id"))
                    break
                device_id = str(record.get("device_id") or "")
                camera_id = str(record.get("id") or "") or self._unique_id()
                if not device_id or camera_id in self._cameras:
                    continue
                if any(c.device_id == device_id for c in self._cameras.values()):
                    logger.warning("skipping persisted camera with duplicate device: %s", camera_id)
                    continue
                camera = Camera(
                    id=camera_id,
                    name=str(record.get("name") or f"Camera {len(self._cameras) + 1}"),
                    device_id=device_id,
                    created_at=str(record.get("created_at") or now_utc_iso()),
                    total_detections=int(record.get("total_detections") or 0),
                )
                self._cameras[camera.id] = camera
                restored.append(camera.snapshot())
        return restored

    def wait_pending(self, timeout: float | None = None) -> bool:
        with self.lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()
        with self.lock:
            streams: list[tuple[str, MediaStream]] = []
            for camera in self._cameras.values():
                camera.stream_token += 1
                camera.analysis_token += 1
                if camera.stream is not None:
                    streams.append((camera.id, camera.stream))
                camera.stream = None
                camera.is_analyzing = False
                camera.analysis_enabled = False
                if camera.status == "active":
                    camera.status = "paused"
        for camera_id, stream in streams:
            _stop_stream(stream, camera_id)
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    # Analysis hooks, used by the scheduler -------------------------------------

    def analysis_target(self, camera_id: str) -> AnalysisLease | None:
        with self.lock:
            camera = self._cameras.get(camera_id)
            if camera is None or camera.status != "active" or camera.stream is None or camera.is_analyzing:
                return None
            return AnalysisLease(
                camera_id=camera.id,
                camera_name=camera.name,
                stream=camera.stream,
                stream_token=camera.stream_token,
                analysis_token=camera.analysis_token,
            )

    def lease_valid(self, lease: AnalysisLease) -> bool:
        with self.lock:
            camera = self._cameras.get(lease.camera_id)
            return (
                camera is not None
                and camera.status == "active"
                and camera.stream_token == lease.stream_token
                and camera.analysis_token == lease.analysis_token
            )

    def claim_analysis(self, lease: AnalysisLease) -> bool:
        with self.lock:
            if not self.lease_valid(lease):
                return False
            camera = self._cameras[lease.camera_id]
            if camera.is_analyzing:
                return False
            camera.is_analyzing = True
        self._emit()
        return True

    def release_analysis(
        self,
        lease: AnalysisLease,
        hazard: bool | None,
        completed: bool = True,
        notify: bool = True,
    ) -> bool:
        """Clear the single-flight gate; ``hazard`` of ``None`` leaves the danger flag untouched.

        Callers holding ``lock`` pass ``notify=False`` and call ``publish_changes``
        once they have released it.
        """
        with self.lock:
            if not self.lease_valid(lease):
                return False
            camera = self._cameras[lease.camera_id]
            camera.is_analyzing = False
            if completed:
                camera.last_analysis_at = now_utc_iso()
            if hazard is not None:
                camera.danger_detected = hazard
                if hazard:
                    camera.total_detections += 1
        if notify:
            self._emit()
        return True

    def publish_changes(self) -> None:
        self._emit()

    def mark_analysis_enabled(self, camera_id: str) -> bool:
        """Flag analysis on only while the camera is still streaming."""
        with self.lock:
            camera = self._cameras.get(camera_id)
            if camera is None or camera.status != "active" or camera.stream is None:
                return False
            camera.analysis_enabled = True
            return True

    def clear_analysis(self, camera_id: str) -> None:
        """Turn analysis off and orphan any cycle still in flight."""
        with self.lock:
            camera = self._cameras.get(camera_id)
            if camera is None:
                return
            camera.analysis_enabled = False
            camera.analysis_token += 1
            camera.is_analyzing = False
            camera.danger_detected = False

    # Internals -----------------------------------------------------------------

    def _require(self, camera_id: str) -> Camera:
        camera = self._cameras.get(camera_id)
        if camera is None:
            raise CameraNotFoundError(camera_id)
        return camera

    def _unique_id(self) -> str:
        camera_id = new_camera_id()
        while camera_id in self._cameras:
            camera_id = new_camera_id()
        return camera_id

    def _pause(self, camera_id: str) -> str | None:
        """Release the stream and timer without notifying; returns the name when anything changed."""
        with self.lock:
            camera = self._require(camera_id)
            # Invalidates any acquisition still in flight.
            camera.stream_token += 1
            if camera.status == "paused" and camera.stream is None and not camera.analysis_enabled:
                return None
            stream = camera.stream
            camera.stream = None
            camera.status = "paused"
            camera.danger_detected = False
            camera.is_analyzing = False
            camera.error_message = None
            name = camera.name

        self._disable_analysis(camera_id)
        _stop_stream(stream, camera_id)
        logger.info("camera paused: %s", camera_id)
        return name

    def _disable_analysis(self, camera_id: str) -> None:
        if self.scheduler is not None:
            self.scheduler.disable(camera_id)
        else:
            self.clear_analysis(camera_id)

    def _auto_start(self, camera_id: str) -> None:
        try:
            self.start(camera_id)
        except CameraNotFoundError:
            logger.debug("auto-start skipped, camera removed: %s", camera_id)
        except Exception:
            logger.exception("auto-start failed: %s", camera_id)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            logger.warning("lifecycle executor unavailable; skipping %s", getattr(fn, "__name__", fn))
            return
        with self.lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future[Any]) -> None:
        with self.lock:
            self._pending.discard(future)

    def _notify(self, title: str, level: str = "info", **extra: Any) -> None:
        if self.notifications is None:
            return
        try:
            self.notifications.push(title, level=level, **extra)
        except Exception:
            logger.exception("failed to push notification: %s", title)

    def _emit(self) -> None:
        if not self._listeners:
            return
        cameras = self.list()
        for callback in list(self._listeners):
            try:
                callback(cameras)
            except Exception:
                logger.exception("camera listener failed")
