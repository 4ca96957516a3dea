from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor

from sitewatch.analysis.base import AnalysisClient
from sitewatch.capture.frames import ANALYSIS_PROFILE, CapturedImage, capture_frame
from sitewatch.config.defaults import (
    ANALYSIS_TIMEOUT_SECONDS,
    ANALYSIS_WORKERS,
    DEFAULT_ANALYSIS_INTERVAL_MS,
    HAZARD_PROMPT,
)
from sitewatch.config.schema import clamp_interval_ms
from sitewatch.errors import AnalysisError, CameraNotActiveError, CameraNotFoundError
from sitewatch.util.logging import get_logger
from sitewatch.util.security import redact_secrets

from .aggregator import DetectionAggregator, classify
from .alerts import NotificationCenter
from .lifecycle import AnalysisLease, CameraManager

logger = get_logger(__name__)


class _RepeatingTimer:
    """Daemon thread calling ``tick`` every ``interval`` seconds until stopped."""

    def __init__(self, name: str, interval: float, tick: Callable[[], None]) -> None:
        self.interval = interval
        self._tick = tick
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    @property
    def started(self) -> bool:
        return self._thread.ident is not None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self._tick()
            except Exception:
                logger.exception("analysis tick failed in %s", self._thread.name)


class AnalysisScheduler:
    """Owns one repeating timer per camera and the single-flight analysis gate.

    Timers live only in this registry, so removing a camera can never leave a
    timer behind. Completions are applied only while the lease taken at
    capture time still matches the camera record.
    """

    def __init__(
        self,
        manager: CameraManager,
        client: AnalysisClient,
        aggregator: DetectionAggregator,
        notifications: NotificationCenter | None = None,
        interval_ms: int = DEFAULT_ANALYSIS_INTERVAL_MS,
        timeout: float = ANALYSIS_TIMEOUT_SECONDS,
        prompt: str = HAZARD_PROMPT,
        ai_enabled: bool = True,
        executor: Executor | None = None,
    ) -> None:
        self.manager = manager
        self.client = client
        self.aggregator = aggregator
        self.notifications = notifications
        self.timeout = timeout
        self.prompt = prompt
        self._interval_ms = clamp_interval_ms(interval_ms)
        self._ai_enabled = ai_enabled
        self._timers: dict[str, _RepeatingTimer] = {}
        self._lock = threading.Lock()
        self._executor = executor or ThreadPoolExecutor(max_workers=ANALYSIS_WORKERS, thread_name_prefix="analysis")
        self._owns_executor = executor is None
        manager.attach_scheduler(self)

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def ai_enabled(self) -> bool:
        return self._ai_enabled

    def active_timers(self) -> list[str]:
        with self._lock:
            return sorted(camera_id for camera_id, timer in self._timers.items() if not timer.cancelled)

    def enable(self, camera_id: str) -> bool:
        """Install the repeating timer; a camera that already has one is left alone."""
        camera = self.manager.get(camera_id)
        if camera.status != "active":
            return False
        with self._lock:
            existing = self._timers.get(camera_id)
            if existing is not None and not existing.cancelled:
                return False
            timer = self._new_timer(camera_id)
            self._timers[camera_id] = timer
        # The camera may have been stopped since the status check above.
        if not self.manager.mark_analysis_enabled(camera_id):
            with self._lock:
                if self._timers.get(camera_id) is timer:
                    del self._timers[camera_id]
            timer.cancel()
            return False
        timer.start()
        logger.info("analysis enabled: %s every %d ms", camera_id, self._interval_ms)
        return True

    def disable(self, camera_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(camera_id, None)
        if timer is not None:
            timer.cancel()
            logger.info("analysis disabled: %s", camera_id)
        self.manager.clear_analysis(camera_id)

    def trigger(self, camera_id: str) -> Future[str | None] | None:
        """Run one analysis cycle unless the gate says skip; returns the submitted cycle."""
        if not self.client.configured:
            return None
        lease = self.manager.analysis_target(camera_id)
        if lease is None:
            return None
        image = capture_frame(lease.stream, ANALYSIS_PROFILE)
        if image is None:
            logger.debug("no frame available for %s; skipping tick", camera_id)
            return None
        if not self.manager.claim_analysis(lease):
            return None
        try:
            return self._executor.submit(self._run_cycle, lease, image)
        except RuntimeError:
            self.manager.release_analysis(lease, hazard=None, completed=False)
            logger.warning("analysis executor unavailable; dropping cycle for %s", camera_id)
            return None

    def analyze_now(self, camera_id: str) -> Future[str | None] | None:
        camera = self.manager.get(camera_id)
        if camera.status != "active":
            raise CameraNotActiveError("Camera is not active")
        if not self.client.configured:
            raise AnalysisError("Please configure your Gemini API key in settings")
        return self.trigger(camera_id)

    def set_ai_detection(self, enabled: bool) -> None:
        self._ai_enabled = enabled
        for camera in self.manager.list():
            if enabled and camera.status == "active":
                self._enable_quietly(camera.id)
            elif not enabled:
                self.disable(camera.id)
        logger.info("AI detection %s", "enabled" if enabled else "disabled")

    def set_interval(self, interval_ms: int) -> int:
        """Swap every live timer for one at the new interval; camera records are untouched."""
        with self._lock:
            self._interval_ms = clamp_interval_ms(interval_ms)
            for camera_id, timer in list(self._timers.items()):
                if not timer.started:
                    # Still owned by an enable() that has not confirmed the camera yet.
                    timer.interval = self._interval_ms / 1000.0
                    continue
                timer.cancel()
                replacement = self._new_timer(camera_id)
                self._timers[camera_id] = replacement
                replacement.start()
            rescheduled = len(self._timers)
        logger.info("analysis interval set to %d ms (%d timer(s) rescheduled)", self._interval_ms, rescheduled)
        return self._interval_ms

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _new_timer(self, camera_id: str) -> _RepeatingTimer:
        return _RepeatingTimer(
            name=f"analysis-{camera_id}",
            interval=self._interval_ms / 1000.0,
            tick=lambda: self.trigger(camera_id),
        )

    def _enable_quietly(self, camera_id: str) -> None:
        try:
            self.enable(camera_id)
        except CameraNotFoundError:
            return

    def _run_cycle(self, lease: AnalysisLease, image: CapturedImage) -> str | None:
        description: str | None = None
        try:
            description = self.client.analyze(image, self.prompt, timeout=self.timeout)
        except AnalysisError as exc:
            logger.warning("analysis failed for %s: %s", lease.camera_id, redact_secrets(str(exc)))
            self._notify_failure(lease)
        except Exception:
            logger.exception("unexpected analysis failure for %s", lease.camera_id)
            self._notify_failure(lease)
        finally:
            severity = classify(description) if description else None
            detection = None
            with self.manager.lock:
                hazard = None if description is None else severity is not None
                applied = self.manager.release_analysis(lease, hazard=hazard, notify=False)
                if applied and description is not None and severity is not None:
                    detection = self.aggregator.insert(
                        lease.camera_id,
                        lease.camera_name,
                        image.captured_at,
                        image,
                        description,
                        severity,
                    )
            # Alerts and persistence run after the camera lock is released.
            if applied:
                self.manager.publish_changes()
            else:
                logger.info("discarding stale analysis result for %s", lease.camera_id)
            if detection is not None:
                self.aggregator.publish(detection)
        return description

    def _notify_failure(self, lease: AnalysisLease) -> None:
        if self.notifications is None or not self.manager.lease_valid(lease):
            return
        self.notifications.push(
            "Analysis Error",
            description=f"Failed to analyze {lease.camera_name}",
            level="warning",
            camera_id=lease.camera_id,
        )
