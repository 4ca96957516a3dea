from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from fakes import FakeBackend, ImmediateExecutor, fail_open, wait_for
from sitewatch.capture.frames import ANALYSIS_PROFILE, capture_frame
from sitewatch.errors import (
    CameraNotActiveError,
    CameraNotFoundError,
    CapacityError,
    CaptureUnavailableError,
    DuplicateDeviceError,
)
from sitewatch.pipeline.aggregator import DetectionAggregator
from sitewatch.pipeline.alerts import NotificationCenter
from sitewatch.pipeline.lifecycle import CameraManager


def _manager(backend: FakeBackend | None = None, executor=None) -> CameraManager:
    notifications = NotificationCenter()
    return CameraManager(
        backend or FakeBackend(),
        DetectionAggregator(notifications=notifications),
        notifications=notifications,
        executor=executor or ImmediateExecutor(),
    )


def test_add_camera_returns_paused_record_before_auto_start() -> None:
    backend = FakeBackend()
    backend.gate = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1)
    manager = _manager(backend, executor=executor)
    try:
        camera = manager.add_camera("dev-0", "Gate")
        assert camera.status == "paused"
        assert camera.stream is None

        backend.gate.set()
        assert manager.wait_pending(timeout=2)
        assert manager.get(camera.id).status == "active"
    finally:
        executor.shutdown(wait=True)


def test_seventh_camera_is_rejected_and_set_unchanged() -> None:
    manager = _manager()
    for index in range(6):
        manager.add_camera(f"dev-{index}", auto_start=False)

    with pytest.raises(CapacityError, match="Maximum of 6 cameras allowed"):
        manager.add_camera("dev-6")
    assert manager.count() == 6


def test_duplicate_device_is_rejected() -> None:
    manager = _manager()
    manager.add_camera("dev-0", auto_start=False)

    with pytest.raises(DuplicateDeviceError, match="already in use"):
        manager.add_camera("dev-0")
    assert manager.count() == 1


def test_add_camera_requires_device() -> None:
    manager = _manager()
    with pytest.raises(ValueError, match="Please select a camera device"):
        manager.add_camera("  ")


def test_default_names_follow_slot_count() -> None:
    manager = _manager()
    first = manager.add_camera("dev-0", auto_start=False)
    second = manager.add_camera("dev-1", name="  ", auto_start=False)
    assert first.name == "Camera 1"
    assert second.name == "Camera 2"


def test_start_failure_sets_error_status() -> None:
    backend = FakeBackend()
    fail_open(backend, "dev-0", "Permission denied")
    manager = _manager(backend)

    camera = manager.add_camera("dev-0")
    current = manager.get(camera.id)
    assert current.status == "error"
    assert current.stream is None
    assert current.error_message == "Failed to access camera: Permission denied"


def test_stop_is_idempotent() -> None:
    backend = FakeBackend()
    manager = _manager(backend)
    camera = manager.add_camera("dev-0")
    stream = backend.opened[0]

    first = manager.stop(camera.id)
    second = manager.stop(camera.id)

    assert first.status == second.status == "paused"
    assert second.stream is None
    assert stream.stop_calls == 1


def test_stop_before_acquisition_resolves_discards_late_stream() -> None:
    backend = FakeBackend()
    manager = _manager(backend)
    camera = manager.add_camera("dev-0", auto_start=False)
    backend.gate = threading.Event()

    results: list[object] = []
    worker = threading.Thread(target=lambda: results.append(manager.start(camera.id)))
    worker.start()
    assert backend.opening.wait(2)

    manager.stop(camera.id)
    backend.gate.set()
    worker.join(timeout=2)

    assert results == [None]
    current = manager.get(camera.id)
    assert current.status == "paused"
    assert current.stream is None
    assert len(backend.opened) == 1
    assert backend.opened[0].stop_calls == 1


def test_restart_releases_previous_stream() -> None:
    backend = FakeBackend()
    manager = _manager(backend)
    camera = manager.add_camera("dev-0")

    manager.start(camera.id)

    assert len(backend.opened) == 2
    assert backend.opened[0].stop_calls == 1
    assert backend.opened[1].stop_calls == 0
    assert manager.get(camera.id).stream is backend.opened[1]


def test_toggle_flips_between_active_and_paused() -> None:
    manager = _manager()
    camera = manager.add_camera("dev-0", auto_start=False)

    assert manager.toggle(camera.id).status == "active"
    assert manager.toggle(camera.id).status == "paused"


def test_remove_releases_stream_and_purges_detections() -> None:
    backend = FakeBackend()
    manager = _manager(backend)
    keep = manager.add_camera("dev-0")
    drop = manager.add_camera("dev-1")
    image = capture_frame(backend.opened[1], ANALYSIS_PROFILE)
    assert image is not None
    manager.aggregator.record(drop.id, drop.name, image.captured_at, image, "Fire near the crane", "high")
    manager.aggregator.record(keep.id, keep.name, image.captured_at, image, "Minor trip hazard", "low")

    manager.remove(drop.id)

    assert backend.opened[1].stop_calls == 1
    assert [c.id for c in manager.list()] == [keep.id]
    assert [d.camera_id for d in manager.aggregator.list()] == [keep.id]
    with pytest.raises(CameraNotFoundError):
        manager.get(drop.id)


def test_remove_announces_removal_only() -> None:
    manager = _manager()
    camera = manager.add_camera("dev-0", name="Hoist")
    manager.notifications.clear()

    manager.remove(camera.id)

    titles = [n.title for n in manager.notifications.list()]
    assert titles == ["Hoist has been removed"]


def test_stop_announces_pause_once() -> None:
    manager = _manager()
    camera = manager.add_camera("dev-0", name="Hoist")
    manager.notifications.clear()

    manager.stop(camera.id)
    manager.stop(camera.id)

    titles = [n.title for n in manager.notifications.list()]
    assert titles == ["Hoist stream paused"]


def test_remove_unknown_camera_raises() -> None:
    manager = _manager()
    with pytest.raises(CameraNotFoundError):
        manager.remove("cam-missing")


def test_capture_requires_active_camera() -> None:
    manager = _manager()
    camera = manager.add_camera("dev-0", auto_start=False)
    with pytest.raises(CameraNotActiveError, match="Camera is not active"):
        manager.capture(camera.id)


def test_user_capture_keeps_native_resolution() -> None:
    manager = _manager()
    camera = manager.add_camera("dev-0")

    image = manager.capture(camera.id)

    assert (image.width, image.height) == (1280, 720)
    assert image.mime_type == "image/jpeg"
    assert manager.get(camera.id).last_capture == image


def test_capture_reports_unavailable_when_read_fails(monkeypatch) -> None:
    backend = FakeBackend()
    manager = _manager(backend)
    camera = manager.add_camera("dev-0")

    def _broken_read():
        raise OSError("device unplugged")

    monkeypatch.setattr(backend.opened[0], "read_frame", _broken_read)

    with pytest.raises(CaptureUnavailableError, match="Failed to capture image"):
        manager.capture(camera.id)


def test_restore_creates_paused_slots_and_skips_duplicates() -> None:
    manager = _manager()
    restored = manager.restore(
        [
            {"id": "cam-a", "name": "North", "device_id": "dev-0", "total_detections": 3},
            {"id": "cam-b", "name": "Dup", "device_id": "dev-0"},
            {"id": "cam-c", "name": "South", "device_id": "dev-1"},
        ]
    )

    assert [c.id for c in restored] == ["cam-a", "cam-c"]
    assert all(c.status == "paused" and c.stream is None for c in manager.list())
    assert manager.get("cam-a").total_detections == 3


def test_listeners_see_every_change() -> None:
    manager = _manager()
    seen: list[list[str]] = []
    manager.add_listener(lambda cameras: seen.append([c.status for c in cameras]))

    camera = manager.add_camera("dev-0")
    manager.stop(camera.id)

    assert seen[0] == ["paused"]
    assert ["active"] in seen
    assert seen[-1] == ["paused"]


def test_shutdown_releases_all_streams() -> None:
    backend = FakeBackend()
    manager = _manager(backend)
    manager.add_camera("dev-0")
    manager.add_camera("dev-1")

    manager.shutdown()

    assert wait_for(lambda: all(stream.stop_calls == 1 for stream in backend.opened))
    assert all(c.status == "paused" for c in manager.list())
