from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from fakes import FakeAnalysisClient, FakeBackend, ImmediateExecutor, wait_for
from sitewatch.errors import AnalysisError, CameraNotActiveError
from sitewatch.pipeline.aggregator import DetectionAggregator
from sitewatch.pipeline.alerts import NotificationCenter
from sitewatch.pipeline.lifecycle import CameraManager
from sitewatch.pipeline.scheduler import AnalysisScheduler


def _build(client: FakeAnalysisClient, executor=None, backend: FakeBackend | None = None):
    notifications = NotificationCenter()
    aggregator = DetectionAggregator(notifications=notifications)
    manager = CameraManager(
        backend or FakeBackend(),
        aggregator,
        notifications=notifications,
        executor=ImmediateExecutor(),
    )
    scheduler = AnalysisScheduler(
        manager,
        client,
        aggregator,
        notifications=notifications,
        interval_ms=60_000,
        executor=executor or ImmediateExecutor(),
    )
    return manager, scheduler


@pytest.fixture
def cleanup():
    schedulers: list[AnalysisScheduler] = []
    yield schedulers.append
    for scheduler in schedulers:
        scheduler.manager.shutdown()


def test_starting_a_camera_installs_one_timer(cleanup) -> None:
    manager, scheduler = _build(FakeAnalysisClient())
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    assert scheduler.active_timers() == [camera.id]
    assert manager.get(camera.id).analysis_enabled is True
    assert scheduler.enable(camera.id) is False
    assert scheduler.active_timers() == [camera.id]


def test_stop_and_remove_cancel_timer(cleanup) -> None:
    manager, scheduler = _build(FakeAnalysisClient())
    cleanup(scheduler)
    first = manager.add_camera("dev-0")
    second = manager.add_camera("dev-1")

    manager.stop(first.id)
    manager.remove(second.id)

    assert scheduler.active_timers() == []
    assert manager.get(first.id).analysis_enabled is False


def test_second_tick_is_skipped_while_analysis_outstanding(cleanup) -> None:
    block = threading.Event()
    client = FakeAnalysisClient(block=block)
    executor = ThreadPoolExecutor(max_workers=2)
    manager, scheduler = _build(client, executor=executor)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    try:
        first = scheduler.trigger(camera.id)
        assert first is not None
        assert client.started.wait(2)

        assert scheduler.trigger(camera.id) is None
        assert len(client.calls) == 1
        assert manager.get(camera.id).is_analyzing is True
    finally:
        block.set()

    assert first.result(timeout=2) == "No danger detected."
    assert manager.get(camera.id).is_analyzing is False
    executor.shutdown(wait=True)


def test_failed_analysis_clears_gate_and_keeps_timer(cleanup) -> None:
    client = FakeAnalysisClient(responses=[AnalysisError("API Error: 500")])
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    future = scheduler.trigger(camera.id)

    assert future is not None and future.result() is None
    current = manager.get(camera.id)
    assert current.is_analyzing is False
    assert current.last_analysis_at is not None
    assert scheduler.active_timers() == [camera.id]
    assert manager.aggregator.list() == []
    titles = [n.title for n in scheduler.notifications.list()]
    assert "Analysis Error" in titles


def test_unexpected_exception_still_releases_gate(cleanup) -> None:
    client = FakeAnalysisClient(responses=[RuntimeError("boom")])
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    scheduler.trigger(camera.id)

    assert manager.get(camera.id).is_analyzing is False
    assert scheduler.trigger(camera.id) is not None


def test_missing_api_key_skips_silently(cleanup) -> None:
    client = FakeAnalysisClient(configured=False)
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    assert scheduler.trigger(camera.id) is None
    assert client.calls == []
    assert manager.get(camera.id).is_analyzing is False


def test_paused_camera_is_skipped(cleanup) -> None:
    client = FakeAnalysisClient()
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0", auto_start=False)

    assert scheduler.trigger(camera.id) is None
    assert client.calls == []


def test_zero_sized_frame_skips_cycle(cleanup) -> None:
    client = FakeAnalysisClient()
    manager, scheduler = _build(client, backend=FakeBackend(frame_size=(0, 0)))
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    assert scheduler.trigger(camera.id) is None
    assert client.calls == []
    assert manager.get(camera.id).is_analyzing is False


def test_hazard_flows_to_detection_and_alert(cleanup) -> None:
    client = FakeAnalysisClient(responses=["Fire visible near scaffolding, high severity."])
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0", name="North Gate")
    assert manager.get(camera.id).status == "active"

    scheduler.trigger(camera.id)

    detections = manager.aggregator.list()
    assert len(detections) == 1
    assert detections[0].severity == "high"
    assert detections[0].camera_name == "North Gate"
    assert detections[0].image.width == 512
    current = manager.get(camera.id)
    assert current.danger_detected is True
    assert current.total_detections == 1
    alert = scheduler.notifications.list(level="error")[0]
    assert alert.title.endswith("CRITICAL DANGER!")
    assert alert.duration_ms == 15_000
    assert alert.description.startswith("North Gate: Fire visible")


def test_no_danger_reply_records_nothing(cleanup) -> None:
    client = FakeAnalysisClient(responses=["No danger detected."])
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    scheduler.trigger(camera.id)

    assert manager.aggregator.list() == []
    assert manager.get(camera.id).danger_detected is False
    assert manager.get(camera.id).last_analysis_at is not None


def test_result_arriving_after_stop_is_discarded(cleanup) -> None:
    block = threading.Event()
    client = FakeAnalysisClient(responses=["Worker without helmet near edge"], block=block)
    executor = ThreadPoolExecutor(max_workers=1)
    manager, scheduler = _build(client, executor=executor)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    future = scheduler.trigger(camera.id)
    assert client.started.wait(2)
    manager.stop(camera.id)
    block.set()
    future.result(timeout=2)
    executor.shutdown(wait=True)

    assert manager.aggregator.list() == []
    current = manager.get(camera.id)
    assert current.danger_detected is False
    assert current.is_analyzing is False


def test_result_arriving_after_remove_is_discarded(cleanup) -> None:
    block = threading.Event()
    client = FakeAnalysisClient(responses=["Explosion risk from gas cylinder"], block=block)
    executor = ThreadPoolExecutor(max_workers=1)
    manager, scheduler = _build(client, executor=executor)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    future = scheduler.trigger(camera.id)
    assert client.started.wait(2)
    manager.remove(camera.id)
    block.set()
    future.result(timeout=2)
    executor.shutdown(wait=True)

    assert manager.aggregator.list() == []
    assert manager.list() == []


def test_analyze_now_requires_active_camera(cleanup) -> None:
    manager, scheduler = _build(FakeAnalysisClient())
    cleanup(scheduler)
    camera = manager.add_camera("dev-0", auto_start=False)

    with pytest.raises(CameraNotActiveError):
        scheduler.analyze_now(camera.id)


def test_disabling_ai_detection_cancels_all_timers(cleanup) -> None:
    manager, scheduler = _build(FakeAnalysisClient())
    cleanup(scheduler)
    manager.add_camera("dev-0")
    manager.add_camera("dev-1")

    scheduler.set_ai_detection(False)
    assert scheduler.active_timers() == []

    scheduler.set_ai_detection(True)
    assert len(scheduler.active_timers()) == 2


def test_interval_is_clamped_and_timers_rescheduled(cleanup) -> None:
    manager, scheduler = _build(FakeAnalysisClient())
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    assert scheduler.set_interval(1_000) == 5_000
    assert scheduler.active_timers() == [camera.id]
    assert scheduler.set_interval(120_000) == 60_000


def test_interval_change_keeps_outstanding_analysis_in_flight(cleanup) -> None:
    block = threading.Event()
    client = FakeAnalysisClient(responses=["Fire near exit"], block=block)
    executor = ThreadPoolExecutor(max_workers=2)
    manager, scheduler = _build(client, executor=executor)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    try:
        first = scheduler.trigger(camera.id)
        assert first is not None
        assert client.started.wait(2)

        assert scheduler.set_interval(20_000) == 20_000

        assert scheduler.trigger(camera.id) is None
        assert len(client.calls) == 1
        assert manager.get(camera.id).is_analyzing is True
    finally:
        block.set()

    first.result(timeout=2)
    executor.shutdown(wait=True)
    assert len(manager.aggregator.list()) == 1
    current = manager.get(camera.id)
    assert current.danger_detected is True
    assert current.is_analyzing is False
    assert scheduler.active_timers() == [camera.id]


def test_interval_change_leaves_danger_flag_alone(cleanup) -> None:
    client = FakeAnalysisClient(responses=["Fire near exit"])
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")
    scheduler.trigger(camera.id)
    assert manager.get(camera.id).danger_detected is True

    scheduler.set_interval(20_000)

    current = manager.get(camera.id)
    assert current.danger_detected is True
    assert current.analysis_enabled is True
    assert scheduler.interval_ms == 20_000


def test_enable_backs_out_when_camera_stops_before_timer_starts(cleanup, monkeypatch) -> None:
    manager, scheduler = _build(FakeAnalysisClient())
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")
    scheduler.disable(camera.id)
    assert scheduler.active_timers() == []

    real_get = manager.get
    stopped: list[str] = []

    def get_then_stop(camera_id: str):
        snapshot = real_get(camera_id)
        if not stopped:
            stopped.append(camera_id)
            manager.stop(camera_id)
        return snapshot

    monkeypatch.setattr(manager, "get", get_then_stop)

    assert scheduler.enable(camera.id) is False
    assert stopped == [camera.id]
    assert scheduler.active_timers() == []
    current = real_get(camera.id)
    assert current.status == "paused"
    assert current.analysis_enabled is False


def test_listeners_run_after_camera_lock_is_released(cleanup) -> None:
    client = FakeAnalysisClient(responses=["Fire at the loading bay"])
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0")

    def lock_free() -> bool:
        done = threading.Event()
        threading.Thread(target=lambda: (manager.list(), done.set()), daemon=True).start()
        return done.wait(1)

    history_reads: list[bool] = []
    camera_reads: list[bool] = []
    manager.aggregator.add_listener(lambda history: history_reads.append(lock_free()))
    manager.add_listener(lambda cameras: camera_reads.append(lock_free()))

    scheduler.trigger(camera.id)

    assert history_reads == [True]
    assert camera_reads and all(camera_reads)
    assert len(manager.aggregator.list()) == 1


def test_timer_tick_runs_analysis_cycle(cleanup) -> None:
    client = FakeAnalysisClient(responses=["Minor debris on walkway"])
    manager, scheduler = _build(client)
    cleanup(scheduler)
    camera = manager.add_camera("dev-0", auto_start=False)
    manager.start(camera.id)
    scheduler.disable(camera.id)
    scheduler._interval_ms = 20
    scheduler.enable(camera.id)

    assert wait_for(lambda: len(manager.aggregator.list()) >= 1)
    assert manager.aggregator.list()[0].severity == "low"
