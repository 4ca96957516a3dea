from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeoutError

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from sitewatch.errors import (
    AnalysisError,
    CameraNotActiveError,
    CameraNotFoundError,
    CapacityError,
    CaptureUnavailableError,
    DuplicateDeviceError,
)
from sitewatch.pipeline.models import Camera
from sitewatch.util.security import validate_camera_id

router = APIRouter(prefix="/cameras", tags=["cameras"])


class AddCameraPayload(BaseModel):
    device_id: str = ""
    name: str | None = None
    auto_start: bool = True


class RenamePayload(BaseModel):
    name: str = Field(min_length=1, max_length=80)


def _checked_id(camera_id: str) -> str:
    try:
        return validate_camera_id(camera_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, CameraNotFoundError):
        return HTTPException(status_code=404, detail="Camera not found")
    if isinstance(exc, (CapacityError, DuplicateDeviceError, CameraNotActiveError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, CaptureUnavailableError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _camera_or_current(request: Request, camera_id: str, camera: Camera | None) -> dict[str, object]:
    if camera is None:
        # A newer lifecycle call superseded this one; report the current record.
        camera = request.app.state.sitewatch.manager.get(camera_id)
    return camera.to_dict()


@router.get("")
def list_cameras(request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    cameras = state.manager.list()
    return {
        "items": [camera.to_dict() for camera in cameras],
        "max_cameras": state.manager.max_cameras,
    }


@router.post("")
def add_camera(payload: AddCameraPayload, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    try:
        camera = state.manager.add_camera(payload.device_id, name=payload.name, auto_start=payload.auto_start)
    except (ValueError, CapacityError, DuplicateDeviceError) as exc:
        raise _http_error(exc) from exc
    return camera.to_dict()


@router.post("/start-all")
def start_all(request: Request) -> dict[str, object]:
    started = request.app.state.sitewatch.manager.start_all()
    return {"ok": True, "items": [camera.to_dict() for camera in started]}


@router.post("/stop-all")
def stop_all(request: Request) -> dict[str, object]:
    request.app.state.sitewatch.manager.stop_all()
    return {"ok": True}


@router.get("/{camera_id}")
def get_camera(camera_id: str, request: Request) -> dict[str, object]:
    try:
        return request.app.state.sitewatch.manager.get(_checked_id(camera_id)).to_dict()
    except CameraNotFoundError as exc:
        raise _http_error(exc) from exc


@router.patch("/{camera_id}")
def rename_camera(camera_id: str, payload: RenamePayload, request: Request) -> dict[str, object]:
    try:
        return request.app.state.sitewatch.manager.rename(_checked_id(camera_id), payload.name).to_dict()
    except (CameraNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@router.delete("/{camera_id}")
def remove_camera(camera_id: str, request: Request) -> dict[str, object]:
    try:
        request.app.state.sitewatch.manager.remove(_checked_id(camera_id))
    except CameraNotFoundError as exc:
        raise _http_error(exc) from exc
    return {"ok": True}


@router.post("/{camera_id}/start")
def start_camera(camera_id: str, request: Request) -> dict[str, object]:
    camera_id = _checked_id(camera_id)
    try:
        camera = request.app.state.sitewatch.manager.start(camera_id)
        return _camera_or_current(request, camera_id, camera)
    except CameraNotFoundError as exc:
        raise _http_error(exc) from exc


@router.post("/{camera_id}/stop")
def stop_camera(camera_id: str, request: Request) -> dict[str, object]:
    try:
        return request.app.state.sitewatch.manager.stop(_checked_id(camera_id)).to_dict()
    except CameraNotFoundError as exc:
        raise _http_error(exc) from exc


@router.post("/{camera_id}/toggle")
def toggle_camera(camera_id: str, request: Request) -> dict[str, object]:
    camera_id = _checked_id(camera_id)
    try:
        camera = request.app.state.sitewatch.manager.toggle(camera_id)
        return _camera_or_current(request, camera_id, camera)
    except CameraNotFoundError as exc:
        raise _http_error(exc) from exc


@router.post("/{camera_id}/capture")
def capture_camera(camera_id: str, request: Request) -> dict[str, object]:
    try:
        image = request.app.state.sitewatch.manager.capture(_checked_id(camera_id))
    except (CameraNotFoundError, CameraNotActiveError, CaptureUnavailableError) as exc:
        raise _http_error(exc) from exc
    return {
        "image": image.data_url,
        "width": image.width,
        "height": image.height,
        "captured_at": image.captured_at,
    }


@router.post("/{camera_id}/analyze")
def analyze_camera(camera_id: str, request: Request, wait: bool = False) -> dict[str, object]:
    state = request.app.state.sitewatch
    try:
        future = state.scheduler.analyze_now(_checked_id(camera_id))
    except (CameraNotFoundError, CameraNotActiveError, AnalysisError) as exc:
        raise _http_error(exc) from exc
    if future is None:
        # Gate closed: a cycle is already running or no frame was ready.
        return {"ok": True, "submitted": False}
    if not wait:
        return {"ok": True, "submitted": True}
    try:
        description = future.result(timeout=state.scheduler.timeout + 5)
    except FutureTimeoutError as exc:
        raise HTTPException(status_code=504, detail="Analysis timed out") from exc
    return {"ok": True, "submitted": True, "description": description}


@router.post("/{camera_id}/analysis/enable")
def enable_analysis(camera_id: str, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    camera_id = _checked_id(camera_id)
    try:
        camera = state.manager.get(camera_id)
        if camera.status != "active":
            raise CameraNotActiveError("Camera is not active")
        state.scheduler.enable(camera_id)
        return state.manager.get(camera_id).to_dict()
    except (CameraNotFoundError, CameraNotActiveError) as exc:
        raise _http_error(exc) from exc


@router.post("/{camera_id}/analysis/disable")
def disable_analysis(camera_id: str, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    camera_id = _checked_id(camera_id)
    try:
        state.manager.get(camera_id)
        state.scheduler.disable(camera_id)
        return state.manager.get(camera_id).to_dict()
    except CameraNotFoundError as exc:
        raise _http_error(exc) from exc
