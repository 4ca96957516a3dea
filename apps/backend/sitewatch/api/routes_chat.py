from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from sitewatch.capture.frames import CapturedImage
from sitewatch.errors import AnalysisError, CameraNotActiveError, CameraNotFoundError, CaptureUnavailableError

router = APIRouter(prefix="/chat", tags=["chat"])


class OpenChatPayload(BaseModel):
    camera_id: str | None = None
    detection_id: str | None = None
    image: str | None = None


class QuestionPayload(BaseModel):
    question: str = Field(min_length=1, max_length=2000)


def _resolve_image(payload: OpenChatPayload, request: Request) -> tuple[CapturedImage, str | None]:
    state = request.app.state.sitewatch
    if payload.detection_id:
        detection = state.aggregator.get(payload.detection_id)
        if detection is None:
            raise HTTPException(status_code=404, detail="Detection not found")
        return detection.image, detection.camera_name
    if payload.camera_id:
        try:
            camera = state.manager.get(payload.camera_id)
            return state.manager.capture(payload.camera_id), camera.name
        except CameraNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Camera not found") from exc
        except (CameraNotActiveError, CaptureUnavailableError) as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
    if payload.image:
        try:
            return CapturedImage.from_data_url(payload.image), None
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail="Provide a camera, a detection or an image")


def _session_payload(session) -> dict[str, object]:
    return {
        "id": session.id,
        "camera_name": session.camera_name,
        "description": session.description,
        "history": session.history(),
    }


@router.post("")
def open_chat(payload: OpenChatPayload, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    image, camera_name = _resolve_image(payload, request)
    session = state.chats.open(image, camera_name=camera_name)
    try:
        session.describe(timeout=state.scheduler.timeout)
    except AnalysisError as exc:
        state.chats.close(session.id)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _session_payload(session)


@router.get("/{session_id}")
def get_chat(session_id: str, request: Request) -> dict[str, object]:
    session = request.app.state.sitewatch.chats.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return _session_payload(session)


@router.post("/{session_id}/ask")
def ask_chat(session_id: str, payload: QuestionPayload, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    session = state.chats.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    try:
        answer = session.ask(payload.question, timeout=state.scheduler.timeout)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AnalysisError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"answer": answer, "history": session.history()}


@router.delete("/{session_id}")
def close_chat(session_id: str, request: Request) -> dict[str, object]:
    if not request.app.state.sitewatch.chats.close(session_id):
        raise HTTPException(status_code=404, detail="Chat session not found")
    return {"ok": True}
