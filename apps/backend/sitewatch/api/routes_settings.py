from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from sitewatch.config.defaults import GEMINI_SECRET_NAME
from sitewatch.util.security import mask_key

router = APIRouter(prefix="/settings", tags=["settings"])


class ApiKeyPayload(BaseModel):
    api_key: str = Field(min_length=1)


class AiDetectionPayload(BaseModel):
    enabled: bool


class IntervalPayload(BaseModel):
    interval_ms: int


class HistoryLimitPayload(BaseModel):
    limit: int


def _api_key_status(state) -> dict[str, object]:
    stored = state.secret_store.get(GEMINI_SECRET_NAME)
    return {
        "configured": state.client.configured,
        "stored": mask_key(stored),
    }


@router.get("")
def get_settings(request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    settings = state.settings_store.settings
    tree = state.settings_store.data_tree
    return {
        "settings": settings.model_dump(mode="json"),
        "api_key": _api_key_status(state),
        "data_tree": {
            "db": str(tree.db_path),
            "logs": str(tree.logs),
            "config": str(tree.config),
        },
    }


@router.put("/api-key")
def set_api_key(payload: ApiKeyPayload, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    state.set_api_key(payload.api_key.strip())
    return {"ok": True, "api_key": _api_key_status(state)}


@router.delete("/api-key")
def delete_api_key(request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    state.set_api_key(None)
    return {"ok": True, "api_key": _api_key_status(state)}


@router.post("/ai-detection")
def set_ai_detection(payload: AiDetectionPayload, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    state.settings_store.update(ai_detection_enabled=payload.enabled)
    state.view_state.record_setting("ai_detection_enabled", payload.enabled)
    state.scheduler.set_ai_detection(payload.enabled)
    return {"ok": True, "ai_detection_enabled": state.scheduler.ai_enabled}


@router.post("/interval")
def set_interval(payload: IntervalPayload, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    settings = state.settings_store.update(analysis_interval_ms=payload.interval_ms)
    state.view_state.record_setting("analysis_interval_ms", settings.analysis_interval_ms)
    applied = state.scheduler.set_interval(settings.analysis_interval_ms)
    return {"ok": True, "analysis_interval_ms": applied}


@router.post("/history-limit")
def set_history_limit(payload: HistoryLimitPayload, request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    settings = state.settings_store.update(history_limit=payload.limit)
    state.view_state.record_setting("history_limit", settings.history_limit)
    state.aggregator.set_limit(settings.history_limit)
    return {"ok": True, "history_limit": settings.history_limit}


@router.get("/history/{key}")
def setting_history(key: str, request: Request) -> dict[str, object]:
    return {"items": request.app.state.sitewatch.view_state.setting_history(key)}
