from __future__ import annotations

from fastapi import APIRouter, Request

from sitewatch import __version__

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def get_health(request: Request) -> dict[str, object]:
    state = request.app.state.sitewatch
    settings = state.settings_store.settings
    cameras = state.manager.list()
    return {
        "ok": True,
        "version": __version__,
        "bind": settings.bind,
        "port": settings.port,
        "data_dir": settings.data_dir,
        "ai_detection_enabled": state.scheduler.ai_enabled,
        "api_key_configured": state.client.configured,
        "cameras": len(cameras),
        "cameras_active": sum(1 for camera in cameras if camera.status == "active"),
        "analysis_timers": state.scheduler.active_timers(),
    }
