from __future__ import annotations

from fastapi import APIRouter, Query, Request

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    level: str | None = None,
) -> dict[str, object]:
    items = request.app.state.sitewatch.notifications.list(limit=limit, level=level)
    return {"items": [item.to_dict() for item in items]}


@router.delete("")
def clear_notifications(request: Request) -> dict[str, object]:
    return {"ok": True, "cleared": request.app.state.sitewatch.notifications.clear()}
