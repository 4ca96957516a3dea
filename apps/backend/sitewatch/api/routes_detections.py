from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

router = APIRouter(prefix="/detections", tags=["detections"])


@router.get("")
def list_detections(
    request: Request,
    camera_id: str | None = None,
    severity: str | None = Query(default=None, pattern="^(low|medium|high)$"),
    limit: int | None = Query(default=None, ge=1, le=500),
    include_images: bool = True,
) -> dict[str, object]:
    items = request.app.state.sitewatch.aggregator.list(camera_id=camera_id, severity=severity, limit=limit)
    return {"items": [item.to_dict(include_image=include_images) for item in items]}


@router.get("/stats")
def detection_stats(request: Request, camera_id: str | None = None) -> dict[str, object]:
    return request.app.state.sitewatch.aggregator.stats(camera_id=camera_id)


@router.get("/{detection_id}")
def get_detection(detection_id: str, request: Request) -> dict[str, object]:
    detection = request.app.state.sitewatch.aggregator.get(detection_id)
    if detection is None:
        raise HTTPException(status_code=404, detail="Detection not found")
    return detection.to_dict()


@router.delete("")
def clear_detections(request: Request) -> dict[str, object]:
    return {"ok": True, "cleared": request.app.state.sitewatch.aggregator.clear()}
