from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(prefix="/devices", tags=["devices"])


def _payload(request: Request, devices: list) -> dict[str, object]:
    state = request.app.state.sitewatch
    bound = state.manager.bound_device_ids()
    return {
        "devices": [
            {"device_id": d.device_id, "label": d.label, "kind": d.kind, "in_use": d.device_id in bound}
            for d in devices
        ],
        "error": state.devices.last_error,
    }


@router.get("")
def list_devices(request: Request) -> dict[str, object]:
    return _payload(request, request.app.state.sitewatch.devices.devices)


@router.post("/scan")
def scan_devices(request: Request) -> dict[str, object]:
    return _payload(request, request.app.state.sitewatch.devices.scan())
