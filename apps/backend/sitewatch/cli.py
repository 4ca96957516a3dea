from __future__ import annotations

import argparse
import json
import signal
import sys

import uvicorn

from sitewatch.camera.devices import DeviceRegistry
from sitewatch.camera.opencv_cam import OpenCVMediaBackend
from sitewatch.config.defaults import DEFAULT_BIND, DEFAULT_PORT
from sitewatch.main import create_app

_KNOWN_COMMANDS = {"serve", "devices"}


def _build_command_parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="SiteWatch construction site safety monitor")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the SiteWatch API server")
    serve.add_argument("--data-dir", default=None, help="Path for runtime data (SQLite/logs/config)")
    serve.add_argument("--bind", default=DEFAULT_BIND, help=f"Bind host (default {DEFAULT_BIND})")
    serve.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Bind port (default {DEFAULT_PORT})")
    serve.add_argument("--log-level", default="info", help="Uvicorn log level")

    devices = subparsers.add_parser("devices", help="List local video input devices")
    devices.add_argument("--max-index", type=int, default=5, help="Highest device index to probe")

    return parser


def _run(parsed: argparse.Namespace) -> int:
    if parsed.bind == "0.0.0.0":
        print("[warning] LAN access enabled. Keep SiteWatch on trusted networks and do not expose publicly.")

    app = create_app(
        data_dir=parsed.data_dir,
        bind=parsed.bind,
        port=parsed.port,
        log_level=parsed.log_level,
    )
    print(f"SiteWatch running at http://{parsed.bind}:{parsed.port}")
    config = uvicorn.Config(
        app,
        host=parsed.bind,
        port=parsed.port,
        log_level=parsed.log_level,
        workers=1,
        timeout_graceful_shutdown=2,
    )
    server = uvicorn.Server(config)
    previous_handlers: dict[int, object] = {}

    def _request_exit(signum: int, _frame: object) -> None:
        if signum in {signal.SIGINT, signal.SIGTERM}:
            server.should_exit = True

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, _request_exit)
        except (AttributeError, ValueError):
            continue

    try:
        server.run()
    except KeyboardInterrupt:
        server.should_exit = True
    finally:
        app.state.sitewatch.shutdown()
        for sig, handler in previous_handlers.items():
            try:
                signal.signal(sig, handler)
            except (AttributeError, ValueError):
                continue
    if bool(getattr(server, "started", False)) or server.should_exit:
        return 0
    return 1


def _list_devices(parsed: argparse.Namespace) -> int:
    registry = DeviceRegistry(OpenCVMediaBackend(max_index=parsed.max_index))
    devices = registry.scan()
    payload = {
        "devices": [{"device_id": d.device_id, "label": d.label} for d in devices],
        "error": registry.last_error,
    }
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0 if devices else 1


def _dispatch_command(parsed: argparse.Namespace) -> int:
    if parsed.command == "serve":
        return _run(parsed)
    if parsed.command == "devices":
        return _list_devices(parsed)
    raise ValueError(f"Unknown command: {parsed.command}")


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] not in _KNOWN_COMMANDS:
        args = ["serve", *args]
    try:
        parsed = _build_command_parser("sitewatch").parse_args(args)
        return _dispatch_command(parsed)
    except KeyboardInterrupt:
        return 0
    except Exception as exc:
        print(f"[error] {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
