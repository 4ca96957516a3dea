from __future__ import annotations

import argparse
from types import SimpleNamespace

from fakes import FakeBackend
from sitewatch import cli


def _parsed() -> argparse.Namespace:
    return cli._build_command_parser("sitewatch").parse_args(["serve", "--bind", "127.0.0.1", "--port", "8877"])


def _fake_app(shutdown_calls: list[int]) -> object:
    sitewatch = SimpleNamespace(shutdown=lambda: shutdown_calls.append(1))
    return SimpleNamespace(state=SimpleNamespace(sitewatch=sitewatch))


def test_cli_returns_zero_on_keyboard_interrupt(monkeypatch) -> None:
    shutdown_calls: list[int] = []
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app(shutdown_calls))
    monkeypatch.setattr(cli.uvicorn, "Config", lambda *args, **kwargs: object())

    class _InterruptServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = True

        def run(self) -> None:
            raise KeyboardInterrupt

    monkeypatch.setattr(cli.uvicorn, "Server", _InterruptServer)

    assert cli._run(_parsed()) == 0
    assert shutdown_calls == [1]


def test_cli_returns_nonzero_when_server_never_starts(monkeypatch) -> None:
    shutdown_calls: list[int] = []
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app(shutdown_calls))
    monkeypatch.setattr(cli.uvicorn, "Config", lambda *args, **kwargs: object())

    class _NeverStartedServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = False

        def run(self) -> None:
            return None

    monkeypatch.setattr(cli.uvicorn, "Server", _NeverStartedServer)

    assert cli._run(_parsed()) == 1
    assert shutdown_calls == [1]


def test_bare_invocation_defaults_to_serve(monkeypatch) -> None:
    seen: list[argparse.Namespace] = []
    monkeypatch.setattr(cli, "_run", lambda parsed: seen.append(parsed) or 0)

    assert cli.main(["--port", "9001"]) == 0
    assert seen[0].command == "serve"
    assert seen[0].port == 9001


def test_devices_command_reports_scan(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "OpenCVMediaBackend", lambda max_index=5: FakeBackend())

    assert cli.main(["devices"]) == 0
    assert '"Webcam 0"' in capsys.readouterr().out
