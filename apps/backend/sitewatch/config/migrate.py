from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sitewatch.util.paths import DataTree, bootstrap_config_path, open_data_tree

from .defaults import (
    ANALYSIS_TIMEOUT_SECONDS,
    APP_VERSION,
    DEFAULT_ANALYSIS_INTERVAL_MS,
    DEFAULT_HISTORY_LIMIT,
    GEMINI_BASE_URL,
    GEMINI_MODEL,
)
from .schema import AppSettings


class SettingsStore:
    def __init__(self, cli_data_dir: str | None = None) -> None:
        self.bootstrap_path = bootstrap_config_path()
        self.bootstrap_path.parent.mkdir(parents=True, exist_ok=True)
        bootstrap = self._read_json(self.bootstrap_path, default={})

        self._data_tree = open_data_tree(cli_data_dir or bootstrap.get("data_dir"))
        chosen_dir = self._data_tree.root

        self.settings_path = self._data_tree.config / "settings.json"
        raw_settings = self._read_json(self.settings_path, default={})
        migrated = migrate_settings(raw_settings, str(chosen_dir))
        self._settings = AppSettings.model_validate(migrated)
        self._settings.data_dir = str(chosen_dir)
        self.save()
        self._write_json(self.bootstrap_path, {"data_dir": str(chosen_dir)})

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def data_tree(self) -> DataTree:
        return self._data_tree

    def update(self, **changes: Any) -> AppSettings:
        merged = self._settings.model_dump()
        merged.update(changes)
        self._settings = AppSettings.model_validate(merged)
        self.save()
        return self._settings

    def save(self) -> None:
        payload = self._settings.model_dump(mode="json")
        self._write_json(self.settings_path, payload)

    @staticmethod
    def _read_json(path: Path, default: dict[str, Any]) -> dict[str, Any]:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return default

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        path.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")


def migrate_settings(raw: dict[str, Any], data_dir: str) -> dict[str, Any]:
    migrated = dict(raw)
    migrated.setdefault("version", APP_VERSION)
    migrated.setdefault("data_dir", data_dir)
    migrated.setdefault("ai_detection_enabled", True)
    migrated.setdefault("analysis_interval_ms", DEFAULT_ANALYSIS_INTERVAL_MS)
    migrated.setdefault("analysis_timeout_seconds", ANALYSIS_TIMEOUT_SECONDS)
    migrated.setdefault("history_limit", DEFAULT_HISTORY_LIMIT)
    migrated.setdefault("gemini_model", GEMINI_MODEL)
    migrated.setdefault("gemini_base_url", GEMINI_BASE_URL)
    # API keys live in the secret store, never in settings.json.
    migrated.pop("gemini_api_key", None)
    migrated.pop("api_key", None)
    return migrated
