from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

APP_DIR_NAME = "sitewatch"


@dataclass(frozen=True)
class DataTree:
    """On-disk layout under the data dir: ``db/``, ``logs/`` and ``config/``."""

    root: Path

    @property
    def db_path(self) -> Path:
        return self.root / "db" / "sitewatch.db"

    @property
    def logs(self) -> Path:
        return self.root / "logs"

    @property
    def config(self) -> Path:
        return self.root / "config"

    def create(self) -> DataTree:
        for directory in (self.db_path.parent, self.logs, self.config):
            directory.mkdir(parents=True, exist_ok=True)
        return self


def default_data_dir() -> Path:
    if sys.platform.startswith("win"):
        base = Path(os.environ.get("LOCALAPPDATA") or Path.home() / "AppData" / "Local")
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")
    return base / APP_DIR_NAME


def bootstrap_config_path() -> Path:
    return Path.home() / f".{APP_DIR_NAME}" / "bootstrap.json"


def open_data_tree(data_dir: str | Path | None) -> DataTree:
    root = Path(data_dir).expanduser() if data_dir else default_data_dir()
    return DataTree(root.resolve()).create()
