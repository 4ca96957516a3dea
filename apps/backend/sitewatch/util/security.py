from __future__ import annotations

import json
import os
import re
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

QUERY_KEY_RE = re.compile(r"([?&]key=)([^&\s]+)", re.IGNORECASE)
HEADER_KEY_RE = re.compile(r"(x-goog-api-key['\"]?\s*[=:]\s*['\"]?)([^\s,;'\"]+)", re.IGNORECASE)
API_KEY_PAIR_RE = re.compile(r"(api[_-]?key\s*[=:]\s*)([^\s,;]+)", re.IGNORECASE)
GOOGLE_KEY_RE = re.compile(r"AIza[0-9A-Za-z_\-]{20,}")
CAMERA_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")


def validate_camera_id(camera_id: str) -> str:
    value = str(camera_id)
    if not CAMERA_ID_RE.fullmatch(value):
        raise ValueError("Invalid camera id")
    return value


def redact_secrets(text: str) -> str:
    text = QUERY_KEY_RE.sub(r"\1***", text)
    text = HEADER_KEY_RE.sub(r"\1***", text)
    text = API_KEY_PAIR_RE.sub(r"\1***", text)
    return GOOGLE_KEY_RE.sub("***", text)


def mask_key(value: str | None) -> str | None:
    if not value:
        return None
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-2:]}"


class SecretStore:
    """Fernet-encrypted name/value store under ``<data_dir>/config``."""

    def __init__(self, data_dir: Path) -> None:
        config_dir = data_dir / "config"
        config_dir.mkdir(parents=True, exist_ok=True)
        self._secrets_file = config_dir / "secrets.enc.json"
        self._key_file = config_dir / "secrets.key"

    def _load_key(self) -> bytes:
        if self._key_file.exists():
            return self._key_file.read_bytes()
        key = Fernet.generate_key()
        self._key_file.write_bytes(key)
        try:
            os.chmod(self._key_file, 0o600)
        except PermissionError:
            pass
        return key

    def _read_map(self) -> dict[str, str]:
        if not self._secrets_file.exists():
            return {}
        try:
            return json.loads(self._secrets_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}

    def _write_map(self, payload: dict[str, str]) -> None:
        self._secrets_file.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")

    def store(self, name: str, value: str) -> None:
        fernet = Fernet(self._load_key())
        payload = self._read_map()
        payload[name] = fernet.encrypt(value.encode("utf-8")).decode("utf-8")
        self._write_map(payload)

    def get(self, name: str) -> str | None:
        token = self._read_map().get(name)
        if not token:
            return None
        fernet = Fernet(self._load_key())
        try:
            return fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            return None

    def delete(self, name: str) -> bool:
        payload = self._read_map()
        if name not in payload:
            return False
        payload.pop(name)
        self._write_map(payload)
        return True
