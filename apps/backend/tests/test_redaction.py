from __future__ import annotations

import json
import logging

from sitewatch.util.logging import RedactionFilter, setup_logging
from sitewatch.util.security import SecretStore, mask_key, redact_secrets, validate_camera_id

KEY = "AIzaSyA1234567890abcdefghijklmnopq"


def test_api_key_redaction_in_urls_and_headers() -> None:
    text = f"POST https://host/v1beta/models/x:generateContent?key={KEY} x-goog-api-key: {KEY}"
    redacted = redact_secrets(text)
    assert KEY not in redacted
    assert "?key=***" in redacted


def test_generic_api_key_pair_redaction() -> None:
    assert "hunter2" not in redact_secrets("api_key=hunter2 other=1")


def test_mask_key_shows_only_edges() -> None:
    assert mask_key(None) is None
    assert mask_key("short") == "***"
    assert mask_key(KEY) == "AIza***pq"


def test_log_records_are_redacted() -> None:
    record = logging.LogRecord("sitewatch", logging.INFO, __file__, 1, "calling %s", (f"?key={KEY}",), None)
    RedactionFilter().filter(record)
    assert KEY not in record.getMessage()


def test_secret_store_round_trip(tmp_path) -> None:
    store = SecretStore(tmp_path)
    store.store("gemini_api_key", KEY)

    assert store.get("gemini_api_key") == KEY
    assert KEY not in (tmp_path / "config" / "secrets.enc.json").read_text(encoding="utf-8")
    assert store.delete("gemini_api_key") is True
    assert store.get("gemini_api_key") is None
    assert store.delete("gemini_api_key") is False


def test_camera_id_validation() -> None:
    assert validate_camera_id("cam-0123abcd") == "cam-0123abcd"
    for bad in ("", "../etc", "cam id", "x" * 65):
        try:
            validate_camera_id(bad)
        except ValueError:
            continue
        raise AssertionError(f"accepted {bad!r}")


def test_log_file_is_json_and_redacted(tmp_path) -> None:
    log_path = setup_logging("info", tmp_path)
    logging.getLogger("sitewatch.test").warning("upstream rejected %s", f"x-goog-api-key: {KEY}")
    for handler in logging.getLogger().handlers:
        handler.flush()

    lines = log_path.read_text(encoding="utf-8").strip().splitlines()
    entry = json.loads(lines[-1])
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "sitewatch.test"
    assert KEY not in entry["message"]
