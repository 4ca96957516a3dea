from __future__ import annotations

from typing import Any

import requests
from requests.exceptions import RequestException, Timeout

from sitewatch.capture.frames import CapturedImage
from sitewatch.config.defaults import ANALYSIS_TIMEOUT_SECONDS, GEMINI_BASE_URL, GEMINI_MODEL
from sitewatch.errors import AnalysisError
from sitewatch.util.logging import get_logger

from .base import AnalysisClient

logger = get_logger(__name__)


def image_part(image: CapturedImage) -> dict[str, Any]:
    return {"inline_data": {"mime_type": image.mime_type, "data": image.base64}}


def extract_text(payload: Any) -> str:
    """Return the first text part of a ``generateContent`` response."""
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        raise AnalysisError("Malformed response: missing candidates") from exc
    for part in parts if isinstance(parts, list) else []:
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip():
            return part["text"].strip()
    raise AnalysisError("Malformed response: no text part")


class GeminiClient(AnalysisClient):
    """Plain-text client for the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str | None,
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = ANALYSIS_TIMEOUT_SECONDS,
        temperature: float = 0.1,
        max_output_tokens: int = 150,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def analyze(self, image: CapturedImage, prompt: str, timeout: float | None = None) -> str:
        return self.generate([{"text": prompt}, image_part(image)], timeout=timeout)

    def generate(
        self,
        parts: list[dict[str, Any]],
        timeout: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        if not self.api_key:
            raise AnalysisError("Gemini API key not configured")
        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": max_output_tokens or self.max_output_tokens,
            },
        }
        try:
            response = self._session.post(
                self.endpoint,
                json=body,
                headers={"Content-Type": "application/json", "x-goog-api-key": self.api_key},
                timeout=timeout or self.timeout,
            )
        except Timeout as exc:
            raise AnalysisError(f"Analysis timed out after {timeout or self.timeout:.0f}s") from exc
        except RequestException as exc:
            raise AnalysisError(f"Analysis request failed: {type(exc).__name__}") from exc

        if not 200 <= response.status_code < 300:
            logger.warning("gemini returned HTTP %s: %s", response.status_code, response.text[:200])
            raise AnalysisError(f"API Error: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise AnalysisError("Malformed response: body is not JSON") from exc
        return extract_text(payload)

    def close(self) -> None:
        self._session.close()
