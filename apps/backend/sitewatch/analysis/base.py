from __future__ import annotations

from abc import ABC, abstractmethod

from sitewatch.capture.frames import CapturedImage


class AnalysisClient(ABC):
    """Remote vision-language model that turns an image and a prompt into text.

    Implementations raise ``AnalysisError`` for every failure: transport,
    non-2xx status, timeout, or a response without text.
    """

    @property
    @abstractmethod
    def configured(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def analyze(self, image: CapturedImage, prompt: str, timeout: float | None = None) -> str:
        raise NotImplementedError

    def close(self) -> None:
        return None
