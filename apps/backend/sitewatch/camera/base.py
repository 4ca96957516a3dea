from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

VIDEO_INPUT = "videoinput"


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    label: str
    kind: str = VIDEO_INPUT


class MediaStream(ABC):
    """A live video stream acquired for one device."""

    device_id: str

    @abstractmethod
    def read_frame(self) -> np.ndarray | None:
        raise NotImplementedError

    @property
    @abstractmethod
    def active(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Release every track held by the stream. Safe to call twice."""
        raise NotImplementedError


class MediaBackend(ABC):
    @abstractmethod
    def request_permission(self) -> MediaStream:
        raise NotImplementedError

    @abstractmethod
    def enumerate_devices(self) -> list[DeviceInfo]:
        raise NotImplementedError

    @abstractmethod
    def open_stream(self, device_id: str, width: int, height: int) -> MediaStream:
        """Acquire a stream, raising ``StreamAcquisitionError`` on failure."""
        raise NotImplementedError
