from __future__ import annotations


class SiteWatchError(Exception):
    """Base class for errors raised by the monitoring core."""


class CapacityError(SiteWatchError):
    pass


class DuplicateDeviceError(SiteWatchError):
    pass


class CameraNotFoundError(SiteWatchError, KeyError):
    def __init__(self, camera_id: str) -> None:
        super().__init__(f"Camera not found: {camera_id}")
        self.camera_id = camera_id

    def __str__(self) -> str:
        return str(self.args[0])


class CameraNotActiveError(SiteWatchError):
    pass


class CaptureUnavailableError(SiteWatchError):
    pass


class StreamAcquisitionError(SiteWatchError):
    pass


class AnalysisError(SiteWatchError):
    pass
