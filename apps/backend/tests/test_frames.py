from __future__ import annotations

import numpy as np

from fakes import FakeStream
from sitewatch.capture.frames import (
    ANALYSIS_PROFILE,
    USER_PROFILE,
    CapturedImage,
    capture_frame,
    encode_frame,
    fit_within,
)


def test_fit_within_keeps_aspect_ratio() -> None:
    assert fit_within(1280, 720, 512, 384) == (512, 288)
    assert fit_within(640, 480, 512, 384) == (512, 384)
    assert fit_within(480, 1080, 512, 384) == (171, 384)


def test_fit_within_never_upscales() -> None:
    assert fit_within(320, 240, 512, 384) == (320, 240)
    assert fit_within(1920, 1080, None, None) == (1920, 1080)


def test_analysis_capture_is_downscaled_jpeg() -> None:
    image = capture_frame(FakeStream("dev-0", 1280, 720), ANALYSIS_PROFILE)

    assert image is not None
    assert (image.width, image.height) == (512, 288)
    assert image.mime_type == "image/jpeg"
    assert image.data[:2] == b"\xff\xd8"
    assert image.data_url.startswith("data:image/jpeg;base64,")


def test_user_capture_is_larger_than_analysis_capture() -> None:
    stream = FakeStream("dev-0", 1280, 720)
    user = capture_frame(stream, USER_PROFILE)
    analysis = capture_frame(stream, ANALYSIS_PROFILE)

    assert user is not None and analysis is not None
    assert (user.width, user.height) == (1280, 720)
    assert len(user.data) > len(analysis.data)


def test_zero_dimension_frames_yield_none() -> None:
    assert encode_frame(np.zeros((0, 0, 3), dtype=np.uint8), ANALYSIS_PROFILE) is None
    assert capture_frame(FakeStream("dev-0", 0, 0)) is None


def test_missing_stream_or_frame_yields_none() -> None:
    stream = FakeStream("dev-0")
    stream.stop()

    assert capture_frame(None) is None
    assert capture_frame(stream) is None


class _UnpluggedStream(FakeStream):
    def read_frame(self):
        raise RuntimeError("device disconnected")


def test_failing_stream_read_yields_none() -> None:
    assert capture_frame(_UnpluggedStream("dev-0"), ANALYSIS_PROFILE) is None
    assert capture_frame(_UnpluggedStream("dev-0"), USER_PROFILE) is None


def test_data_url_restores_image() -> None:
    image = capture_frame(FakeStream("dev-0", 320, 240), ANALYSIS_PROFILE)
    assert image is not None

    restored = CapturedImage.from_data_url(image.data_url, captured_at=image.captured_at)

    assert restored.data == image.data
    assert (restored.width, restored.height) == (320, 240)
    assert restored.captured_at == image.captured_at
