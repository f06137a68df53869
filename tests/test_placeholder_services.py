import asyncio

import pytest
import requests

from errors import FetchFailed
from fakes import FakeResponse, FakeSession
from image_utils import ImageConverter, TargetFormat
from placeholder_services import ConversionRequest, PlaceholderImageService, build_filename


def test_build_url_uses_configured_service(config):
    service = PlaceholderImageService(config, session=FakeSession())

    assert service.build_url(300, 200) == "https://fpoimg.com/300x200"


def test_service_url_can_come_from_environment(config, monkeypatch):
    monkeypatch.setenv("PLACEHOLDER_IMAGE_SERVICE_URL", "http://localhost:9000/")
    service = PlaceholderImageService(config, session=FakeSession())

    assert service.build_url(1, 2) == "http://localhost:9000/1x2"


@pytest.mark.parametrize("fmt,expected", [
    ("png", "placeholder_300x200.png"),
    ("jpg", "placeholder_300x200.jpeg"),
    ("webp", "placeholder_300x200.webp"),
    ("tiff", "placeholder_300x200.png"),
])
def test_build_filename(fmt, expected):
    assert build_filename(300, 200, fmt) == expected


def test_fetch_disables_caching(config, png_session, transparent_png):
    service = PlaceholderImageService(config, session=png_session)

    data = service.fetch_image_bytes("https://fpoimg.com/32x16")

    assert data == transparent_png
    call = png_session.calls[0]
    assert call["headers"]["Cache-Control"] == "no-cache"
    assert call["headers"]["Pragma"] == "no-cache"
    assert call["timeout"] is None


def test_fetch_non_success_status(config):
    service = PlaceholderImageService(config, session=FakeSession(FakeResponse(404, b"", reason="Not Found")))

    with pytest.raises(FetchFailed) as excinfo:
        service.fetch_image_bytes("https://fpoimg.com/1x1")

    assert excinfo.value.status_code == 404


def test_fetch_transport_error(config):
    session = FakeSession(error=requests.exceptions.ConnectionError("connection refused"))
    service = PlaceholderImageService(config, session=session)

    with pytest.raises(FetchFailed) as excinfo:
        asyncio.run(service.fetch("https://fpoimg.com/1x1"))

    assert excinfo.value.status_code is None


def test_png_conversion_reuses_raw_bytes(config, png_session, transparent_png, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("native format must not be decoded or re-encoded")

    monkeypatch.setattr(ImageConverter, "decode_image", staticmethod(fail))
    monkeypatch.setattr(ImageConverter, "encode_image", staticmethod(fail))
    service = PlaceholderImageService(config, session=png_session)

    result = asyncio.run(service.convert("https://fpoimg.com/32x16", "png"))

    assert result.encoded_bytes == transparent_png
    assert result.mime_type == "image/png"


def test_unknown_format_takes_png_path(config, png_session, transparent_png):
    service = PlaceholderImageService(config, session=png_session)

    result = asyncio.run(service.convert("https://fpoimg.com/32x16", "bmp"))

    assert result.target_format is TargetFormat.PNG
    assert result.encoded_bytes == transparent_png


def test_jpeg_conversion_request(config, png_session):
    service = PlaceholderImageService(config, session=png_session)
    request = ConversionRequest("https://fpoimg.com/32x16", TargetFormat.JPEG)

    result = asyncio.run(service.run(request))

    assert result.mime_type == "image/jpeg"
    assert result.encoded_bytes[:2] == b"\xff\xd8"


def test_conversion_propagates_fetch_failure(config):
    service = PlaceholderImageService(config, session=FakeSession(FakeResponse(500)))

    with pytest.raises(FetchFailed):
        asyncio.run(service.convert("https://fpoimg.com/1x1", "jpeg"))
