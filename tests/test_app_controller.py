import asyncio
from io import BytesIO

from PIL import Image

from app_controller import (
    GENERIC_DOWNLOAD_ERROR, INVALID_DIMENSIONS_MESSAGE, PRESETS_LOADING_MESSAGE, SAVE_FAILED_MESSAGE,
    PlaceholderController,
)
from errors import EncodeFailed
from fakes import CountingBackend, FakeResponse, FakeSession, drain
from image_utils import ImageConverter
from placeholder_services import PlaceholderImageService
from preset_store import Preset
from storage_backend import InMemoryBackend


def make_controller(config, session=None, backend=None):
    notices = []
    rendered = []
    service = PlaceholderImageService(config, session=session or FakeSession())
    controller = PlaceholderController(
        config,
        backend=backend or InMemoryBackend(),
        service=service,
        render=rendered.append,
        notify=notices.append,
    )
    return controller, notices, rendered


def test_start_seeds_and_renders(config):
    controller, notices, rendered = make_controller(config)

    async def scenario():
        presets = await controller.start()
        await drain()
        await controller.stop()
        return presets

    presets = asyncio.run(scenario())

    assert [p.key for p in presets] == ["128x128", "256x256", "512x512"]
    assert rendered[-1] == presets
    assert notices == []


def test_duplicate_and_invalid_preset_notices(config):
    controller, notices, _ = make_controller(config)

    async def scenario():
        await controller.start()
        added = await controller.add_preset(128, 128)
        invalid = await controller.add_preset(0, 5)
        return added, invalid

    added, invalid = asyncio.run(scenario())

    assert (added, invalid) == (False, False)
    assert notices[0] == "128x128 preset already exists."
    assert len(notices) == 2


def test_save_failure_becomes_notice(config):
    backend = CountingBackend({"presets": []}, fail_times=100)
    controller, notices, _ = make_controller(config, backend=backend)

    async def scenario():
        await controller.start()
        return await controller.add_preset(64, 64)

    added = asyncio.run(scenario())

    assert added is True
    assert notices == [SAVE_FAILED_MESSAGE]
    assert controller.store.presets == (Preset(64, 64),)


def test_edit_and_apply_presets(config):
    controller, notices, _ = make_controller(config)

    async def scenario():
        await controller.start()
        malformed = await controller.edit_preset(0, "wide")
        edited = await controller.edit_preset(0, "300x200")
        await controller.remove_preset(2)
        return malformed, edited

    malformed, edited = asyncio.run(scenario())

    assert (malformed, edited) == (False, True)
    assert notices == ["Invalid format. Example: 300x200"]
    assert controller.apply_preset(0) == Preset(300, 200)
    assert [p.key for p in controller.store.presets] == ["300x200", "256x256"]


def test_preview_url(config):
    controller, _, _ = make_controller(config)

    assert controller.preview_url(300, 200) == "https://fpoimg.com/300x200"
    assert controller.preview_url(0, 200) is None


def test_invalid_dimensions_never_reach_the_pipeline(config):
    session = FakeSession()
    controller, _, _ = make_controller(config, session=session)

    result = asyncio.run(controller.submit_download(0, 100, "jpeg"))

    assert result == {"success": False, "error": INVALID_DIMENSIONS_MESSAGE}
    assert session.calls == []


def test_png_download_hands_url_to_dispatcher(config, png_session, transparent_png, monkeypatch):
    encode_calls = []
    original_encode = ImageConverter.encode_image
    monkeypatch.setattr(
        ImageConverter, "encode_image",
        staticmethod(lambda *args, **kwargs: encode_calls.append(args) or original_encode(*args, **kwargs)),
    )
    controller, _, _ = make_controller(config, session=png_session)

    result = asyncio.run(controller.submit_download(32, 16, "png"))

    assert result["success"] is True
    assert result["filename"] == "placeholder_32x16.png"
    assert result["mime_type"] == "image/png"
    with open(result["path"], "rb") as f:
        assert f.read() == transparent_png
    assert [call["url"] for call in png_session.calls] == ["https://fpoimg.com/32x16"]
    assert encode_calls == []


def test_jpeg_download_writes_converted_file(config, png_session):
    controller, _, _ = make_controller(config, session=png_session)

    result = asyncio.run(controller.submit_download(32, 16, "jpg"))

    assert result["success"] is True
    assert result["filename"] == "placeholder_32x16.jpeg"
    with open(result["path"], "rb") as f:
        image = Image.open(BytesIO(f.read()))
        assert image.format == "JPEG"
        assert image.size == (32, 16)


def test_default_format_comes_from_settings(config, png_session):
    config.set("default_format", "webp")
    controller, _, _ = make_controller(config, session=png_session)

    result = asyncio.run(controller.submit_download(32, 16))

    assert result["filename"] == "placeholder_32x16.webp"
    assert result["mime_type"] == "image/webp"


def test_pipeline_failures_share_one_message(config, png_session, monkeypatch):
    failed_fetch, _, _ = make_controller(config, session=FakeSession(FakeResponse(500)))
    fetch_result = asyncio.run(failed_fetch.submit_download(10, 10, "jpeg"))

    def broken_encode(*args, **kwargs):
        raise EncodeFailed("encoder unavailable")

    monkeypatch.setattr(ImageConverter, "encode_image", staticmethod(broken_encode))
    failed_encode, _, _ = make_controller(config, session=png_session)
    encode_result = asyncio.run(failed_encode.submit_download(32, 16, "webp"))

    assert fetch_result == encode_result == {"success": False, "error": GENERIC_DOWNLOAD_ERROR}


def test_save_as_target_path(config, png_session, tmp_path):
    controller, _, _ = make_controller(config, session=png_session)
    target = tmp_path / "chosen" / "banner.jpeg"

    result = asyncio.run(controller.submit_download(32, 16, "jpeg", save_as=True, target_path=str(target)))

    assert result["path"] == str(target)
    assert target.exists()


def test_index_actions_wait_for_startup(config):
    backend = CountingBackend({"presets": [{"w": 64, "h": 64}]})
    controller, notices, _ = make_controller(config, backend=backend)

    async def scenario():
        edited = await controller.edit_preset(0, "300x200")
        await controller.remove_preset(0)
        await controller.start()
        await controller.remove_preset(0)
        return edited

    edited = asyncio.run(scenario())

    assert edited is False
    assert notices == [PRESETS_LOADING_MESSAGE, PRESETS_LOADING_MESSAGE]
    assert backend.set_calls == 1
    assert backend.peek("presets") == []
