import json

import pytest

from config_manager import ConfigManager
from fakes import FakeResponse, FakeSession, make_image_bytes


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PLACEHOLDER_IMAGE_SERVICE_URL", "PLACEHOLDER_DOWNLOAD_DIR", "PLACEHOLDER_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path):
    settings = {
        "download_dir": str(tmp_path / "downloads"),
        "write_retries": 0,
        "write_retry_delay": 0,
    }
    (tmp_path / "app_settings.json").write_text(json.dumps(settings), encoding="utf-8")
    return ConfigManager(str(tmp_path))


@pytest.fixture
def transparent_png():
    return make_image_bytes(size=(32, 16), color=(255, 0, 0, 255), transparent_left=True)


@pytest.fixture
def png_session(transparent_png):
    return FakeSession(FakeResponse(200, transparent_png))
