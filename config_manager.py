import json
import os
from pathlib import Path

from logger import get_logger

_logger = get_logger("config")

SETTINGS_FILENAME = "app_settings.json"


class ConfigManager:
    DEFAULTS = {
        "image_service_url": "https://fpoimg.com",
        "download_dir": "",  # empty -> ~/Downloads
        "storage_file": "presets_storage.json",
        "storage_poll_interval": 1.0,
        "write_retries": 2,
        "write_retry_delay": 0.5,
        "request_timeout": None,  # no timeout unless configured
        "default_format": "png",
    }

    # Environment variables win over the settings file
    ENV_OVERRIDES = {
        "image_service_url": "PLACEHOLDER_IMAGE_SERVICE_URL",
        "download_dir": "PLACEHOLDER_DOWNLOAD_DIR",
    }

    def __init__(self, app_dir, settings_filename=SETTINGS_FILENAME):
        self.app_dir = app_dir
        self.settings_path = os.path.join(self.app_dir, settings_filename)
        self.settings = self._load_json(self.settings_path)

        if self.settings is None:
            _logger.info("No usable %s found, using default settings.", settings_filename)
            self.settings = {}

    def _load_json(self, file_path):
        if not os.path.exists(file_path):
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            _logger.warning("Error decoding JSON from %s: %s", file_path, e)
            return None
        except OSError as e:
            _logger.warning("Error loading %s: %s", file_path, e)
            return None
        if not isinstance(data, dict):
            _logger.warning("Ignoring %s: top-level value is not an object.", file_path)
            return None
        return data

    def save(self):
        os.makedirs(self.app_dir, exist_ok=True)
        with open(self.settings_path, 'w', encoding='utf-8') as f:
            json.dump(self.settings, f, indent=2)
        _logger.debug("Settings saved to %s", self.settings_path)

    def get(self, key, default=None):
        env_name = self.ENV_OVERRIDES.get(key)
        if env_name:
            env_value = os.getenv(env_name)
            if env_value:
                return env_value
        if key in self.settings:
            return self.settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def set(self, key, value):
        self.settings[key] = value

    @property
    def image_service_url(self) -> str:
        return str(self.get("image_service_url")).rstrip("/")

    @property
    def download_dir(self) -> str:
        configured = self.get("download_dir")
        if configured:
            return os.path.expanduser(configured)
        return os.path.join(str(Path.home()), "Downloads")

    @property
    def storage_path(self) -> str:
        storage_file = self.get("storage_file")
        if os.path.isabs(storage_file):
            return storage_file
        return os.path.join(self.app_dir, storage_file)

    @property
    def storage_poll_interval(self) -> float:
        return float(self.get("storage_poll_interval"))

    @property
    def write_retries(self) -> int:
        return max(0, int(self.get("write_retries")))

    @property
    def write_retry_delay(self) -> float:
        return max(0.0, float(self.get("write_retry_delay")))

    @property
    def request_timeout(self) -> float | None:
        timeout = self.get("request_timeout")
        return float(timeout) if timeout is not None else None

    @property
    def default_format(self) -> str:
        return str(self.get("default_format"))
