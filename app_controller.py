from config_manager import ConfigManager
from download_dispatcher import DownloadDispatcher, DownloadRequest
from errors import BackendWriteFailed, ConversionError, DownloadFailed, DuplicatePreset, InvalidDimension
from image_utils import NATIVE_FORMAT, TargetFormat
from logger import get_logger
from placeholder_services import ConversionRequest, PlaceholderImageService, build_filename
from preset_store import Preset, PresetStore, coerce_dimension
from storage_backend import JsonFileBackend

_logger = get_logger("controller")

GENERIC_DOWNLOAD_ERROR = "An error occurred while downloading the image."
INVALID_DIMENSIONS_MESSAGE = "Please enter a valid width and height."
SAVE_FAILED_MESSAGE = "Presets could not be saved. Your change is shown but may be lost."
PRESETS_LOADING_MESSAGE = "Presets are still loading, try again in a moment."


class PlaceholderController:
    """Connects the preset store, the image service and the download dispatcher.

    ``render`` receives the preset tuple on every change; ``notify`` receives
    short user-facing messages (duplicates, save problems).
    """

    def __init__(self, config_manager: ConfigManager, backend=None, service=None,
                 dispatcher=None, render=None, notify=None):
        self.config_manager = config_manager
        self.notify = notify
        self.backend = backend or JsonFileBackend(
            config_manager.storage_path, poll_interval=config_manager.storage_poll_interval
        )
        self.service = service or PlaceholderImageService(config_manager)
        self.dispatcher = dispatcher or DownloadDispatcher(
            config_manager.download_dir, fetcher=self.service.fetch_image_bytes
        )
        self.store = PresetStore(
            self.backend,
            render=render,
            on_duplicate=self._on_duplicate,
            write_retries=config_manager.write_retries,
            write_retry_delay=config_manager.write_retry_delay,
        )

    def _notify(self, message):
        if self.notify is not None:
            self.notify(message)

    def _on_duplicate(self, preset):
        self._notify(str(DuplicatePreset(preset)))

    async def start(self):
        # Subscribe before loading so changes during the load are not missed
        self.store.attach()
        if hasattr(self.backend, "start_watching"):
            self.backend.start_watching()
        return await self.store.reconcile_on_start()

    async def stop(self):
        self.store.detach()
        if hasattr(self.backend, "stop_watching"):
            await self.backend.stop_watching()

    # Presets

    async def add_preset(self, w, h) -> bool:
        if coerce_dimension(w) is None or coerce_dimension(h) is None:
            self._notify("Enter a width and height before adding a preset.")
            return False
        try:
            return await self.store.add(w, h, notify_duplicate=True)
        except BackendWriteFailed as e:
            _logger.error("Preset %sx%s kept in memory only: %s", w, h, e)
            self._notify(SAVE_FAILED_MESSAGE)
            return True

    def _presets_ready(self) -> bool:
        # Indexes only mean something once the stored list has been loaded
        if not self.store.initialized:
            self._notify(PRESETS_LOADING_MESSAGE)
            return False
        return True

    async def remove_preset(self, index):
        if not self._presets_ready():
            return
        try:
            await self.store.remove(index)
        except BackendWriteFailed as e:
            _logger.error("Preset removal not saved: %s", e)
            self._notify(SAVE_FAILED_MESSAGE)

    async def edit_preset(self, index, text) -> bool:
        if not self._presets_ready():
            return False
        try:
            preset = Preset.parse(text)
        except InvalidDimension:
            self._notify("Invalid format. Example: 300x200")
            return False
        try:
            return await self.store.edit(index, preset.w, preset.h)
        except BackendWriteFailed as e:
            _logger.error("Preset edit not saved: %s", e)
            self._notify(SAVE_FAILED_MESSAGE)
            return True

    def apply_preset(self, index) -> Preset:
        return self.store.apply(index)

    # Downloads

    def preview_url(self, w, h):
        w, h = coerce_dimension(w), coerce_dimension(h)
        if w is None or h is None:
            return None
        return self.service.build_url(w, h)

    async def submit_download(self, w, h, format_selector=None, save_as=False, target_path=None) -> dict:
        w, h = coerce_dimension(w), coerce_dimension(h)
        if w is None or h is None:
            return {"success": False, "error": INVALID_DIMENSIONS_MESSAGE}

        target_format = TargetFormat.resolve(format_selector or self.config_manager.default_format)
        request = ConversionRequest(self.service.build_url(w, h), target_format)
        filename = build_filename(w, h, target_format, request.filename_template)

        try:
            if target_format is NATIVE_FORMAT:
                # The service already serves this format; let the dispatcher fetch the URL itself
                payload = request.source_url
                mime_type = target_format.mime_type
            else:
                result = await self.service.run(request)
                payload = result.encoded_bytes
                mime_type = result.mime_type

            download_id = await self.dispatcher.download(
                DownloadRequest(payload, filename, prompt_user_for_location=save_as),
                target_path=target_path,
            )
        except (ConversionError, DownloadFailed) as e:
            _logger.error("Download of %s failed: %s", filename, e)
            return {"success": False, "error": GENERIC_DOWNLOAD_ERROR}

        return {
            "success": True,
            "download_id": download_id,
            "filename": filename,
            "path": self.dispatcher.completed.get(download_id),
            "mime_type": mime_type,
        }
