import asyncio
from dataclasses import dataclass

import requests

from errors import FetchFailed
from image_utils import NATIVE_FORMAT, ConversionResult, ImageConverter, TargetFormat
from logger import get_logger

_logger = get_logger("services")

FILENAME_TEMPLATE = "placeholder_{w}x{h}.{ext}"

# Always go to the network; a cached placeholder could be a stale size
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def build_filename(w, h, target_format, template=FILENAME_TEMPLATE) -> str:
    target_format = TargetFormat.resolve(target_format)
    return template.format(w=w, h=h, ext=target_format.extension)


@dataclass(frozen=True)
class ConversionRequest:
    source_url: str
    target_format: TargetFormat
    filename_template: str = FILENAME_TEMPLATE


class PlaceholderImageService:
    def __init__(self, config_manager, session=None):
        self.config_manager = config_manager
        self.base_url = config_manager.image_service_url
        self.timeout = config_manager.request_timeout
        self.session = session or requests.Session()

    def build_url(self, width: int, height: int) -> str:
        return f"{self.base_url}/{width}x{height}"

    def fetch_image_bytes(self, url: str) -> bytes:
        """Blocking GET of ``url``; raises FetchFailed on any non-2xx or transport error."""
        _logger.debug("Fetching %s", url)
        try:
            response = self.session.get(url, headers=NO_CACHE_HEADERS, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise FetchFailed(None, url, "request timed out") from e
        except requests.exceptions.RequestException as e:
            raise FetchFailed(None, url, str(e)) from e

        if not 200 <= response.status_code < 300:
            raise FetchFailed(response.status_code, url, getattr(response, "reason", "") or "")

        content_type = response.headers.get('content-type', '').lower()
        if content_type and not content_type.startswith("image/"):
            _logger.warning("Image service answered %s with content-type '%s'", url, content_type)
        return response.content

    async def fetch(self, url: str) -> bytes:
        return await asyncio.to_thread(self.fetch_image_bytes, url)

    async def convert(self, source_url: str, target_format) -> ConversionResult:
        target_format = TargetFormat.resolve(target_format)
        source_bytes = await self.fetch(source_url)

        if target_format is NATIVE_FORMAT:
            # Already in the requested encoding; hand back the bytes untouched
            return ConversionResult(source_bytes, target_format.mime_type, target_format)

        result = await asyncio.to_thread(ImageConverter.convert_bytes, source_bytes, target_format)
        _logger.info("Converted %s to %s (%d bytes)", source_url, result.mime_type, len(result.encoded_bytes))
        return result

    async def run(self, request: ConversionRequest) -> ConversionResult:
        return await self.convert(request.source_url, request.target_format)
