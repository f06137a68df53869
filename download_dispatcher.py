import asyncio
import itertools
import os
from dataclasses import dataclass

from errors import ConversionError, DownloadFailed
from logger import get_logger

_logger = get_logger("downloads")


@dataclass(frozen=True)
class DownloadRequest:
    source_reference: str | bytes  # URL to fetch, or the payload itself
    suggested_filename: str
    prompt_user_for_location: bool = False


def uniquify_path(path: str) -> str:
    """Returns ``path`` or the first free ``name (n).ext`` variant of it."""
    if not os.path.exists(path):
        return path
    stem, ext = os.path.splitext(path)
    for n in itertools.count(1):
        candidate = f"{stem} ({n}){ext}"
        if not os.path.exists(candidate):
            return candidate


class DownloadDispatcher:
    """Writes download payloads to disk.

    ``fetcher`` is a blocking ``url -> bytes`` callable used for URL sources.
    ``location_prompt`` is called with the default target path when a request
    asks for a location and returns the chosen path, or None if the user
    canceled.
    """

    def __init__(self, download_dir, fetcher=None, location_prompt=None):
        self.download_dir = download_dir
        self.fetcher = fetcher
        self.location_prompt = location_prompt
        self._ids = itertools.count(1)
        self.completed = {}  # download id -> written path

    async def download(self, request: DownloadRequest, target_path=None) -> int:
        download_id = next(self._ids)
        try:
            path = await asyncio.to_thread(self._write, request, target_path)
        except DownloadFailed:
            raise
        except (OSError, ConversionError) as e:
            raise DownloadFailed(f"Download of {request.suggested_filename} failed: {e}") from e
        _logger.info("Download %d saved to %s", download_id, path)
        self.completed[download_id] = path
        return download_id

    def _resolve_target(self, request, target_path):
        if target_path:
            return target_path
        default_path = os.path.join(self.download_dir, os.path.basename(request.suggested_filename))
        if request.prompt_user_for_location and self.location_prompt is not None:
            chosen = self.location_prompt(default_path)
            if not chosen:
                raise DownloadFailed("Download canceled.")
            return chosen
        return uniquify_path(default_path)

    def _write(self, request, target_path):
        path = self._resolve_target(request, target_path)

        payload = request.source_reference
        if isinstance(payload, str):
            if self.fetcher is None:
                raise DownloadFailed("No fetcher configured for URL downloads.")
            payload = self.fetcher(payload)

        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        with open(path, 'wb') as f:
            f.write(payload)
        return path
