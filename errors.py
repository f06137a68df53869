class PlaceholderError(Exception):
    """Base class for every error raised by the placeholder tool."""


class InvalidDimension(PlaceholderError, ValueError):
    pass


class DuplicatePreset(PlaceholderError):
    # Informational only; carries the rejected preset
    def __init__(self, preset):
        super().__init__(f"{preset.w}x{preset.h} preset already exists.")
        self.preset = preset


class IndexOutOfRange(PlaceholderError, IndexError):
    def __init__(self, index, length):
        super().__init__(f"Preset index {index} out of range for {length} preset(s)")
        self.index = index
        self.length = length


class ConversionError(PlaceholderError):
    pass


class FetchFailed(ConversionError):
    def __init__(self, status_code: int | None, url: str = "", detail: str = ""):
        message = f"Fetching {url} failed"
        if status_code is not None:
            message += f" with HTTP status {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class DecodeFailed(ConversionError):
    pass


class EncodeFailed(ConversionError):
    pass


class BackendWriteFailed(PlaceholderError):
    def __init__(self, key: str, attempts: int, cause: Exception | None = None):
        super().__init__(f"Writing '{key}' failed after {attempts} attempt(s): {cause}")
        self.key = key
        self.attempts = attempts
        self.cause = cause


class DownloadFailed(PlaceholderError):
    pass
