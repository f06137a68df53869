from dataclasses import dataclass
from enum import Enum
from io import BytesIO

from PIL import Image, ImageColor, UnidentifiedImageError

from errors import DecodeFailed, EncodeFailed
from logger import get_logger

_logger = get_logger("image")

# Quality factor on a 0-1 scale; Pillow takes it as 0-100
ENCODE_QUALITY = 0.92
OPAQUE_WHITE = (255, 255, 255, 255)


class TargetFormat(Enum):
    # extension, MIME type, Pillow format, supports alpha, lossy
    PNG = ("png", "image/png", "PNG", True, False)
    JPEG = ("jpeg", "image/jpeg", "JPEG", False, True)
    WEBP = ("webp", "image/webp", "WEBP", True, True)

    def __init__(self, extension, mime_type, pil_format, supports_alpha, lossy):
        self.extension = extension
        self.mime_type = mime_type
        self.pil_format = pil_format
        self.supports_alpha = supports_alpha
        self.lossy = lossy

    @classmethod
    def resolve(cls, selector) -> "TargetFormat":
        """Map a user-supplied format name to a member; anything unknown is PNG."""
        if isinstance(selector, cls):
            return selector
        name = str(selector or "").strip().lower()
        if name == "jpg":
            name = "jpeg"
        for member in cls:
            if member.extension == name:
                return member
        if name:
            _logger.debug("Unknown format '%s', falling back to PNG", selector)
        return cls.PNG


# What the image service returns without any conversion
NATIVE_FORMAT = TargetFormat.PNG


@dataclass(frozen=True)
class ConversionResult:
    encoded_bytes: bytes
    mime_type: str
    target_format: TargetFormat


class ImageConverter:

    @staticmethod
    def decode_image(source_data_bytes: bytes) -> Image.Image:
        """Decodes image bytes into a fully loaded PIL Image at its natural size."""
        if not source_data_bytes:
            raise DecodeFailed("No image data to decode.")
        try:
            pil_image = Image.open(BytesIO(source_data_bytes))
            pil_image.load()
        except UnidentifiedImageError as e:
            raise DecodeFailed(f"Pillow could not identify the image format: {e}") from e
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeFailed(f"Could not decode image: {e}") from e
        return pil_image

    @staticmethod
    def apply_background_to_pil(pil_image: Image.Image, background_color=OPAQUE_WHITE) -> Image.Image:
        """Composites an RGBA image over a solid background of the same size."""
        if isinstance(background_color, str):
            background_color = ImageColor.getcolor(background_color, "RGBA")
        # Solid background, original drawn on top with its own alpha
        bg_pil = Image.new("RGBA", pil_image.size, tuple(background_color[:3]) + (255,))
        return Image.alpha_composite(bg_pil, pil_image.convert("RGBA"))

    @staticmethod
    def prepare_surface(pil_image: Image.Image, target_format: TargetFormat) -> Image.Image:
        """Draws the bitmap onto a surface of its exact size, ready for encoding.

        Formats that cannot store alpha get an opaque white fill underneath so
        transparent regions come out white rather than undefined.
        """
        surface = pil_image.convert("RGBA")
        if not target_format.supports_alpha:
            surface = ImageConverter.apply_background_to_pil(surface, OPAQUE_WHITE).convert("RGB")
        return surface

    @staticmethod
    def encode_image(surface: Image.Image, target_format: TargetFormat, quality: float = ENCODE_QUALITY) -> bytes:
        save_kwargs = {}
        if target_format.lossy:
            save_kwargs["quality"] = int(round(quality * 100))

        output_bytes_io = BytesIO()
        try:
            surface.save(output_bytes_io, format=target_format.pil_format, **save_kwargs)
        except (OSError, ValueError, KeyError) as e:
            raise EncodeFailed(f"Could not encode image as {target_format.extension}: {e}") from e
        encoded = output_bytes_io.getvalue()
        if not encoded:
            raise EncodeFailed(f"Encoder produced no data for {target_format.extension}")
        return encoded

    @staticmethod
    def convert_bytes(source_data_bytes: bytes, target_format) -> ConversionResult:
        """Re-encodes image bytes into ``target_format`` without resizing."""
        target_format = TargetFormat.resolve(target_format)
        pil_image = ImageConverter.decode_image(source_data_bytes)
        surface = ImageConverter.prepare_surface(pil_image, target_format)
        encoded = ImageConverter.encode_image(surface, target_format)
        _logger.debug("Converted %dx%d image to %s (%d bytes)",
                      pil_image.width, pil_image.height, target_format.mime_type, len(encoded))
        return ConversionResult(encoded, target_format.mime_type, target_format)
