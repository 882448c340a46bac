"""
Bitmap decode/encode boundary.
Every pipeline stage works on a Bitmap: a row-major grid of RGBA pixels
held in a (height, width, 4) uint8 numpy array.
"""

import io
import logging
from typing import Optional

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from errors import DecodeError, EncodeError

logger = logging.getLogger(__name__)

# MIME type -> Pillow format name
MIME_FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/webp": "WEBP",
}

# Formats where the quality parameter is honored
LOSSY_FORMATS = {"JPEG", "WEBP"}

DEFAULT_QUALITY = 0.95


class Bitmap:
    """
    Rectangular grid of 8-bit RGBA pixels.

    The pixel array is owned by the bitmap and mutated in place by the
    pipeline stages; use copy() when a private buffer is needed.
    """

    def __init__(self, pixels: np.ndarray):
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected (height, width, 4) RGBA array, got shape {pixels.shape}")
        self.pixels = np.ascontiguousarray(pixels, dtype=np.uint8)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @classmethod
    def new(cls, width: int, height: int, color=(0, 0, 0, 255)) -> "Bitmap":
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[:, :] = color
        return cls(pixels)

    @classmethod
    def from_image(cls, image: Image.Image) -> "Bitmap":
        return cls(np.array(image.convert("RGBA")))

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels, mode="RGBA")

    def copy(self) -> "Bitmap":
        return Bitmap(self.pixels.copy())

    def __repr__(self):
        return f"Bitmap({self.width}x{self.height})"


def encodable_mime_type(mime_type: Optional[str]) -> str:
    """
    Output type for re-encoding an upload: the input type when supported,
    JPEG when unknown, PNG for types that cannot be written (GIF, BMP).
    """
    mime_type = (mime_type or "image/jpeg").lower()
    return mime_type if mime_type in MIME_FORMATS else "image/png"


def format_for_mime(mime_type: Optional[str]) -> str:
    """Map a MIME type to a Pillow format, raising EncodeError for unsupported types."""
    fmt = MIME_FORMATS.get((mime_type or "").lower())
    if fmt is None:
        raise EncodeError(f"Unsupported output type: {mime_type}")
    return fmt


def decode(data: bytes, mime_type: Optional[str] = None) -> Bitmap:
    """
    Decode image bytes into an RGBA Bitmap.

    The container format is sniffed from the data, mime_type is only used
    for diagnostics. EXIF orientation is applied so the pixel grid matches
    what a browser would display.

    Raises:
        DecodeError: if the bytes are empty or not a readable image
    """
    if not data:
        raise DecodeError("Empty image data")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        source_format = image.format
        image = ImageOps.exif_transpose(image)
        bitmap = Bitmap.from_image(image)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as e:
        logger.warning(f"Failed to decode image ({mime_type or 'unknown type'}): {e}")
        raise DecodeError(f"Failed to load image: {e}") from e
    logger.debug(f"Decoded {bitmap} from {len(data)} bytes ({source_format})")
    return bitmap


def encode(bitmap: Bitmap, mime_type: str = "image/png", quality: float = DEFAULT_QUALITY) -> bytes:
    """
    Encode a Bitmap into PNG, JPEG or WebP bytes.

    Args:
        bitmap: Bitmap to serialize
        mime_type: Output MIME type
        quality: 0.0-1.0, honored for lossy formats only

    Raises:
        EncodeError: for unsupported types or if serialization fails
    """
    fmt = format_for_mime(mime_type)
    image = bitmap.to_image()
    options = {}
    if fmt in LOSSY_FORMATS:
        options["quality"] = max(1, min(100, int(round(quality * 100))))
    if fmt == "JPEG":
        # JPEG has no alpha channel
        image = image.convert("RGB")

    buffered = io.BytesIO()
    try:
        image.save(buffered, format=fmt, **options)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to encode {bitmap} as {mime_type}: {e}")
        raise EncodeError(f"Failed to create {mime_type} image: {e}") from e
    return buffered.getvalue()
