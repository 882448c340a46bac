"""
Watermark Compositor
Stamps the brand logo onto generated results before they are saved or shared.
Falls back to an italic text mark when the logo asset cannot be loaded.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from bitmap import Bitmap, decode, encode
from errors import AssetUnavailable, DecodeError

logger = logging.getLogger(__name__)

# Logo layout, relative to the main image width
LOGO_SCALE = 0.15
LOGO_PADDING = 0.03
LOGO_OPACITY = 0.8

# Text fallback
TEXT_SIZE_RATIO = 0.05
MIN_FONT_SIZE = 16
TEXT_COLOR = (255, 69, 0)  # orange red
TEXT_OPACITY = 0.7
DEFAULT_WATERMARK_TEXT = "Saket"

# Italic serif candidates, first match wins
FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Italic.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSerif-Italic.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSerifItalic.ttf",
    "/Library/Fonts/Times New Roman Italic.ttf",
    "/System/Library/Fonts/Supplemental/Times New Roman Italic.ttf",
    "C:/Windows/Fonts/timesi.ttf",
]


@dataclass(frozen=True)
class ColorKey:
    """Background color made transparent, with a Euclidean RGB tolerance"""
    color: Tuple[int, int, int]
    tolerance: float


# Yellow background of the brand logo. The tolerance is loose on purpose:
# compressed logos carry anti-aliased fringes around the background color.
DEFAULT_LOGO_KEY = ColorKey(color=(240, 230, 74), tolerance=100)


def remove_color_key(bitmap: Bitmap, key: ColorKey = DEFAULT_LOGO_KEY) -> Bitmap:
    """
    Make every pixel whose RGB distance to key.color is below key.tolerance
    fully transparent. Mutates bitmap in place; other pixels are unchanged.
    """
    rgb = bitmap.pixels[:, :, :3].astype(np.float64)
    distance = np.sqrt(np.sum((rgb - np.array(key.color, dtype=np.float64)) ** 2, axis=2))
    bitmap.pixels[:, :, 3][distance < key.tolerance] = 0
    return bitmap


def text_layout(width: int) -> Tuple[int, int]:
    """Font size and padding of the text watermark for an image of the given width."""
    font_size = max(MIN_FONT_SIZE, math.floor(width * TEXT_SIZE_RATIO))
    # Text padding equals the font size, unlike the 3%-of-width logo padding
    return font_size, font_size


def logo_layout(main_width: int, main_height: int, logo_width: int, logo_height: int) -> Tuple[int, int, int, int]:
    """
    Bottom-right placement of the logo as (x, y, width, height).

    The logo is scaled to 15% of the main width keeping its aspect ratio,
    with padding of 3% of the main width on both edges.
    """
    scale = (main_width * LOGO_SCALE) / logo_width
    logo_w = logo_width * scale
    logo_h = logo_height * scale

    padding = main_width * LOGO_PADDING
    x = main_width - logo_w - padding
    y = main_height - logo_h - padding
    return round(x), round(y), max(1, round(logo_w)), max(1, round(logo_h))


def load_font(size: int, font_path: Optional[str] = None) -> ImageFont.FreeTypeFont:
    """Load an italic serif font, falling back to Pillow's built-in font."""
    candidates = [font_path] if font_path else []
    for path in candidates + FONT_CANDIDATES:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    logger.warning("No italic serif font found, using Pillow default font")
    return ImageFont.load_default(size=size)


class WatermarkCompositor:
    """
    Applies the brand watermark to result images.

    Logo present -> chroma-keyed logo at 80% opacity, bottom right.
    Logo missing or corrupt -> italic text at 70% opacity, bottom right.
    A logo failure is never surfaced to the caller.
    """

    def __init__(
        self,
        logo_path: Optional[str] = None,
        text: str = DEFAULT_WATERMARK_TEXT,
        key: ColorKey = DEFAULT_LOGO_KEY,
        font_path: Optional[str] = None,
    ):
        """
        Args:
            logo_path: Path of the brand logo asset (None disables the logo)
            text: Fallback watermark text
            key: Logo background color to remove
            font_path: Optional explicit font for the text fallback
        """
        self.logo_path = Path(logo_path) if logo_path else None
        self.text = text or DEFAULT_WATERMARK_TEXT
        self.key = key
        self.font_path = font_path

    def load_logo(self) -> Bitmap:
        """
        Read and decode the logo asset.

        Raises:
            AssetUnavailable: if the asset is not configured, missing or not an image
        """
        if self.logo_path is None:
            raise AssetUnavailable("No logo configured")
        try:
            return decode(self.logo_path.read_bytes(), "image/png")
        except (OSError, DecodeError) as e:
            raise AssetUnavailable(f"Logo {self.logo_path} could not be loaded: {e}") from e

    def _load_logo_or_none(self) -> Optional[Bitmap]:
        try:
            return self.load_logo()
        except AssetUnavailable as e:
            logger.warning(f"Logo failed to load, falling back to text watermark: {e}")
            return None

    def composite_logo(self, main: Bitmap, logo: Bitmap) -> Bitmap:
        """
        Draw the chroma-keyed logo into the bottom-right corner of main, in place.

        The logo is keyed on a private copy, so the caller's logo is untouched.
        """
        keyed = remove_color_key(logo.copy(), self.key)
        x, y, logo_w, logo_h = logo_layout(main.width, main.height, logo.width, logo.height)

        scaled = keyed.to_image().resize((logo_w, logo_h), Image.Resampling.BILINEAR)
        alpha = np.asarray(scaled.getchannel("A"), dtype=np.float64) * LOGO_OPACITY
        scaled.putalpha(Image.fromarray(np.floor(alpha + 0.5).astype(np.uint8), mode="L"))

        layer = Image.new("RGBA", (main.width, main.height), (0, 0, 0, 0))
        layer.paste(scaled, (x, y))
        main.pixels[:] = np.asarray(Image.alpha_composite(main.to_image(), layer))

        logger.info(f"Logo watermark drawn at ({x}, {y}) size {logo_w}x{logo_h}")
        return main

    def composite_text(self, main: Bitmap, text: Optional[str] = None) -> Bitmap:
        """Draw the text watermark into the bottom-right corner of main, in place."""
        text = text or self.text
        font_size, padding = text_layout(main.width)
        font = load_font(font_size, self.font_path)

        # Render coverage first, then apply the color at 70% so anti-aliased
        # edges blend the same way as the glyph body
        mask = Image.new("L", (main.width, main.height), 0)
        ImageDraw.Draw(mask).text(
            (main.width - padding, main.height - padding), text, font=font, fill=255, anchor="rd"
        )
        coverage = np.asarray(mask, dtype=np.float64) * TEXT_OPACITY
        layer = Image.new("RGBA", (main.width, main.height), TEXT_COLOR + (0,))
        layer.putalpha(Image.fromarray(np.floor(coverage + 0.5).astype(np.uint8), mode="L"))
        main.pixels[:] = np.asarray(Image.alpha_composite(main.to_image(), layer))

        logger.info(f"Text watermark '{text}' drawn with font size {font_size}, padding {padding}")
        return main

    def watermark(self, main: Bitmap, logo: Optional[Bitmap] = None, text: Optional[str] = None) -> Bitmap:
        """Composite the logo if one is given, the text otherwise."""
        if logo is not None:
            return self.composite_logo(main, logo)
        return self.composite_text(main, text)

    def add_watermark(self, image_data: bytes, text: Optional[str] = None) -> bytes:
        """
        Watermark an encoded image and return it as PNG.

        Raises:
            DecodeError: if image_data is not a valid image
            EncodeError: if the result cannot be serialized
        """
        main = decode(image_data)
        logo = self._load_logo_or_none()
        return encode(self.watermark(main, logo, text), "image/png")

    async def add_watermark_async(self, image_data: bytes, text: Optional[str] = None) -> bytes:
        """
        Same as add_watermark(), decoding the main image and the logo concurrently.
        Both decodes complete before any pixel work starts.
        """
        main, logo = await asyncio.gather(
            asyncio.to_thread(decode, image_data),
            asyncio.to_thread(self._load_logo_or_none),
        )
        watermarked = await asyncio.to_thread(self.watermark, main, logo, text)
        return await asyncio.to_thread(encode, watermarked, "image/png")
