"""
Shades of Gray Color Correction
Removes the global color cast (e.g. warm indoor lighting) from fabric photos
before they are used as a style reference for generation.

Based on "Shades of Gray and Colour Constancy" (Finlayson & Trezzi): the scene
illuminant is estimated with a Minkowski p-norm over each channel and every
channel is scaled so the estimate maps to neutral gray.
"""

import logging
from typing import NamedTuple, Optional

import numpy as np
from PIL import Image

from bitmap import Bitmap, decode, encode, encodable_mime_type, DEFAULT_QUALITY

logger = logging.getLogger(__name__)

# p=6 sits between gray world (p=1, undercorrects) and white patch (p=inf,
# dominated by specular highlights)
SHADES_OF_GRAY_NORM = 6

# Channel gains are clamped to this range so legitimately monochrome fabrics
# (red silk, indigo denim) are never pushed to an obviously wrong color
MIN_CORRECTION = 0.6
MAX_CORRECTION = 1.5

# Channels whose estimate is this dark are left alone (gain 1.0)
MIN_ILLUMINANT = 0.01

# needs_color_correction() analyses a downscaled sample of this size
SAMPLE_SIZE = 100
# Relative deviation of a channel mean from the overall mean that counts as a cast
CAST_THRESHOLD = 0.15


class IlluminantEstimate(NamedTuple):
    """Estimated illuminant color, one value per channel in [0, 1]"""
    r: float
    g: float
    b: float


class GainVector(NamedTuple):
    """Per-channel scale factors, each in [MIN_CORRECTION, MAX_CORRECTION]"""
    r: float
    g: float
    b: float


class ColorCorrector:
    """
    Stateless Shades of Gray corrector.

    Every call works only on the bitmap it is given, so one instance can be
    shared between concurrent requests.
    """

    def __init__(self, quality: float = DEFAULT_QUALITY):
        """
        Args:
            quality: Encoder quality (0.0-1.0) used by correct_image() for lossy output
        """
        self.quality = quality

    def estimate_illuminant(self, bitmap: Bitmap, p: int = SHADES_OF_GRAY_NORM) -> IlluminantEstimate:
        """
        Estimate the scene illuminant with the Minkowski p-norm of each channel.

        Each channel value is normalized to [0, 1], raised to p, averaged over
        all pixels and the p-th root of the average is taken.
        """
        rgb = bitmap.pixels[:, :, :3].reshape(-1, 3)
        if rgb.shape[0] == 0:
            return IlluminantEstimate(0.0, 0.0, 0.0)

        normalized = rgb.astype(np.float64) / 255.0
        norms = np.power(np.mean(np.power(normalized, p), axis=0), 1.0 / p)
        return IlluminantEstimate(float(norms[0]), float(norms[1]), float(norms[2]))

    def derive_gains(self, estimate: IlluminantEstimate) -> GainVector:
        """
        Derive per-channel gains mapping the illuminant onto neutral gray.

        Near-black channels (estimate <= 0.01) keep a gain of 1.0 and every
        gain is clamped to [0.6, 1.5].
        """
        gray_target = (estimate.r + estimate.g + estimate.b) / 3

        gains = []
        for channel in estimate:
            raw_gain = gray_target / channel if channel > MIN_ILLUMINANT else 1.0
            gains.append(max(MIN_CORRECTION, min(MAX_CORRECTION, raw_gain)))
        return GainVector(*gains)

    def apply(self, bitmap: Bitmap, gains: GainVector) -> Bitmap:
        """
        Scale R, G and B of every pixel by its gain, in place.

        Results are rounded half up and clamped to [0, 255]; alpha is never touched.
        Returns the same bitmap for chaining.
        """
        scaled = bitmap.pixels[:, :, :3].astype(np.float64) * np.array(gains, dtype=np.float64)
        bitmap.pixels[:, :, :3] = np.clip(np.floor(scaled + 0.5), 0, 255).astype(np.uint8)
        return bitmap

    def correct(self, bitmap: Bitmap) -> Bitmap:
        """Estimate, derive gains and apply them to bitmap in place."""
        estimate = self.estimate_illuminant(bitmap)
        gains = self.derive_gains(estimate)
        logger.info(
            f"Illuminant estimate: R={estimate.r:.3f} G={estimate.g:.3f} B={estimate.b:.3f} -> "
            f"gains R={gains.r:.3f} G={gains.g:.3f} B={gains.b:.3f}"
        )
        return self.apply(bitmap, gains)

    def correct_image(self, image_data: bytes, mime_type: Optional[str] = None) -> bytes:
        """
        Color correct an encoded image.

        The output keeps the input MIME type (JPEG when unknown, PNG when the
        input type cannot be written) and is encoded with self.quality.

        Raises:
            DecodeError: if image_data is not a valid image
            EncodeError: if the corrected bitmap cannot be serialized
        """
        bitmap = decode(image_data, mime_type)
        self.correct(bitmap)
        return encode(bitmap, encodable_mime_type(mime_type), self.quality)

    def needs_color_correction(self, bitmap: Bitmap) -> bool:
        """
        Cheap cast check on a 100x100 downscaled sample.

        Uses plain channel means, not the p-norm estimator: returns True when
        any channel mean deviates from the overall mean by more than 15% of it.
        """
        sample = bitmap.to_image().resize((SAMPLE_SIZE, SAMPLE_SIZE), Image.Resampling.BILINEAR)
        rgb = np.asarray(sample, dtype=np.float64)[:, :, :3].reshape(-1, 3)
        means = rgb.mean(axis=0)

        overall_avg = float(means.mean())
        threshold = overall_avg * CAST_THRESHOLD
        has_cast = bool(np.any(np.abs(means - overall_avg) > threshold))

        logger.info(
            f"Color cast check: means R={means[0]:.1f} G={means[1]:.1f} B={means[2]:.1f}, "
            f"threshold {threshold:.1f} -> {'cast detected' if has_cast else 'neutral'}"
        )
        return has_cast
