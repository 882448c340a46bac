"""
Image Processor for Virtual Try-On
Drives the post-processing pipeline around the generation service:
fabric photo -> color correction -> generation -> watermark -> saved result.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from color_corrector import ColorCorrector
from watermark_compositor import WatermarkCompositor
from generation_client import GenerationClient, GenerationError, ImagePart
from bitmap import decode, encodable_mime_type
from errors import DecodeError, ImagePipelineError
from config import (
    BACKEND_URL, COLOR_CORRECTION_MODE, CORRECTION_QUALITY, KEEP_RESULTS,
    LOGO_PATH, TEMP_DIR, WATERMARK_FONT_PATH, WATERMARK_TEXT,
)

logger = logging.getLogger(__name__)

CORRECTION_MODES = ("always", "auto", "off")


class ImageProcessor:
    """
    Pipeline driver for virtual try-on.

    Workflow:
    1. Color correct the fabric photo (best effort, original kept on failure)
    2. Send customer + fabric + optional references to the generation service
    3. Watermark the generated result (logo, or text if the logo is unavailable)
    4. Save the PNG and return its download URL
    """

    def __init__(
        self,
        generation_client: GenerationClient,
        corrector: Optional[ColorCorrector] = None,
        compositor: Optional[WatermarkCompositor] = None,
        correction_mode: str = COLOR_CORRECTION_MODE,
        temp_dir: str = TEMP_DIR,
        backend_url: str = BACKEND_URL,
    ):
        """
        Args:
            generation_client: Client for the generation service
            corrector: Fabric color corrector (default: quality from config)
            compositor: Watermark compositor (default: logo/text from config)
            correction_mode: "always", "auto" (gated by the cast heuristic) or "off"
            temp_dir: Directory where watermarked results are written
            backend_url: Public URL prefix for download links
        """
        if correction_mode not in CORRECTION_MODES:
            raise ValueError(f"Unknown color correction mode: {correction_mode}")

        self.generation_client = generation_client
        self.corrector = corrector or ColorCorrector(quality=CORRECTION_QUALITY)
        self.compositor = compositor or WatermarkCompositor(
            logo_path=LOGO_PATH, text=WATERMARK_TEXT, font_path=WATERMARK_FONT_PATH or None
        )
        self.correction_mode = correction_mode
        self.temp_dir = Path(temp_dir)
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.backend_url = backend_url.rstrip("/")

        logger.info(f"ImageProcessor initialized (color correction: {self.correction_mode})")

    def needs_color_correction(self, image_data: bytes, mime_type: Optional[str] = None) -> bool:
        """Cast heuristic on encoded bytes; undecodable input reports no cast."""
        try:
            bitmap = decode(image_data, mime_type)
        except DecodeError as e:
            logger.warning(f"Could not analyse fabric image: {e}")
            return False
        return self.corrector.needs_color_correction(bitmap)

    def prepare_fabric(
        self,
        image_data: bytes,
        mime_type: Optional[str] = None,
        has_cast: Optional[bool] = None,
    ) -> bytes:
        """
        Color correct a fabric photo according to the correction mode.

        Correction is an enhancement only: any decode/encode failure returns
        the original bytes unchanged. In auto mode a heuristic verdict the
        caller already has can be passed as has_cast.
        """
        if self.correction_mode == "off":
            return image_data
        if self.correction_mode == "auto":
            if has_cast is None:
                has_cast = self.needs_color_correction(image_data, mime_type)
            if not has_cast:
                logger.info("No color cast detected, fabric used as uploaded")
                return image_data

        try:
            corrected = self.corrector.correct_image(image_data, mime_type)
        except ImagePipelineError as e:
            logger.warning(f"Color correction failed, using original: {e}")
            return image_data

        logger.info(f"✅ Fabric color corrected ({len(image_data)} -> {len(corrected)} bytes)")
        return corrected

    def prepare_fabric_part(self, fabric: ImagePart, has_cast: Optional[bool] = None) -> ImagePart:
        """prepare_fabric() on an ImagePart, labelling the result with the type it was written as."""
        corrected = self.prepare_fabric(fabric.data, fabric.mime_type, has_cast)
        if corrected is fabric.data:
            mime_type = fabric.mime_type or "image/jpeg"
        else:
            mime_type = encodable_mime_type(fabric.mime_type)
        return ImagePart(data=corrected, mime_type=mime_type, role="fabric")

    async def process_tryon(
        self,
        customer: ImagePart,
        fabric: ImagePart,
        instruction: str,
        references: Optional[List[ImagePart]] = None,
    ) -> Dict:
        """
        Main processing function: correct fabric, generate, watermark, save.

        Returns:
            Dictionary with success status and image URL, annotation text and
            recommendations, or an error message
        """
        try:
            fabric = await asyncio.to_thread(self.prepare_fabric_part, fabric)

            generated = await self.generation_client.generate(customer, fabric, instruction, references)
            watermarked = await self.compositor.add_watermark_async(generated.image)

            filename = self.save_result(watermarked)
            logger.info(f"Image processed successfully: {filename}")

            return {
                "success": True,
                "image_url": f"{self.backend_url}/download/{filename}",
                "filename": filename,
                "text": generated.text,
                "recommendations": generated.recommendations,
            }

        except (GenerationError, ImagePipelineError) as e:
            error_msg = str(e)
            logger.error(f"❌ Error processing image: {error_msg}")
            logger.error(f"Error type: {type(e).__name__}")

            # Provide more helpful error messages
            if "timeout" in error_msg.lower() or "timed out" in error_msg.lower():
                error_msg = "Image generation timed out. The service may be overloaded. Please try again."
            elif "connect" in error_msg.lower():
                error_msg = "Cannot connect to image generation service. Please check if the server is running."
            elif "no images" in error_msg.lower():
                error_msg = "Generation service did not return an image. The generation may have failed."

            return {
                "success": False,
                "error": error_msg,
            }

    def save_result(self, image_data: bytes) -> str:
        """Write a watermarked PNG to the temp directory and return its filename."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"generated_{timestamp}_{uuid.uuid4().hex[:8]}.png"
        (self.temp_dir / filename).write_bytes(image_data)
        self.cleanup_old_files(KEEP_RESULTS)
        return filename

    def cleanup_old_files(self, keep_count: int = 10):
        """
        Clean up old generated images to save disk space.
        Keeps only the most recent files.

        Args:
            keep_count: Number of recent files to keep
        """
        try:
            files = sorted(
                self.temp_dir.glob("generated_*.png"),
                key=lambda x: x.stat().st_mtime,
                reverse=True
            )

            # Delete files beyond keep_count
            for file in files[keep_count:]:
                file.unlink()
                logger.info(f"Deleted old file: {file.name}")
        except OSError as e:
            logger.warning(f"Error cleaning up files: {e}")
