"""
Configuration for the try-on post-processing backend
"""

import os

# Generation service (opaque collaborator that renders the outfit)
# Set via environment variable:
#   export GENERATION_API_URL="http://localhost:7860"  # Same server (default)
GENERATION_API_URL = os.getenv("GENERATION_API_URL", "http://localhost:7860")
GENERATION_API_KEY = os.getenv("GENERATION_API_KEY", "")
GENERATION_TIMEOUT = int(os.getenv("GENERATION_TIMEOUT", "600"))  # 10 minutes for image generation
GENERATION_MAX_RETRIES = int(os.getenv("GENERATION_MAX_RETRIES", "2"))

# Backend URL for serving images
# Used to construct full image URLs for frontend
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8384")

# Where watermarked results are written and how many are kept around
TEMP_DIR = os.getenv("TEMP_DIR", "temp_images")
KEEP_RESULTS = int(os.getenv("KEEP_RESULTS", "10"))

# Watermark
# If the logo cannot be loaded the text watermark is used instead
LOGO_PATH = os.getenv("LOGO_PATH", "assets/logo.png")
WATERMARK_TEXT = os.getenv("WATERMARK_TEXT", "Saket")
WATERMARK_FONT_PATH = os.getenv("WATERMARK_FONT_PATH", "")  # Optional italic serif .ttf

# Color correction of fabric photos
#   always: correct every fabric upload
#   auto:   only correct when needs_color_correction() reports a cast
#   off:    pass fabric photos through untouched
COLOR_CORRECTION_MODE = os.getenv("COLOR_CORRECTION_MODE", "always").lower()
CORRECTION_QUALITY = float(os.getenv("CORRECTION_QUALITY", "0.95"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
