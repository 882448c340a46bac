"""
Main FastAPI application for Virtual Clothing Try-On
This backend color corrects fabric photos, forwards try-on requests to the
generation service and watermarks the generated images before download.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response

from image_processor import ImageProcessor
from generation_client import GenerationClient, ImagePart
from errors import DecodeError, EncodeError
from config import (
    GENERATION_API_URL, GENERATION_API_KEY, GENERATION_TIMEOUT,
    GENERATION_MAX_RETRIES, LOG_LEVEL,
)

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

# Global image processor instance
image_processor: Optional[ImageProcessor] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager: Initialize the pipeline on startup.
    """
    global image_processor

    logger.info("=" * 60)
    logger.info("Initializing Virtual Try-On Backend...")
    logger.info(f"Generation API URL: {GENERATION_API_URL}")
    client = GenerationClient(
        GENERATION_API_URL,
        api_key=GENERATION_API_KEY,
        timeout=GENERATION_TIMEOUT,
        max_retries=GENERATION_MAX_RETRIES,
    )
    image_processor = ImageProcessor(client)
    logger.info("✅ Backend initialized successfully!")
    logger.info("=" * 60)

    yield  # Application runs here

    logger.info("Shutting down backend...")


app = FastAPI(
    title="Virtual Clothing Try-On API",
    description="Fabric color correction, outfit generation and watermarked export",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS to allow frontend to connect
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",   # Vite dev server
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def _get_processor() -> ImageProcessor:
    if image_processor is None:
        raise HTTPException(status_code=503, detail="Image processor not initialized")
    return image_processor


async def _read_image(file: UploadFile) -> ImagePart:
    """Validate an upload and return it as an ImagePart."""
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail=f"{file.filename or 'Upload'} must be an image")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"{file.filename or 'Upload'} is empty")
    return ImagePart(data=data, mime_type=file.content_type)


@app.get("/")
async def root():
    """Root endpoint - health check"""
    return {
        "message": "Virtual Clothing Try-On API",
        "status": "running",
        "generation_url": GENERATION_API_URL,
        "processor_ready": image_processor is not None
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint.
    Frontend can call this to check if backend is ready.
    """
    return {
        "status": "healthy",
        "processor_ready": image_processor is not None,
        "color_correction": image_processor.correction_mode if image_processor else None,
    }


@app.post("/correct-fabric")
async def correct_fabric(file: UploadFile = File(..., description="Fabric photo to color correct")):
    """
    Color correct a fabric photo.

    Correction is best effort: if it fails the uploaded bytes are returned as is.
    The response header X-Color-Cast reports the heuristic's verdict.
    """
    processor = _get_processor()
    fabric = await _read_image(file)

    has_cast = await asyncio.to_thread(processor.needs_color_correction, fabric.data, fabric.mime_type)
    corrected = await asyncio.to_thread(processor.prepare_fabric_part, fabric, has_cast)
    return Response(
        content=corrected.data,
        media_type=corrected.mime_type,
        headers={"X-Color-Cast": "true" if has_cast else "false"},
    )


@app.post("/watermark")
async def watermark_image(
    file: UploadFile = File(..., description="Image to watermark"),
    text: Optional[str] = Form(None, description="Fallback watermark text"),
):
    """Watermark an image and return it as PNG."""
    processor = _get_processor()
    image = await _read_image(file)
    try:
        watermarked = await processor.compositor.add_watermark_async(image.data, text)
    except DecodeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EncodeError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return Response(content=watermarked, media_type="image/png")


@app.post("/generate")
async def generate_tryon(
    customer: UploadFile = File(..., description="Customer photo"),
    fabric: UploadFile = File(..., description="Fabric or garment photo"),
    instruction: str = Form(..., description="Styling instruction for the generation service"),
    references: Optional[List[UploadFile]] = File(None, description="Optional shirt / style reference images"),
):
    """
    Main endpoint for generating virtual try-on images.

    Process Flow:
    1. Fabric photo is color corrected (best effort)
    2. Customer, fabric and reference images are sent to the generation service
    3. The generated image is watermarked and saved
    4. Download URL and styling recommendations are returned
    """
    processor = _get_processor()
    customer_part = await _read_image(customer)
    fabric_part = await _read_image(fabric)
    reference_parts = [await _read_image(ref) for ref in references or []]

    result = await processor.process_tryon(customer_part, fabric_part, instruction, reference_parts)
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result.get("error", "Processing failed"))

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "image_url": result["image_url"],
            "text": result["text"],
            "recommendations": result["recommendations"],
            "message": "Image generated successfully"
        }
    )


@app.get("/download/{filename}")
async def download_image(filename: str):
    """
    Endpoint to download generated images.
    Results are always watermarked PNGs.
    """
    processor = _get_processor()
    file_path = processor.temp_dir / Path(filename).name
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="Image not found")

    return FileResponse(
        path=str(file_path),
        media_type="image/png",
        filename=file_path.name,
        headers={
            "Cache-Control": "public, max-age=3600",  # Cache for 1 hour
            "Accept-Ranges": "bytes",
        }
    )


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",  # Accept connections from any IP (required for remote access)
        port=8384,
        reload=False
    )
