import io

import numpy as np
import pytest
from PIL import Image

from bitmap import Bitmap


def solid(width, height, color):
    """Uniform bitmap; color is RGB or RGBA"""
    if len(color) == 3:
        color = tuple(color) + (255,)
    return Bitmap.new(width, height, color)


def to_png(bitmap):
    buffered = io.BytesIO()
    bitmap.to_image().save(buffered, format="PNG")
    return buffered.getvalue()


def to_jpeg(bitmap, quality=95):
    buffered = io.BytesIO()
    bitmap.to_image().convert("RGB").save(buffered, format="JPEG", quality=quality)
    return buffered.getvalue()


@pytest.fixture
def warm_fabric():
    """Fabric under warm light: strong red, weak blue, with some texture"""
    rng = np.random.default_rng(7)
    pixels = np.empty((64, 64, 4), dtype=np.uint8)
    pixels[:, :, 0] = rng.integers(180, 230, size=(64, 64))
    pixels[:, :, 1] = rng.integers(110, 150, size=(64, 64))
    pixels[:, :, 2] = rng.integers(60, 90, size=(64, 64))
    pixels[:, :, 3] = 255
    return Bitmap(pixels)


@pytest.fixture
def yellow_logo():
    """20x20 logo: key-yellow background with a black 10x10 mark in the middle"""
    logo = solid(20, 20, (240, 230, 74))
    logo.pixels[5:15, 5:15] = (0, 0, 0, 255)
    return logo


@pytest.fixture
def logo_file(tmp_path, yellow_logo):
    path = tmp_path / "logo.png"
    Image.fromarray(yellow_logo.pixels, mode="RGBA").save(path)
    return path


def to_gif(bitmap):
    buffered = io.BytesIO()
    bitmap.to_image().convert("RGB").save(buffered, format="GIF")
    return buffered.getvalue()


@pytest.fixture(scope="session")
def oversized_png():
    """1-bit PNG whose 200M pixels exceed Pillow's decompression bomb limit"""
    buffered = io.BytesIO()
    Image.new("1", (20000, 10000)).save(buffered, format="PNG")
    return buffered.getvalue()
