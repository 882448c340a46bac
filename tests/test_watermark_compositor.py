"""
Watermark compositing tests
"""

import asyncio

import numpy as np
import pytest

from bitmap import decode
from errors import AssetUnavailable, DecodeError
from watermark_compositor import (
    ColorKey, DEFAULT_LOGO_KEY, WatermarkCompositor, logo_layout, remove_color_key, text_layout,
)
from conftest import solid, to_png


def changed_region(before, after):
    ys, xs = np.nonzero(np.any(before.pixels != after.pixels, axis=2))
    return ys, xs


def test_remove_color_key_uses_strict_euclidean_distance():
    bitmap = solid(4, 1, (0, 0, 0))
    bitmap.pixels[0, 0] = (240, 230, 74, 255)   # the key itself
    bitmap.pixels[0, 1] = (200, 200, 100, 255)  # distance ~56
    bitmap.pixels[0, 2] = (140, 230, 74, 255)   # distance exactly 100
    bitmap.pixels[0, 3] = (20, 20, 200, 255)    # far away

    remove_color_key(bitmap, DEFAULT_LOGO_KEY)

    assert list(bitmap.pixels[0, :, 3]) == [0, 0, 255, 255]
    # RGB is never touched
    assert tuple(bitmap.pixels[0, 1, :3]) == (200, 200, 100)


def test_remove_color_key_is_idempotent(yellow_logo):
    once = remove_color_key(yellow_logo.copy())
    twice = remove_color_key(remove_color_key(yellow_logo.copy()))
    assert np.array_equal(once.pixels, twice.pixels)


def test_remove_color_key_custom_key():
    bitmap = solid(2, 2, (0, 255, 0))
    remove_color_key(bitmap, ColorKey(color=(0, 250, 0), tolerance=10))
    assert np.all(bitmap.pixels[:, :, 3] == 0)


def test_logo_layout_square_logo():
    assert logo_layout(1000, 1000, 20, 20) == (820, 820, 150, 150)


def test_logo_layout_keeps_aspect_ratio():
    assert logo_layout(1000, 800, 40, 20) == (820, 695, 150, 75)


def test_text_layout():
    assert text_layout(1000) == (50, 50)
    assert text_layout(200) == (16, 16)
    assert text_layout(339) == (16, 16)
    assert text_layout(341) == (17, 17)


def test_composite_logo_places_keyed_logo_bottom_right(yellow_logo):
    main = solid(1000, 1000, (255, 255, 255))
    before = main.copy()
    compositor = WatermarkCompositor()

    result = compositor.composite_logo(main, yellow_logo)

    assert result is main
    assert (main.width, main.height) == (1000, 1000)
    # Nothing outside the logo window changes
    ys, xs = changed_region(before, main)
    assert ys.min() >= 820 and xs.min() >= 820
    assert ys.max() < 970 and xs.max() < 970
    # Yellow background is keyed out, the main image shows through
    assert np.all(main.pixels[822:850, 822:850] == 255)
    # Black mark drawn at 80%: 0.8 * 0 + 0.2 * 255
    mark = main.pixels[865:925, 865:925, :3].astype(int)
    assert np.all(np.abs(mark - 51) <= 2)
    assert np.all(main.pixels[:, :, 3] == 255)


def test_composite_logo_leaves_callers_logo_untouched(yellow_logo):
    original = yellow_logo.pixels.copy()
    WatermarkCompositor().composite_logo(solid(200, 200, (0, 0, 0)), yellow_logo)
    assert np.array_equal(yellow_logo.pixels, original)


def test_composite_text_bottom_right():
    main = solid(1000, 1000, (255, 255, 255))
    before = main.copy()

    WatermarkCompositor(text="Saket").composite_text(main)

    assert (main.width, main.height) == (1000, 1000)
    ys, xs = changed_region(before, main)
    assert len(ys) > 0
    # Anchored at (950, 950) with padding equal to the 50px font size
    assert ys.max() <= 951
    assert ys.min() > 850
    assert xs.min() > 500
    assert xs.max() <= 950 + 25
    # Translucent orange over white: green drops, red stays saturated
    assert main.pixels[ys, xs, 1].min() < 200
    assert main.pixels[ys, xs, 0].min() >= 250


def test_composite_text_uses_minimum_font_size():
    main = solid(120, 120, (255, 255, 255))
    before = main.copy()
    WatermarkCompositor().composite_text(main, "S")
    ys, xs = changed_region(before, main)
    assert len(ys) > 0
    assert ys.max() <= 120 - 16 + 1


def test_load_logo_missing_raises(tmp_path):
    with pytest.raises(AssetUnavailable):
        WatermarkCompositor(logo_path=str(tmp_path / "missing.png")).load_logo()


def test_load_logo_not_configured():
    with pytest.raises(AssetUnavailable):
        WatermarkCompositor(logo_path=None).load_logo()


def test_add_watermark_with_logo(logo_file):
    compositor = WatermarkCompositor(logo_path=str(logo_file))
    result = decode(compositor.add_watermark(to_png(solid(1000, 1000, (255, 255, 255)))))

    assert (result.width, result.height) == (1000, 1000)
    assert abs(int(result.pixels[890, 890, 0]) - 51) <= 2
    assert np.all(result.pixels[830, 830] == 255)


def test_add_watermark_falls_back_to_text_when_logo_missing(tmp_path):
    compositor = WatermarkCompositor(logo_path=str(tmp_path / "missing.png"))
    result = decode(compositor.add_watermark(to_png(solid(400, 300, (255, 255, 255)))))

    assert (result.width, result.height) == (400, 300)
    assert np.any(result.pixels[:, :, :3] != 255)


def test_add_watermark_falls_back_to_text_when_logo_corrupt(tmp_path):
    corrupt = tmp_path / "logo.png"
    corrupt.write_bytes(b"\x89PNG but not really")
    compositor = WatermarkCompositor(logo_path=str(corrupt))

    result = decode(compositor.add_watermark(to_png(solid(400, 300, (255, 255, 255)))))
    # Orange text, not a logo
    assert np.any(result.pixels[:, :, 1] < result.pixels[:, :, 0])


def test_add_watermark_rejects_undecodable_main(logo_file):
    with pytest.raises(DecodeError):
        WatermarkCompositor(logo_path=str(logo_file)).add_watermark(b"garbage")


def test_add_watermark_async_matches_sync(logo_file):
    compositor = WatermarkCompositor(logo_path=str(logo_file))
    main = to_png(solid(500, 400, (30, 60, 90)))

    sync_result = decode(compositor.add_watermark(main))
    async_result = decode(asyncio.run(compositor.add_watermark_async(main)))

    assert np.array_equal(sync_result.pixels, async_result.pixels)


def test_add_watermark_async_rejects_undecodable_main(tmp_path):
    compositor = WatermarkCompositor(logo_path=str(tmp_path / "missing.png"))
    with pytest.raises(DecodeError):
        asyncio.run(compositor.add_watermark_async(b""))
