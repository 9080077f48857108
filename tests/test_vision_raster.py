from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from segcrop.vision.image import RenderContext
from segcrop.vision.raster import (
    alpha_bounding_box,
    composite_at,
    crop_to_rect,
    cutout,
    expand,
    inverted_monochrome,
    resize_to_fit,
    square_pad_and_resize,
    with_overlay_alpha,
)
from segcrop.vision.types import Rect

CTX = RenderContext()


def _mask(
    w: int, h: int, region: tuple[int, int, int, int] | None = None, value: int = 255
) -> Image.Image:
    """L-mode mask; `region` is a raster (x1, y1, x2, y2) box set to `value`."""
    arr = np.zeros((h, w), dtype=np.uint8)
    if region is not None:
        x1, y1, x2, y2 = region
        arr[y1:y2, x1:x2] = value
    return Image.fromarray(arr)


def test_rect_intersection_and_raster_box() -> None:
    a = Rect(0, 0, 10, 10)
    assert a.intersection(Rect(5, 5, 10, 10)) == Rect(5, 5, 5, 5)
    assert a.intersection(Rect(20, 20, 3, 3)).is_empty()
    # bottom-left origin: a 2-row box sitting on the bottom edge of a 10-row raster
    assert Rect(1, 0, 3, 2).to_raster_box(10) == (1, 8, 4, 10)


def test_resize_to_fit_hits_target_size_exactly() -> None:
    img = Image.new("RGBA", (37, 91), (10, 20, 30, 255))
    out = resize_to_fit(img, (64, 32), CTX)
    assert out.size == (64, 32)
    assert img.size == (37, 91)


def test_alpha_bounding_box_transparent_and_opaque() -> None:
    for thr in (0, 1, 128, 254):
        assert alpha_bounding_box(_mask(10, 7), thr) is None
        assert alpha_bounding_box(_mask(10, 7, (0, 0, 10, 7)), thr) == Rect(0, 0, 10, 7)
    # strictly greater than: nothing exceeds 255
    assert alpha_bounding_box(_mask(10, 7, (0, 0, 10, 7)), 255) is None


def test_alpha_bounding_box_flips_rows_into_working_space() -> None:
    # rows 2..4, cols 3..6 on a 20x10 raster
    m = _mask(20, 10, (3, 2, 7, 5))
    bbox = alpha_bounding_box(m, 1)
    assert bbox == Rect(x=3, y=10 - (2 + 3), width=4, height=3)
    assert bbox is not None
    assert bbox.to_raster_box(10) == (3, 2, 7, 5)
    crop = crop_to_rect(m, bbox)
    assert crop.size == (4, 3)
    assert np.asarray(crop).min() == 255


def test_alpha_bounding_box_threshold_is_strict() -> None:
    arr = np.zeros((6, 6), dtype=np.uint8)
    arr[1, 1] = 1
    arr[4, 3] = 2
    bbox = alpha_bounding_box(Image.fromarray(arr), 1)
    assert bbox == Rect(x=3, y=6 - (4 + 1), width=1, height=1)


def test_alpha_bounding_box_prefers_alpha_band() -> None:
    rgba = np.zeros((8, 8, 4), dtype=np.uint8)
    rgba[..., :3] = 255
    rgba[2:4, 5:7, 3] = 200
    bbox = alpha_bounding_box(Image.fromarray(rgba), 1)
    assert bbox == Rect(x=5, y=8 - (2 + 2), width=2, height=2)


def test_expand_stays_in_bounds_and_grows_with_margin() -> None:
    bounds = Rect(0, 0, 50, 40)
    rect = Rect(10, 12, 5, 6)
    prev: Rect | None = None
    for margin in range(0, 60, 3):
        r = expand(rect, bounds, margin)
        assert bounds.contains(r)
        assert r.contains(rect)
        if prev is not None:
            assert r.contains(prev)
        prev = r
    assert expand(rect, bounds, 3) == Rect(7, 9, 11, 12)
    assert expand(rect, bounds, 100) == bounds


def test_full_mask_with_margin_clamps_to_image_extent() -> None:
    bbox = alpha_bounding_box(_mask(100, 100, (0, 0, 100, 100)), 1)
    assert bbox is not None
    assert expand(bbox, Rect.of_size((100, 100)), 8) == Rect(0, 0, 100, 100)


def test_cutout_clears_background_and_recomposites_foreground() -> None:
    rng = np.random.default_rng(0)
    fg_arr = rng.integers(0, 256, size=(12, 16, 4), dtype=np.uint8)
    fg_arr[..., 3] = 255
    m_arr = np.zeros((12, 16), dtype=np.uint8)
    m_arr[:, :6] = 255
    m_arr[:, 6] = 128

    out = np.asarray(cutout(Image.fromarray(fg_arr), Image.fromarray(m_arr)))
    assert out.shape == (12, 16, 4)

    outside = m_arr == 0
    assert (out[outside] == 0).all()

    covered = m_arr > 0
    assert (out[covered][:, 3] == m_arr[covered]).all()
    diff = np.abs(out[covered][:, :3].astype(int) - fg_arr[covered][:, :3].astype(int))
    assert diff.max() <= 1

    # Compositing back over an opaque background restores fully covered pixels.
    bg = Image.new("RGBA", (16, 12), (7, 7, 7, 255))
    back = np.asarray(Image.alpha_composite(bg, Image.fromarray(out)))
    full = m_arr == 255
    assert np.abs(back[full][:, :3].astype(int) - fg_arr[full][:, :3].astype(int)).max() <= 1


def test_cutout_unpremultiplies_partial_foreground_alpha() -> None:
    fg = Image.new("RGBA", (4, 4), (200, 100, 50, 128))
    out = np.asarray(cutout(fg, _mask(4, 4, (0, 0, 4, 4))))
    assert tuple(out[0, 0]) == (200, 100, 50, 128)


def test_cutout_rejects_mismatched_mask() -> None:
    with pytest.raises(ValueError):
        cutout(Image.new("RGBA", (4, 4)), _mask(5, 4))


def test_square_pad_and_resize_centres_content() -> None:
    img = Image.new("RGBA", (40, 20), (255, 0, 0, 255))
    out = square_pad_and_resize(img, 40, CTX)
    arr = np.asarray(out)
    assert out.size == (40, 40)
    assert arr[0, 0, 3] == 0
    assert arr[39, 20, 3] == 0
    assert tuple(arr[20, 20]) == (255, 0, 0, 255)

    assert square_pad_and_resize(Image.new("RGBA", (3, 9)), 16, CTX).size == (16, 16)
    with pytest.raises(ValueError):
        square_pad_and_resize(img, 0, CTX)


def test_inverted_monochrome_luminance_and_alpha() -> None:
    lum = Image.fromarray(np.array([[0, 10, 255]], dtype=np.uint8))
    assert np.asarray(inverted_monochrome(lum)).tolist() == [[255, 245, 0]]

    rgba = Image.new("RGBA", (2, 2), (1, 2, 3, 40))
    inv = np.asarray(inverted_monochrome(rgba))
    assert tuple(inv[0, 0]) == (1, 2, 3, 215)


def test_with_overlay_alpha_scales_alpha_only() -> None:
    img = Image.new("RGBA", (3, 3), (10, 20, 30, 200))
    out = with_overlay_alpha(img, 0.5)
    assert tuple(np.asarray(out)[1, 1]) == (10, 20, 30, 100)
    assert tuple(np.asarray(img)[1, 1]) == (10, 20, 30, 200)
    with pytest.raises(ValueError):
        with_overlay_alpha(img, 1.5)


def test_composite_at_places_layer_in_working_space() -> None:
    bg = Image.new("RGBA", (10, 8), (0, 0, 0, 255))
    layer = Image.new("RGBA", (2, 3), (255, 255, 255, 255))
    arr = np.asarray(composite_at(bg, layer, Rect(1, 0, 2, 3)))
    assert tuple(arr[7, 1]) == (255, 255, 255, 255)
    assert tuple(arr[5, 2]) == (255, 255, 255, 255)
    assert tuple(arr[4, 1]) == (0, 0, 0, 255)
    assert tuple(arr[7, 0]) == (0, 0, 0, 255)

    # Layers hanging off the top-left corner are clipped, not rejected.
    white = Image.new("RGBA", (4, 4), (255, 255, 255, 255))
    clipped = np.asarray(composite_at(bg, white, Rect(-1, 6, 4, 4)))
    assert clipped.shape == (8, 10, 4)
    assert tuple(clipped[0, 0]) == (255, 255, 255, 255)
    assert tuple(clipped[3, 3]) == (0, 0, 0, 255)
