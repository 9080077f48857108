"""Geometry and raster operations (bbox scan, margin expansion, cutout, padding)."""

from __future__ import annotations

import numpy as np
from PIL import Image, ImageOps

from .image import RenderContext
from .types import Rect


def mask_channel(mask: Image.Image) -> np.ndarray:
    """Return the per-pixel mask samples as an HxW uint8 array.

    Uses the alpha band when present, otherwise the image's single
    (luminance) channel.
    """
    if "A" in mask.getbands():
        return np.asarray(mask.getchannel("A"), dtype=np.uint8)
    return np.asarray(mask.convert("L"), dtype=np.uint8)


def resize_to_fit(
    img: Image.Image, target_size: tuple[int, int], ctx: RenderContext
) -> Image.Image:
    """Scale `img` non-uniformly so that its size is exactly `target_size`."""
    return ctx.resize(img, target_size)


def alpha_bounding_box(mask: Image.Image, threshold: int = 1) -> Rect | None:
    """Compute the tightest box around mask samples strictly above `threshold`.

    The scan runs over the raster (top-left origin); the result is flipped
    into working coordinates (bottom-left origin).

    Returns:
        The enclosing rectangle, or None if no sample qualifies.
    """
    if not 0 <= threshold <= 255:
        raise ValueError(f"threshold must be in [0, 255], got {threshold}")
    arr = mask_channel(mask)
    ys, xs = np.nonzero(arr > threshold)
    if xs.size == 0:
        return None
    min_x = int(xs.min())
    min_row = int(ys.min())
    w = int(xs.max()) - min_x + 1
    h = int(ys.max()) - min_row + 1
    raster_h = int(arr.shape[0])
    return Rect(x=min_x, y=raster_h - (min_row + h), width=w, height=h)


def expand(rect: Rect, bounds: Rect, margin: int) -> Rect:
    """Grow `rect` by `margin` pixels on every side, clipped to `bounds`."""
    return rect.inset(-int(margin)).intersection(bounds)


def crop_to_rect(img: Image.Image, rect: Rect) -> Image.Image:
    """Crop `img` to a working-space rectangle."""
    return img.crop(rect.to_raster_box(img.height))


def cutout(foreground: Image.Image, mask: Image.Image) -> Image.Image:
    """Keep `foreground` where the mask is set and make everything else transparent.

    The foreground is blended over a clear background through the mask in
    premultiplied space, then un-premultiplied so partially covered edge pixels
    keep their original colour instead of darkening.
    """
    if mask.size != foreground.size:
        raise ValueError(f"mask size {mask.size} does not match image size {foreground.size}")
    fg = np.asarray(foreground.convert("RGBA"), dtype=np.float64) / 255.0
    m = mask_channel(mask).astype(np.float64) / 255.0

    alpha = fg[..., 3] * m
    premul = fg[..., :3] * alpha[..., None]

    rgb = np.zeros_like(premul)
    covered = alpha > 0
    rgb[covered] = premul[covered] / alpha[covered][:, None]

    out = np.dstack([rgb, alpha])
    return Image.fromarray(np.clip(np.rint(out * 255.0), 0, 255).astype(np.uint8))


def square_pad_and_resize(img: Image.Image, side: int, ctx: RenderContext) -> Image.Image:
    """Pad to a centred transparent square of max(w, h), then scale to (side, side)."""
    if side <= 0:
        raise ValueError(f"side must be positive, got {side}")
    w, h = img.size
    m = max(w, h)
    canvas = Image.new("RGBA", (m, m), (0, 0, 0, 0))
    canvas.paste(img.convert("RGBA"), ((m - w) // 2, (m - h) // 2))
    return ctx.resize(canvas, (side, side))


def inverted_monochrome(mask: Image.Image) -> Image.Image:
    """Invert mask samples (255 - v); colour bands are left untouched."""
    if "A" in mask.getbands():
        out = mask.copy()
        out.putalpha(ImageOps.invert(mask.getchannel("A")))
        return out
    return ImageOps.invert(mask.convert("L"))


def with_overlay_alpha(img: Image.Image, factor: float) -> Image.Image:
    """Scale the alpha band by `factor` in [0, 1], leaving colour unchanged."""
    if not 0.0 <= factor <= 1.0:
        raise ValueError(f"factor must be in [0, 1], got {factor}")
    out = img.convert("RGBA")
    a = np.asarray(out.getchannel("A"), dtype=np.float64) * factor
    out.putalpha(Image.fromarray(np.clip(np.rint(a), 0, 255).astype(np.uint8)))
    return out


def composite_at(background: Image.Image, layer: Image.Image, rect: Rect) -> Image.Image:
    """Alpha-composite `layer` over `background` with the layer placed at `rect`.

    `rect` is the layer's extent in the background's working space; parts
    falling outside the background are clipped.
    """
    base = background.convert("RGBA")
    canvas = Image.new("RGBA", base.size, (0, 0, 0, 0))
    left, top, _, _ = rect.to_raster_box(base.height)
    canvas.paste(layer.convert("RGBA"), (left, top))
    return Image.alpha_composite(base, canvas)
