"""Image I/O and the shared rendering context."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from segcrop.errors import InputImageError, OutputIOError


@dataclass(frozen=True, slots=True)
class RenderContext:
    """Stateless rendering settings shared by every raster conversion and PNG write.

    Built once at startup and passed explicitly; nothing here is global.

    Attributes:
        resample: Pillow resampling filter for every resize.
        png_compress_level: zlib level (0-9) used when writing PNG files.
    """

    resample: Image.Resampling = Image.Resampling.BILINEAR
    png_compress_level: int = 6

    def resize(self, img: Image.Image, size: tuple[int, int]) -> Image.Image:
        """Resize `img` to exactly `size` with the context filter."""
        return img.resize((int(size[0]), int(size[1])), resample=self.resample)

    def to_pixel_buffer(self, img: Image.Image) -> np.ndarray:
        """Render `img` as a contiguous HxWx3 uint8 RGB buffer."""
        return np.ascontiguousarray(np.array(img.convert("RGB"), dtype=np.uint8))

    def write_png(self, img: Image.Image, path: Path) -> None:
        """Encode `img` as PNG at `path`.

        Raises:
            OutputIOError: If the file cannot be written.
        """
        try:
            img.save(path, format="PNG", compress_level=self.png_compress_level)
        except OSError as e:
            raise OutputIOError(f"Failed to write PNG {path}: {e}") from e


def ensure_dir(p: Path) -> None:
    """Create `p` (and parents) if it doesn't exist.

    Raises:
        OutputIOError: If the directory cannot be created.
    """
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputIOError(f"Failed to create directory {p}: {e}") from e


def read_image(path: Path) -> Image.Image:
    """Read an image from disk and convert it to RGBA.

    Raises:
        InputImageError: If the file is missing or not a decodable image.
    """
    try:
        with Image.open(path) as im:
            return im.convert("RGBA")
    except (OSError, UnidentifiedImageError) as e:
        raise InputImageError(f"Failed to load input image {path}: {e}") from e
