"""Segmenter protocol and the linear mask -> crop transform plan."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Protocol

import numpy as np
from PIL import Image

from segcrop.vision.image import RenderContext
from segcrop.vision.raster import (
    alpha_bounding_box,
    crop_to_rect,
    cutout,
    expand,
    inverted_monochrome,
    square_pad_and_resize,
)
from segcrop.vision.types import PointPrompt, Rect

LOG = logging.getLogger(__name__)


class SupportsPointSegmenter(Protocol):
    """Protocol for a SAM-like point-prompt segmenter."""

    @property
    def input_size(self) -> tuple[int, int]:
        """Fixed (width, height) the image encoder consumes."""
        ...

    def encode_image(self, pixel_buffer: np.ndarray) -> None:
        """Encode an `input_size` RGB buffer."""
        ...

    def encode_prompts(self, points: Sequence[PointPrompt], image_size: tuple[int, int]) -> None:
        """Encode point prompts given in original image space."""
        ...

    def fetch_mask(self, image_size: tuple[int, int]) -> Image.Image | None:
        """Return a mask aligned to `image_size`, or None."""
        ...


@dataclass(frozen=True)
class CutoutState:
    """Image flowing through the transform plan.

    Attributes:
        source: Original RGBA image.
        mask: Current mask (after optional inversion).
        image: Current output image.
        extent: Working-space rectangle `image` occupies relative to `source`.
        bbox: Expanded crop box, when cropping happened.
    """

    source: Image.Image
    mask: Image.Image
    image: Image.Image
    extent: Rect
    bbox: Rect | None = None


Step = Callable[[CutoutState], CutoutState]


def invert_step(state: CutoutState) -> CutoutState:
    return replace(state, mask=inverted_monochrome(state.mask))


def cutout_step(state: CutoutState) -> CutoutState:
    return replace(state, image=cutout(state.source, state.mask))


def crop_step(*, threshold: int, margin: int) -> Step:
    """Crop to the mask's bounding box grown by `margin`.

    A mask with no sample above `threshold` leaves the image uncropped and
    records no bbox.
    """

    def _crop(state: CutoutState) -> CutoutState:
        bbox = alpha_bounding_box(state.mask, threshold)
        if bbox is None:
            LOG.warning("Mask has no pixel above threshold %s; keeping uncropped cutout", threshold)
            return state
        expanded = expand(bbox, Rect.of_size(state.source.size), margin)
        return replace(
            state,
            image=crop_to_rect(state.image, expanded),
            extent=expanded,
            bbox=expanded,
        )

    return _crop


def square_step(*, side: int, ctx: RenderContext) -> Step:
    """Pad to a square and resize to (side, side); the result sits at the origin."""

    def _square(state: CutoutState) -> CutoutState:
        return replace(
            state,
            image=square_pad_and_resize(state.image, side, ctx),
            extent=Rect(0, 0, side, side),
        )

    return _square


def plan_steps(
    *,
    invert_mask: bool,
    crop: bool,
    alpha_threshold: int,
    bbox_margin: int,
    size: int | None,
    ctx: RenderContext,
) -> list[Step]:
    """Select the transforms for a run, in their fixed order."""
    steps: list[Step] = []
    if invert_mask:
        steps.append(invert_step)
    steps.append(cutout_step)
    if crop:
        steps.append(crop_step(threshold=alpha_threshold, margin=bbox_margin))
    if size is not None and size > 0:
        steps.append(square_step(side=size, ctx=ctx))
    return steps


def run_steps(source: Image.Image, mask: Image.Image, steps: Sequence[Step]) -> CutoutState:
    """Apply `steps` in order starting from the untouched source and mask."""
    state = CutoutState(source=source, mask=mask, image=source, extent=Rect.of_size(source.size))
    for step in steps:
        state = step(state)
    return state
