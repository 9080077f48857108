"""Orchestrator for the point prompts → SAM2 mask → dataset record pipeline."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter

from PIL import Image

from segcrop.dataset.naming import OutputPaths, output_stem, validate_label
from segcrop.dataset.records import SegmentRecord
from segcrop.errors import NoMaskError, OutputIOError, ValidationError
from segcrop.pipelines.steps import (
    CutoutState,
    SupportsPointSegmenter,
    plan_steps,
    run_steps,
)
from segcrop.vision.image import RenderContext, ensure_dir, read_image
from segcrop.vision.raster import composite_at, resize_to_fit, with_overlay_alpha
from segcrop.vision.types import PointCategory, PointPrompt, Rect, build_prompts

LOG = logging.getLogger(__name__)

ModelLoader = Callable[[Path | None, str], SupportsPointSegmenter]


@dataclass
class SegmentConfig:
    """Configuration for a single `segment` run."""

    image_path: Path
    points: list[tuple[float, float]]
    types: list[PointCategory]
    label: str
    caption: str

    out_dir: Path = Path("dataset/prepared")
    write_mask: bool = True
    crop: bool = True
    bbox_margin: int = 8
    size: int | None = None
    overlay_out: Path | None = None
    overlay_alpha: float = 0.6
    alpha_threshold: int = 1
    invert_mask: bool = False

    models_dir: Path | None = None
    device: str = "auto"


@dataclass
class OneShotConfig:
    """Configuration for the legacy overlay-only run."""

    image_path: Path
    points: list[tuple[float, float]]
    types: list[PointCategory]
    output: Path
    mask_out: Path | None = None
    overlay_alpha: float = 0.6
    models_dir: Path | None = None
    device: str = "auto"


@dataclass(frozen=True)
class SegmentResult:
    """Files and metadata produced by a `segment` run."""

    paths: OutputPaths
    record: SegmentRecord
    wrote_mask: bool
    extent: Rect
    overlay: Path | None = None


def _default_model_loader(models_dir: Path | None, device: str) -> SupportsPointSegmenter:
    # local import to keep module import lightweight (pulls torch + sam2)
    from segcrop.detectors.sam2 import load_model

    return load_model(models_dir, device)


def _validate(cfg: SegmentConfig) -> list[PointPrompt]:
    prompts = build_prompts(list(cfg.points), list(cfg.types))
    validate_label(cfg.label)
    if not 0 <= cfg.alpha_threshold <= 255:
        raise ValidationError(f"alpha threshold must be in [0, 255], got {cfg.alpha_threshold}")
    if cfg.bbox_margin < 0:
        raise ValidationError(f"bbox margin must be >= 0, got {cfg.bbox_margin}")
    return prompts


def segment_mask(
    model: SupportsPointSegmenter,
    page: Image.Image,
    prompts: list[PointPrompt],
    ctx: RenderContext,
) -> Image.Image:
    """Encode `page` and `prompts`, then fetch a mask aligned to `page`.

    Raises:
        EncodingError: If the model rejects the image or prompts.
        NoMaskError: If no mask is produced or it does not match `page`.
    """
    t0 = perf_counter()
    buf = ctx.to_pixel_buffer(resize_to_fit(page, model.input_size, ctx))
    model.encode_image(buf)
    LOG.info(
        "Step 2/5 encode image: input=%sx%s took=%.2fs",
        model.input_size[0],
        model.input_size[1],
        perf_counter() - t0,
    )

    t1 = perf_counter()
    model.encode_prompts(prompts, page.size)
    mask = model.fetch_mask(page.size)
    if mask is None:
        raise NoMaskError("No mask produced.")
    if mask.size != page.size:
        raise NoMaskError(f"Mask size {mask.size} does not match image size {page.size}.")
    LOG.info(
        "Step 3/5 prompts+mask: points=%s took=%.2fs",
        len(prompts),
        perf_counter() - t1,
    )
    return mask


def _write_caption(path: Path, caption: str) -> None:
    try:
        path.write_text(caption + "\n", encoding="utf-8")
    except OSError as e:
        raise OutputIOError(f"Failed to write caption {path}: {e}") from e


def _write_overlay(state: CutoutState, path: Path, alpha: float, ctx: RenderContext) -> bool:
    """Best-effort overlay preview; failures are logged, never raised."""
    try:
        layer = with_overlay_alpha(state.image, alpha)
        ctx.write_png(composite_at(state.source, layer, state.extent), path)
    except (OutputIOError, OSError, ValueError) as e:
        LOG.warning("Overlay not written to %s: %s", path, e)
        return False
    return True


def run_segment(
    cfg: SegmentConfig,
    ctx: RenderContext,
    *,
    model_loader: ModelLoader | None = None,
) -> SegmentResult:
    """Run the segment pipeline end to end and persist one dataset record.

    Outputs are written in the order crop, mask, caption, metadata. A failure
    partway leaves the files written so far on disk.
    """
    prompts = _validate(cfg)

    t0 = perf_counter()
    if model_loader is None:
        model_loader = _default_model_loader
    model = model_loader(cfg.models_dir, cfg.device)
    page = read_image(cfg.image_path)
    w, h = page.size
    LOG.info(
        "Step 1/5 load: image=%s size=%sx%s label=%s took=%.2fs",
        cfg.image_path,
        w,
        h,
        cfg.label,
        perf_counter() - t0,
    )

    mask = segment_mask(model, page, prompts, ctx)

    t2 = perf_counter()
    steps = plan_steps(
        invert_mask=cfg.invert_mask,
        crop=cfg.crop,
        alpha_threshold=cfg.alpha_threshold,
        bbox_margin=cfg.bbox_margin,
        size=cfg.size,
        ctx=ctx,
    )
    state = run_steps(page, mask, steps)
    LOG.info(
        "Step 4/5 transforms: steps=%s bbox=%s out=%sx%s took=%.2fs",
        len(steps),
        state.bbox,
        state.image.width,
        state.image.height,
        perf_counter() - t2,
    )

    ensure_dir(cfg.out_dir)
    stem = output_stem(cfg.image_path.name, cfg.label, cfg.out_dir)
    paths = OutputPaths.for_stem(cfg.out_dir, stem)

    ctx.write_png(state.image, paths.crop)
    if cfg.write_mask:
        ctx.write_png(state.mask, paths.mask)
    _write_caption(paths.caption, cfg.caption)
    record = SegmentRecord.from_run(
        source=cfg.image_path.name,
        label=cfg.label,
        caption=cfg.caption,
        prompts=prompts,
        bbox=state.bbox,
        size=cfg.size,
    )
    record.save(paths.meta)
    LOG.info("Step 5/5 persist: stem=%s dir=%s", stem, cfg.out_dir)

    overlay: Path | None = None
    if cfg.overlay_out is not None and _write_overlay(
        state, cfg.overlay_out, cfg.overlay_alpha, ctx
    ):
        overlay = cfg.overlay_out

    return SegmentResult(
        paths=paths,
        record=record,
        wrote_mask=cfg.write_mask,
        extent=state.extent,
        overlay=overlay,
    )


def run_oneshot(
    cfg: OneShotConfig,
    ctx: RenderContext,
    *,
    model_loader: ModelLoader | None = None,
) -> Path:
    """Segment once and write a mask-over-image overlay (and optionally the mask).

    No caption, metadata or indexing; every failure is fatal.
    """
    prompts = build_prompts(list(cfg.points), list(cfg.types))
    if model_loader is None:
        model_loader = _default_model_loader
    model = model_loader(cfg.models_dir, cfg.device)
    page = read_image(cfg.image_path)
    mask = segment_mask(model, page, prompts, ctx)

    if cfg.mask_out is not None:
        ctx.write_png(mask, cfg.mask_out)
    layer = with_overlay_alpha(mask.convert("RGBA"), cfg.overlay_alpha)
    ctx.write_png(composite_at(page, layer, Rect.of_size(page.size)), cfg.output)
    return cfg.output
