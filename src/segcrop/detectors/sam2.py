"""SAM2 wrapper used to turn point prompts into a single mask."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Final

import numpy as np
import yaml
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sam2.build_sam import build_sam2
from sam2.sam2_image_predictor import SAM2ImagePredictor

from segcrop.errors import EncodingError, ModelLoadError
from segcrop.vision.types import PointPrompt

LOG = logging.getLogger(__name__)

DESCRIPTOR_NAME: Final[str] = "sam2.yaml"
DEFAULT_MODELS_DIR: Final[Path] = Path("models/sam2")
MODELS_DIR_ENV: Final[str] = "SAM2_MODELS_DIR"


class ModelDescriptor(BaseModel):
    """Contents of `<models_dir>/sam2.yaml`."""

    model_config = ConfigDict(extra="ignore")

    config: str = Field(min_length=1)
    checkpoint: str = Field(min_length=1)
    input_size: int = Field(default=1024, gt=0)


class Sam2PointSegmenter:
    """Segment Anything Model v2 (SAM2) wrapper for point-prompt segmentation.

    The protocol is stateful: `encode_image`, then `encode_prompts`, then
    `fetch_mask`. Encoding a new image discards the previous prediction.
    """

    def __init__(
        self,
        sam2_config: str,
        sam2_ckpt: str,
        device: str = "auto",
        *,
        input_size: int = 1024,
        torch_module: Any | None = None,
        predictor: Any | None = None,
        sam_builder: Callable[[str, str], Any] | None = None,
        predictor_factory: Callable[[Any], Any] = SAM2ImagePredictor,
        mask_resample: Image.Resampling = Image.Resampling.BILINEAR,
    ) -> None:
        """Initialize the segmenter.

        Args:
            sam2_config: SAM2 config name or path.
            sam2_ckpt: SAM2 checkpoint path.
            device: "auto", "cpu", or "cuda".
            input_size: Side of the square image the encoder consumes.
            torch_module: Optional torch-like module for dependency injection.
            predictor: Optional pre-built predictor (for tests).
            sam_builder: Optional builder for a SAM2 model.
            predictor_factory: Factory that builds a predictor from the model.
            mask_resample: Filter used to bring masks back to image size.
        """
        if torch_module is None:
            import torch as torch_module  # local import to keep module import lightweight

        if device == "auto":
            device = "cuda" if torch_module.cuda.is_available() else "cpu"

        self.torch = torch_module
        self.device = device
        self._input_size = int(input_size)
        self.mask_resample = mask_resample
        self._image_encoded = False
        self._mask: np.ndarray | None = None
        self.score: float | None = None

        if predictor is not None:
            self.predictor = predictor
            return

        if sam_builder is None:

            def sam_builder(cfg: str, ckpt: str) -> Any:
                return build_sam2(cfg, ckpt, device=device)

        sam2_model = sam_builder(sam2_config, sam2_ckpt)
        self.predictor = predictor_factory(sam2_model)

    @property
    def input_size(self) -> tuple[int, int]:
        return self._input_size, self._input_size

    def encode_image(self, pixel_buffer: np.ndarray) -> None:
        """Run the image encoder on an `input_size` RGB buffer."""
        h, w = pixel_buffer.shape[:2]
        if (w, h) != self.input_size:
            raise EncodingError(
                f"pixel buffer is {w}x{h}, model expects {self.input_size[0]}x{self.input_size[1]}"
            )
        self._image_encoded = False
        self._mask = None
        self.score = None
        try:
            self.predictor.set_image(pixel_buffer)
        except (RuntimeError, ValueError) as e:
            raise EncodingError(f"SAM2 image encoding failed: {e}") from e
        self._image_encoded = True

    def encode_prompts(self, points: Sequence[PointPrompt], image_size: tuple[int, int]) -> None:
        """Submit point prompts given in `image_size` pixel space.

        Points are rescaled to the encoder's input resolution before decoding.
        An empty sequence is forwarded as-is.
        """
        if not self._image_encoded:
            raise EncodingError("encode_image must be called before encode_prompts")
        iw, ih = image_size
        tw, th = self.input_size
        coords: np.ndarray | None = None
        labels: np.ndarray | None = None
        if points:
            coords = np.array(
                [[p.x * tw / iw, p.y * th / ih] for p in points],
                dtype=np.float32,
            )
            labels = np.array([int(p.category) for p in points], dtype=np.int32)
        try:
            masks, scores, _ = self.predictor.predict(
                point_coords=coords,
                point_labels=labels,
                multimask_output=False,
            )
        except (RuntimeError, ValueError, AssertionError) as e:
            raise EncodingError(f"SAM2 prompt decoding failed: {e}") from e
        if len(masks) == 0:
            self._mask = None
            return
        self._mask = np.asarray(masks[0])
        self.score = float(scores[0])
        LOG.debug("SAM2 decoded %s points, score=%.3f", len(points), self.score)

    def fetch_mask(self, image_size: tuple[int, int]) -> Image.Image | None:
        """Return the decoded mask (L mode, 0/255) resized to `image_size`, if any."""
        if self._mask is None:
            return None
        m = (self._mask > 0).astype(np.uint8) * 255
        mask = Image.fromarray(m)
        if mask.size != tuple(image_size):
            mask = mask.resize(tuple(image_size), resample=self.mask_resample)
        return mask


def resolve_models_dir(models_dir: Path | None) -> Path:
    """Pick the models directory: explicit, then `$SAM2_MODELS_DIR`, then the default."""
    if models_dir is not None:
        return Path(models_dir).expanduser()
    env = os.environ.get(MODELS_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return DEFAULT_MODELS_DIR


def read_descriptor(models_dir: Path) -> ModelDescriptor:
    """Load and validate `<models_dir>/sam2.yaml`."""
    path = models_dir / DESCRIPTOR_NAME
    if not path.is_file():
        raise ModelLoadError(f"Missing model descriptor: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ModelLoadError(f"Unreadable model descriptor: {path}") from e
    try:
        return ModelDescriptor.model_validate(raw or {})
    except PydanticValidationError as e:
        raise ModelLoadError(f"Invalid model descriptor: {path}") from e


def load_model(
    models_dir: Path | None = None,
    device: str = "auto",
    *,
    segmenter_factory: Callable[..., Sam2PointSegmenter] = Sam2PointSegmenter,
) -> Sam2PointSegmenter:
    """Build a SAM2 point segmenter from a models directory.

    Raises:
        ModelLoadError: If the descriptor or checkpoint is missing/invalid or
            the model cannot be built.
    """
    root = resolve_models_dir(models_dir)
    desc = read_descriptor(root)
    ckpt = Path(desc.checkpoint).expanduser()
    if not ckpt.is_absolute():
        ckpt = root / ckpt
    if not ckpt.is_file():
        raise ModelLoadError(f"Missing SAM2 checkpoint: {ckpt}")
    LOG.info("Loading SAM2: config=%s ckpt=%s device=%s", desc.config, ckpt, device)
    try:
        return segmenter_factory(desc.config, str(ckpt), device, input_size=desc.input_size)
    except ModelLoadError:
        raise
    except Exception as e:
        raise ModelLoadError(f"Failed to build SAM2 model from {ckpt}: {e}") from e
