"""Per-segment JSON metadata record."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from segcrop.errors import OutputIOError
from segcrop.vision.types import PointPrompt, Rect


class SegmentRecord(BaseModel):
    """Metadata written next to every crop (`<stem>.json`)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    source: str
    label: str
    caption: str
    points: list[tuple[float, float]] = Field(default_factory=list)
    types: list[Literal[0, 1]] = Field(default_factory=list)
    bbox: tuple[int, int, int, int] | None = None
    size: int | None = None

    @classmethod
    def from_run(
        cls,
        *,
        source: str,
        label: str,
        caption: str,
        prompts: list[PointPrompt],
        bbox: Rect | None,
        size: int | None,
    ) -> SegmentRecord:
        return cls(
            source=source,
            label=label,
            caption=caption,
            points=[(p.x, p.y) for p in prompts],
            types=[int(p.category) for p in prompts],
            bbox=None if bbox is None else (bbox.x, bbox.y, bbox.width, bbox.height),
            size=size,
        )

    def save(self, path: Path) -> None:
        """Write the record as JSON.

        Raises:
            OutputIOError: If the file cannot be written.
        """
        try:
            path.write_text(self.model_dump_json(), encoding="utf-8")
        except OSError as e:
            raise OutputIOError(f"Failed to write metadata {path}: {e}") from e

    @classmethod
    def load(cls, path: Path) -> SegmentRecord:
        """Read a record previously written by `save`.

        Raises:
            OutputIOError: If the file cannot be read or is not a valid record.
        """
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise OutputIOError(f"Failed to read metadata {path}: {e}") from e
        try:
            return cls.model_validate_json(raw)
        except PydanticValidationError as e:
            raise OutputIOError(f"Invalid segment metadata JSON: {path}") from e
