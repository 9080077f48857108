"""JSON Lines manifest pairing prepared crops with their captions."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from segcrop.errors import OutputIOError
from segcrop.vision.image import ensure_dir

from .naming import MASK_SUFFIX

LOG = logging.getLogger(__name__)

IMAGE_EXT = ".png"


class ManifestRecord(BaseModel):
    """One manifest line: `{"file": ..., "text": ...}`."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    file: str
    text: str


def _list_crops(prepared_dir: Path) -> list[str]:
    try:
        names = os.listdir(prepared_dir)
    except OSError as e:
        raise OutputIOError(f"Cannot list prepared directory {prepared_dir}: {e}") from e
    mask_tail = f"{MASK_SUFFIX}{IMAGE_EXT}"
    return sorted(
        n
        for n in names
        if n.lower().endswith(IMAGE_EXT) and not n.endswith(mask_tail)
    )


def collect_records(prepared_dir: Path) -> list[ManifestRecord]:
    """Pair every crop in `prepared_dir` with its same-stem caption file.

    Crops without a caption are skipped; masks are never listed.
    """
    records: list[ManifestRecord] = []
    for name in _list_crops(prepared_dir):
        stem = Path(name).stem
        txt = prepared_dir / f"{stem}.txt"
        if not txt.is_file():
            LOG.debug("No caption for %s, skipping", name)
            continue
        try:
            caption = txt.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise OutputIOError(f"Failed to read caption {txt}: {e}") from e
        records.append(ManifestRecord(file=name, text=caption))
    return records


def build_manifest(prepared_dir: Path, out_path: Path) -> int:
    """Write the JSONL manifest for `prepared_dir` to `out_path`.

    Returns:
        The number of records written.

    Raises:
        OutputIOError: If the directory cannot be listed or the manifest
            cannot be written.
    """
    records = collect_records(prepared_dir)
    lines = [r.model_dump_json() for r in records]
    ensure_dir(out_path.parent)
    try:
        out_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as e:
        raise OutputIOError(f"Failed to write manifest {out_path}: {e}") from e
    LOG.info("Wrote %s manifest records to %s", len(records), out_path)
    return len(records)
