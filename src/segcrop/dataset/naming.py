"""Output naming: sanitized stems and collision-free numeric indices.

Stems look like `<source>__<label>__<NNN>`. The index is recomputed from a
directory scan on every run; there is no lock, so two concurrent runs writing
the same source/label into the same directory can pick the same index.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from segcrop.errors import ValidationError

LOG = logging.getLogger(__name__)

_UNSAFE_RUN = re.compile(r"[^A-Za-z0-9_\-]+")
_INDEX = re.compile(r"[+-]?[0-9]+")
INDEX_WIDTH = 3
MASK_SUFFIX = "_mask"


def sanitize_basename(filename: str) -> str:
    """Return a lowercase, filesystem-safe stem for `filename`.

    Example:
        'Page 12 (scan).PNG' -> 'page-12-scan'
    """
    stem = Path(filename).stem
    safe = _UNSAFE_RUN.sub("-", stem)
    return safe.strip("-").lower()


def validate_label(label: str) -> str:
    """Check that `label` can be embedded in a filename.

    Raises:
        ValidationError: If the label is empty or contains a path separator.
    """
    if not label or not label.strip():
        raise ValidationError("label must not be empty.")
    if "/" in label or "\\" in label or label in {".", ".."}:
        raise ValidationError(f"label must not contain path separators: {label!r}")
    return label


def stem_prefix(source: str, label: str) -> str:
    return f"{sanitize_basename(source)}__{label}__"


def next_index(prefix: str, directory: Path) -> int:
    """Return 1 + the highest 3-digit index already used after `prefix` in `directory`.

    Entries whose next three characters do not parse as an integer are
    ignored. A directory that cannot be listed counts as empty.
    """
    try:
        names = os.listdir(directory)
    except OSError:
        return 1
    used: list[int] = []
    for name in names:
        if not name.startswith(prefix):
            continue
        chunk = name[len(prefix) : len(prefix) + INDEX_WIDTH]
        if _INDEX.fullmatch(chunk):
            used.append(int(chunk))
    return max(used, default=0) + 1


def output_stem(source: str, label: str, directory: Path) -> str:
    """Build the next free `<source>__<label>__<NNN>` stem in `directory`."""
    prefix = stem_prefix(source, label)
    idx = next_index(prefix, directory)
    stem = f"{prefix}{idx:0{INDEX_WIDTH}d}"
    LOG.debug("Allocated stem %s in %s", stem, directory)
    return stem


@dataclass(frozen=True)
class OutputPaths:
    """The crop/mask/caption/metadata quadruple sharing one stem."""

    stem: str
    crop: Path
    mask: Path
    caption: Path
    meta: Path

    @classmethod
    def for_stem(cls, out_dir: Path, stem: str) -> OutputPaths:
        return cls(
            stem=stem,
            crop=out_dir / f"{stem}.png",
            mask=out_dir / f"{stem}{MASK_SUFFIX}.png",
            caption=out_dir / f"{stem}.txt",
            meta=out_dir / f"{stem}.json",
        )
