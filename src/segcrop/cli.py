"""Command line entry point: `segment`, `build-manifest` and the legacy `oneshot`.

Environment variables:
- `SAM2_MODELS_DIR`: default for `--models_dir` (directory holding `sam2.yaml`
  and the checkpoint; falls back to `models/sam2`).
- `SAM2_DEVICE`: default for `--device` ("auto", "cpu" or "cuda").
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from segcrop.dataset.manifest import build_manifest
from segcrop.errors import SegcropError
from segcrop.pipelines.segment import OneShotConfig, SegmentConfig, run_oneshot, run_segment
from segcrop.vision.image import RenderContext
from segcrop.vision.types import parse_category, parse_point

SUBCOMMANDS = ("segment", "build-manifest", "oneshot")


def _add_prompt_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("-i", "--input", type=str, required=True, help="Input image.")
    p.add_argument(
        "-p",
        "--points",
        type=parse_point,
        nargs="*",
        default=[],
        help="Points 'x,y' in image pixels, separated by spaces.",
    )
    p.add_argument(
        "-t",
        "--types",
        type=parse_category,
        nargs="*",
        default=[],
        help="Point type for each point (0=background, 1=foreground).",
    )
    p.add_argument(
        "--models_dir",
        type=str,
        default=os.environ.get("SAM2_MODELS_DIR"),
        help="Directory containing sam2.yaml and the SAM2 checkpoint.",
    )
    p.add_argument("--device", type=str, default=os.environ.get("SAM2_DEVICE", "auto"))


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="segcrop",
        description="SAM2-based segmentation and dataset maker for LoRA fine-tuning.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    seg = sub.add_parser(
        "segment", parents=[common], help="Segment, crop, caption, and save outputs."
    )
    _add_prompt_args(seg)
    seg.add_argument("--label", type=str, required=True, help="Label for this segment.")
    seg.add_argument("--caption", type=str, required=True, help="Caption saved with the crop.")
    seg.add_argument("--out_dir", type=str, default="dataset/prepared")
    seg.add_argument("--no_write_mask", dest="write_mask", action="store_false")
    seg.add_argument("--no_crop", dest="crop", action="store_false")
    seg.add_argument("--bbox_margin", type=int, default=8, help="Crop margin in pixels.")
    seg.add_argument("--size", type=int, default=None, help="Optional square resize (NxN).")
    seg.add_argument("--overlay_out", type=str, default=None, help="Overlay preview PNG path.")
    seg.add_argument("--alpha_threshold", type=int, default=1, help="Mask threshold (0-255).")
    seg.add_argument("--invert_mask", action="store_true")

    man = sub.add_parser(
        "build-manifest", parents=[common], help="Scan a prepared dir and write a JSONL manifest."
    )
    man.add_argument("--prepared_dir", type=str, default="dataset/prepared")
    man.add_argument("--out", type=str, default="dataset/train_annotations.jsonl")

    one = sub.add_parser(
        "oneshot", parents=[common], help="Single run writing an overlay (and optional mask)."
    )
    _add_prompt_args(one)
    one.add_argument("-o", "--output", type=str, required=True, help="Overlay output PNG.")
    one.add_argument("-k", "--mask", type=str, default=None, help="Mask output PNG.")
    return ap


def _with_default_command(argv: list[str]) -> list[str]:
    """Insert `segment` when no subcommand is named.

    A leading `--verbose` is moved after the subcommand, since it is declared
    on each subparser.
    """
    lead = [a for a in argv[:1] if a == "--verbose"]
    rest = argv[len(lead):]
    if rest and rest[0] in {"-h", "--help"}:
        return rest
    if rest and rest[0] in SUBCOMMANDS:
        return [rest[0], *lead, *rest[1:]]
    return ["segment", *lead, *rest]


def _run_segment(args: argparse.Namespace, ctx: RenderContext) -> None:
    res = run_segment(
        SegmentConfig(
            image_path=Path(args.input),
            points=list(args.points),
            types=list(args.types),
            label=args.label,
            caption=args.caption,
            out_dir=Path(args.out_dir),
            write_mask=bool(args.write_mask),
            crop=bool(args.crop),
            bbox_margin=int(args.bbox_margin),
            size=args.size,
            overlay_out=Path(args.overlay_out) if args.overlay_out else None,
            alpha_threshold=int(args.alpha_threshold),
            invert_mask=bool(args.invert_mask),
            models_dir=Path(args.models_dir) if args.models_dir else None,
            device=str(args.device),
        ),
        ctx,
    )
    print("Saved:")
    print(f"  crop: {res.paths.crop}")
    print(f"  txt : {res.paths.caption}")
    if res.wrote_mask:
        print(f"  mask: {res.paths.mask}")
    print(f"  meta: {res.paths.meta}")
    if res.overlay is not None:
        print(f"  overlay: {res.overlay}")


def _run_oneshot(args: argparse.Namespace, ctx: RenderContext) -> None:
    out = run_oneshot(
        OneShotConfig(
            image_path=Path(args.input),
            points=list(args.points),
            types=list(args.types),
            output=Path(args.output),
            mask_out=Path(args.mask) if args.mask else None,
            models_dir=Path(args.models_dir) if args.models_dir else None,
            device=str(args.device),
        ),
        ctx,
    )
    print(f"Saved overlay: {out}")


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = build_parser().parse_args(_with_default_command(list(argv)))

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
    ctx = RenderContext()

    try:
        if args.command == "segment":
            _run_segment(args, ctx)
        elif args.command == "oneshot":
            _run_oneshot(args, ctx)
        else:
            out = Path(args.out)
            n = build_manifest(Path(args.prepared_dir), out)
            print(f"Wrote {n} records → {out}")
    except SegcropError as e:
        print(f"[ERROR] {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
