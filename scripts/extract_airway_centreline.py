"""
Extract the airway centreline and per-point radii from a segmented CT scan.

Outputs:
  <out-dir>/centreline_labels.nii.gz   label volume (1 centreline, 3 bifurcation, 4 start, 6 removed)
  <out-dir>/airway_tree.json           branch records with points, radii and point classes

Usage:
  python scripts/extract_airway_centreline.py \
      --mask case_01/airway_mask.nii.gz \
      --image case_01/ct.nii.gz \
      --out-dir outputs/case_01 \
      --seed 256,240,410
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

from airway_centreline import (
    PipelineConfig,
    SegmentedTreeInput,
    load_pair,
    render_label_volume,
    run_airway_centreline,
    save_label_volume,
)

logger = logging.getLogger("extract_airway_centreline")


def _parse_seed(text: str) -> Tuple[float, float, float]:
    parts = [p for p in text.replace(" ", "").split(",") if p]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Seed must be 'x,y,z', got {text!r}")
    x, y, z = (float(p) for p in parts)
    return x, y, z


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Airway centreline and radius extraction.")
    parser.add_argument("--mask", type=Path, required=True, help="Binary airway mask (NIfTI).")
    parser.add_argument("--image", type=Path, required=True, help="Source CT volume (NIfTI).")
    parser.add_argument("--out-dir", type=Path, required=True, help="Output directory.")
    parser.add_argument("--seed", type=_parse_seed, default=None, help="Trachea voxel index 'x,y,z'.")
    parser.add_argument("--config", type=Path, default=None, help="Pipeline config JSON.")
    parser.add_argument(
        "--prune-threshold",
        type=int,
        default=None,
        help="Remove terminal branches shorter than this many voxels (default 150).",
    )
    parser.add_argument("--num-rays", type=int, default=None, help="Rays per centreline point (>= 8).")
    parser.add_argument("--workers", type=int, default=None, help="Threads for radius estimation (-1: all cores).")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar.")
    parser.add_argument("--verbose", action="store_true", help="Debug logging.")
    return parser


def _make_config(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig.load(args.config) if args.config else PipelineConfig()
    if args.prune_threshold is not None:
        config.pruning.voxel_limit = args.prune_threshold
    if args.num_rays is not None:
        config.radius.num_rays = args.num_rays
    if args.workers is not None:
        config.radius.workers = args.workers
    if args.progress:
        config.radius.progress = True
    config.validate()
    return config


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = _make_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    volume, mask = load_pair(args.image, args.mask)
    tree_input = SegmentedTreeInput.from_mask(mask.data, spacing=volume.spacing, origin=mask.origin)
    result = run_airway_centreline(tree_input, volume.data, seed=args.seed, config=config)

    args.out_dir.mkdir(parents=True, exist_ok=True)
    labels = render_label_volume(result, template=mask)
    save_label_volume(labels, mask, args.out_dir / "centreline_labels.nii.gz")
    result.save_records(args.out_dir / "airway_tree.json")
    config.save(args.out_dir / "config.json")

    summary = result.summary()
    logger.info("Saved %d centreline points in %d branches to %s", summary["centreline_points"], summary["branches"], args.out_dir)


if __name__ == "__main__":
    main()
