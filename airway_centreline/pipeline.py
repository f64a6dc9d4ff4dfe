"""End-to-end centreline extraction: thinning, pruning, radius estimation."""

from __future__ import annotations

import logging
import time
from typing import List, Mapping, Optional, Sequence

import numpy as np

from .centerline import CancelCheck, check_cancel, skeletonize_tree
from .config import PipelineConfig
from .errors import Diagnostic
from .pruning import remove_trailing_endpoints
from .radius import estimate_radii
from .result import AirwayTreeResult, assemble_result
from .segmentation_interface import SegmentedTreeInput

logger = logging.getLogger(__name__)


def run_airway_centreline(
    tree_input: SegmentedTreeInput,
    intensity: np.ndarray,
    seed: Optional[Sequence[float]] = None,
    radius_prior: Optional[Mapping[int, float]] = None,
    config: Optional[PipelineConfig] = None,
    should_cancel: CancelCheck = None,
) -> AirwayTreeResult:
    """Run the full pipeline on a segmented airway and its intensity volume.

    Args:
        tree_input: segmented branch hierarchy (local voxel grid).
        intensity: source image on the same grid.
        seed: trachea point in local voxel coordinates; optional.
        radius_prior: coarse radius per centreline branch id (mm); branches
            without an entry use the mask distance transform.
        config: pipeline parameters.
        should_cancel: zero-argument callable polled between units of work;
            returning True raises ``PipelineCancelled``.
    """
    config = config or PipelineConfig()
    intensity = np.asarray(intensity)
    if intensity.shape != tree_input.shape:
        raise ValueError(f"Intensity shape {intensity.shape} does not match mask shape {tree_input.shape}")

    diagnostics: List[Diagnostic] = []
    t0 = time.perf_counter()
    tree, skeleton_diagnostics = skeletonize_tree(tree_input, seed, config.skeleton, should_cancel)
    diagnostics.extend(skeleton_diagnostics)
    t_skeleton = time.perf_counter() - t0

    if tree.is_empty():
        return assemble_result(tree, diagnostics, tree_input.spacing, tree_input.origin)

    check_cancel(should_cancel, "before endpoint pruning")
    t0 = time.perf_counter()
    remove_trailing_endpoints(tree, config.pruning, should_cancel)
    t_prune = time.perf_counter() - t0

    check_cancel(should_cancel, "before radius estimation")
    t0 = time.perf_counter()
    diagnostics.extend(
        estimate_radii(
            tree,
            tree_input.to_mask(),
            intensity,
            tree_input.spacing,
            radius_prior=radius_prior,
            params=config.radius,
            should_cancel=should_cancel,
        )
    )
    t_radius = time.perf_counter() - t0

    result = assemble_result(tree, diagnostics, tree_input.spacing, tree_input.origin)
    logger.info(
        "Timings: skeleton %.2fs, pruning %.2fs, radius %.2fs",
        t_skeleton,
        t_prune,
        t_radius,
    )
    logger.info("Result summary: %s", result.summary())
    return result
