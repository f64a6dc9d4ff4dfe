"""Removal of short trailing branches from a centreline tree."""

from __future__ import annotations

import logging
from typing import List, Optional

from .centerline import CancelCheck, check_cancel
from .config import PruningParams
from .graph_structure import AirwayTree, Branch, Coord, as_coord

logger = logging.getLogger(__name__)


def remove_trailing_endpoints(
    tree: AirwayTree,
    params: Optional[PruningParams] = None,
    should_cancel: CancelCheck = None,
) -> List[Coord]:
    """Remove terminal leaf branches with fewer than ``voxel_limit`` points.

    Single pass: the candidate set is fixed on entry and only holds branches
    ending at a skeleton endpoint. A parent whose children all get removed
    still ends at its bifurcation, so it is not a candidate in this or any
    later pass; running the pass again removes nothing. The root branch and
    the branch holding the start point are kept.

    Returns the voxels of the removed branches.
    """
    params = params or PruningParams()
    candidates = [
        br.id
        for br in tree.leaves()
        if br.terminal and br.parent_id is not None and not _holds_start(tree, br)
    ]

    removed_points: List[Coord] = []
    num_removed = 0
    for branch_id in candidates:
        check_cancel(should_cancel, "during endpoint pruning")
        branch = tree.get_branch(branch_id)
        if branch.num_points() >= params.voxel_limit:
            continue
        tree.detach(branch_id)
        num_removed += 1
        removed_points.extend(as_coord(p) for p in branch.points)
        logger.debug("Pruned branch %d (%d points)", branch_id, branch.num_points())

    logger.info(
        "Pruned %d of %d trailing branches below %d voxels (%d points removed)",
        num_removed,
        len(candidates),
        params.voxel_limit,
        len(removed_points),
    )
    return removed_points


def _holds_start(tree: AirwayTree, branch: Branch) -> bool:
    return (
        tree.start_point is not None
        and branch.num_points() > 0
        and as_coord(branch.points[0]) == tree.start_point
    )
