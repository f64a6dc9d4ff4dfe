"""Hierarchical branch representation of a segmented airway mask.

The segmentation itself is produced elsewhere; this module only holds its
result in the form the centreline extraction consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .graph_structure import Coord, as_coord


@dataclass
class SegmentedBranch:
    """Voxel set of one segmented airway branch."""

    id: int
    voxels: np.ndarray  # (N, 3) integer voxel coordinates
    parent_id: Optional[int] = None
    child_ids: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.voxels = np.asarray(self.voxels, dtype=np.int64).reshape(-1, 3)

    def num_voxels(self) -> int:
        return int(self.voxels.shape[0])


class SegmentedTreeInput:
    """Segmented branch hierarchy plus the voxel grid it lives on."""

    def __init__(
        self,
        shape: Sequence[int],
        spacing: Sequence[float],
        branches: Iterable[SegmentedBranch] = (),
        origin: Sequence[int] = (0, 0, 0),
    ) -> None:
        if len(shape) != 3:
            raise ValueError(f"Expected a 3D shape, got {tuple(shape)}.")
        if len(spacing) != 3 or any(float(s) <= 0 for s in spacing):
            raise ValueError(f"Voxel spacing must have three positive entries, got {tuple(spacing)}.")
        self.shape: Tuple[int, int, int] = tuple(int(s) for s in shape)
        self.spacing: Tuple[float, float, float] = tuple(float(s) for s in spacing)
        self.origin: Tuple[int, int, int] = as_coord(origin)
        self.branches: Dict[int, SegmentedBranch] = {}
        for branch in branches:
            self.add_branch(branch)

    def add_branch(self, branch: SegmentedBranch) -> None:
        if branch.id in self.branches:
            raise ValueError(f"Segmented branch id {branch.id} already exists.")
        vox = branch.voxels
        if vox.size and (np.any(vox < 0) or np.any(vox >= np.asarray(self.shape))):
            raise ValueError(f"Segmented branch {branch.id} has voxels outside shape {self.shape}.")
        self.branches[branch.id] = branch
        if branch.parent_id is not None and branch.parent_id in self.branches:
            parent = self.branches[branch.parent_id]
            if branch.id not in parent.child_ids:
                parent.child_ids.append(branch.id)

    @classmethod
    def from_mask(
        cls,
        mask: np.ndarray,
        spacing: Sequence[float] = (1.0, 1.0, 1.0),
        origin: Sequence[int] = (0, 0, 0),
    ) -> "SegmentedTreeInput":
        """Wrap a plain binary mask as a single segmented branch."""
        mask = np.asarray(mask)
        if mask.ndim != 3:
            raise ValueError(f"Expected a 3D mask, got {mask.ndim} dimensions.")
        tree = cls(mask.shape, spacing, origin=origin)
        voxels = np.argwhere(mask > 0)
        if voxels.size:
            tree.add_branch(SegmentedBranch(id=0, voxels=voxels))
        return tree

    @classmethod
    def from_label_volume(
        cls,
        labels: np.ndarray,
        spacing: Sequence[float] = (1.0, 1.0, 1.0),
        parents: Optional[Mapping[int, Optional[int]]] = None,
        origin: Sequence[int] = (0, 0, 0),
    ) -> "SegmentedTreeInput":
        """One segmented branch per non-zero label; ``parents`` maps label -> parent label."""
        labels = np.asarray(labels)
        if labels.ndim != 3:
            raise ValueError(f"Expected a 3D label volume, got {labels.ndim} dimensions.")
        parents = parents or {}
        tree = cls(labels.shape, spacing, origin=origin)
        ids = [int(v) for v in np.unique(labels) if v != 0]
        # Parents first so child links resolve on insertion.
        ordered = sorted(ids, key=lambda lbl: (_depth(lbl, parents), lbl))
        for lbl in ordered:
            tree.add_branch(
                SegmentedBranch(id=lbl, voxels=np.argwhere(labels == lbl), parent_id=parents.get(lbl))
            )
        return tree

    def is_empty(self) -> bool:
        return all(br.num_voxels() == 0 for br in self.branches.values())

    def root_ids(self) -> List[int]:
        return sorted(bid for bid, br in self.branches.items() if br.parent_id not in self.branches)

    def to_mask(self) -> np.ndarray:
        mask = np.zeros(self.shape, dtype=bool)
        for branch in self.branches.values():
            if branch.num_voxels():
                mask[tuple(branch.voxels.T)] = True
        return mask

    def branch_for_voxel(self, coord: Coord) -> Optional[int]:
        """Return the id of the segmented branch containing ``coord``."""
        target = np.asarray(coord, dtype=np.int64)
        for bid, branch in self.branches.items():
            if branch.num_voxels() and np.any(np.all(branch.voxels == target, axis=1)):
                return bid
        return None


def _depth(label: int, parents: Mapping[int, Optional[int]]) -> int:
    depth = 0
    seen = {label}
    current = parents.get(label)
    while current is not None and current not in seen:
        seen.add(current)
        depth += 1
        current = parents.get(current)
    return depth
