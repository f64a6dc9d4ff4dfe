"""Core data models for airway centreline trees."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import networkx as nx
import numpy as np

Coord = Tuple[int, int, int]


class PointClass(str, Enum):
    """Classification of a centreline voxel."""

    SKELETON = "skeleton"
    ORIGINAL_CENTRELINE = "original_centreline"  # present before pruning only
    BIFURCATION = "bifurcation"
    REMOVED = "removed"
    START = "start"


def as_coord(values: Iterable[int]) -> Coord:
    x, y, z = (int(v) for v in values)
    return x, y, z


@dataclass
class Branch:
    """Skeleton path between two topological points (junction or endpoint)."""

    id: int
    points: np.ndarray  # (N, 3) integer voxel coordinates, parent side first
    parent_id: Optional[int] = None
    child_ids: List[int] = field(default_factory=list)
    terminal: bool = False  # distal end is a skeleton endpoint
    bifurcation: Optional[Coord] = None  # junction voxel at the distal end
    radii: Optional[np.ndarray] = None  # (N,) radius per point (mm), NaN when absent
    removed: bool = False

    def __post_init__(self) -> None:
        self.points = np.asarray(self.points, dtype=np.int64).reshape(-1, 3)

    def num_points(self) -> int:
        return int(self.points.shape[0])

    def is_leaf(self) -> bool:
        return not self.child_ids

    def length(self, spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)) -> float:
        """Return total arclength in physical units."""
        if self.points.shape[0] < 2:
            return 0.0
        pts = self.points.astype(np.float64) * np.asarray(spacing, dtype=np.float64)
        return float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())

    def coords(self) -> List[Coord]:
        return [as_coord(p) for p in self.points]

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": int(self.id),
            "points": self.points.tolist(),
            "parent_id": self.parent_id,
            "child_ids": [int(c) for c in self.child_ids],
            "terminal": bool(self.terminal),
            "bifurcation": None if self.bifurcation is None else list(self.bifurcation),
            "radii": None
            if self.radii is None
            else [None if np.isnan(r) else float(r) for r in self.radii],
            "removed": bool(self.removed),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Branch":
        radii = data.get("radii")
        return cls(
            id=int(data["id"]),
            points=np.asarray(data["points"], dtype=np.int64).reshape(-1, 3),
            parent_id=data.get("parent_id"),
            child_ids=[int(c) for c in data.get("child_ids", [])],
            terminal=bool(data.get("terminal", False)),
            bifurcation=as_coord(data["bifurcation"]) if data.get("bifurcation") is not None else None,
            radii=None
            if radii is None
            else np.asarray([np.nan if r is None else r for r in radii], dtype=np.float64),
            removed=bool(data.get("removed", False)),
        )


class AirwayTree:
    """Arena of branches addressed by id.

    Children are owned through ``child_ids``; ``parent_id`` is a plain index
    used for lookup only. Pruned branches stay in the arena with
    ``removed=True`` so their points can still be reported.
    """

    def __init__(self, root_id: Optional[int] = None) -> None:
        self.branches: Dict[int, Branch] = {}
        self.root_id: Optional[int] = root_id
        self.start_point: Optional[Coord] = None
        self.synthetic_root: bool = False
        self.removed_branch_ids: List[int] = []
        self.loop_removed_points: List[Coord] = []

    def next_id(self) -> int:
        return max(self.branches, default=-1) + 1

    def add_branch(self, branch: Branch) -> None:
        if branch.id in self.branches:
            raise ValueError(f"Branch id {branch.id} already exists.")
        self.branches[branch.id] = branch
        if branch.parent_id is not None:
            parent = self.branches.get(branch.parent_id)
            if parent is None:
                raise ValueError(f"Parent {branch.parent_id} of branch {branch.id} is unknown.")
            if branch.id not in parent.child_ids:
                parent.child_ids.append(branch.id)

    def get_branch(self, branch_id: int) -> Branch:
        return self.branches[branch_id]

    def iter_branches(self) -> Iterable[Branch]:
        return self.branches.values()

    def num_branches(self) -> int:
        return len(self.branches)

    def is_empty(self) -> bool:
        return self.root_id is None

    def detach(self, branch_id: int) -> Branch:
        """Remove a branch from its parent and mark it removed."""
        branch = self.branches[branch_id]
        if branch.parent_id is not None:
            parent = self.branches[branch.parent_id]
            if branch_id in parent.child_ids:
                parent.child_ids.remove(branch_id)
        branch.removed = True
        self.removed_branch_ids.append(branch_id)
        return branch

    def iter_depth_first(self, start_id: Optional[int] = None) -> Iterator[Branch]:
        """Yield branches reachable from ``start_id`` (default root), pre-order.

        Uses an explicit stack; children are visited in ascending id order.
        """
        start_id = self.root_id if start_id is None else start_id
        if start_id is None:
            return
        stack = [start_id]
        while stack:
            branch = self.branches[stack.pop()]
            yield branch
            stack.extend(sorted(branch.child_ids, reverse=True))

    def leaves(self) -> List[Branch]:
        return [br for br in self.iter_depth_first() if br.is_leaf()]

    def to_dict(self) -> Dict[str, object]:
        return {
            "root_id": self.root_id,
            "start_point": None if self.start_point is None else list(self.start_point),
            "synthetic_root": self.synthetic_root,
            "removed_branch_ids": list(self.removed_branch_ids),
            "loop_removed_points": [list(p) for p in self.loop_removed_points],
            "branches": [br.to_dict() for br in self.branches.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "AirwayTree":
        tree = cls(root_id=data.get("root_id"))
        for br_data in data.get("branches", []):
            branch = Branch.from_dict(br_data)
            tree.branches[branch.id] = branch
        start = data.get("start_point")
        tree.start_point = as_coord(start) if start is not None else None
        tree.synthetic_root = bool(data.get("synthetic_root", False))
        tree.removed_branch_ids = [int(b) for b in data.get("removed_branch_ids", [])]
        tree.loop_removed_points = [as_coord(p) for p in data.get("loop_removed_points", [])]
        return tree

    def to_networkx(self):
        """Convert the live tree (pruned branches excluded) to a networkx DiGraph."""
        g = nx.DiGraph()
        for branch in self.iter_depth_first():
            g.add_node(branch.id, num_points=branch.num_points(), terminal=branch.terminal)
            for child in branch.child_ids:
                g.add_edge(branch.id, child)
        return g
