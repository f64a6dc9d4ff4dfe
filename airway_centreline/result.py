"""Flattened result of a centreline run and its canonical record encoding."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .errors import Diagnostic
from .graph_structure import AirwayTree, Branch, Coord, PointClass, as_coord


@dataclass
class AirwayTreeResult:
    """Centreline tree plus the point collections a viewer or analysis needs.

    Coordinates are local voxel indices of the processed volume; ``origin``
    is the global index of its first voxel.
    """

    tree: AirwayTree
    original_centreline_points: List[Coord] = field(default_factory=list)
    centreline_points: List[Coord] = field(default_factory=list)
    bifurcation_points: List[Coord] = field(default_factory=list)
    removed_points: List[Coord] = field(default_factory=list)
    start_point: Optional[Coord] = None
    radii: Dict[Coord, Optional[float]] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    origin: Tuple[int, int, int] = (0, 0, 0)

    def is_empty(self) -> bool:
        return not self.original_centreline_points

    def class_layers(self) -> Iterator[Tuple[PointClass, List[Coord]]]:
        """Point collections in write order; later layers win on shared voxels."""
        yield PointClass.ORIGINAL_CENTRELINE, self.original_centreline_points
        yield PointClass.SKELETON, self.centreline_points
        yield PointClass.REMOVED, self.removed_points
        yield PointClass.BIFURCATION, self.bifurcation_points
        yield PointClass.START, [] if self.start_point is None else [self.start_point]

    def point_classes(self) -> Dict[Coord, PointClass]:
        classes: Dict[Coord, PointClass] = {}
        for point_class, points in self.class_layers():
            for p in points:
                classes[p] = point_class
        return classes

    def to_records(self) -> List[Dict[str, Any]]:
        """One record per branch: live branches depth-first, then pruned ones in removal order."""
        classes = self.point_classes()
        branches = [br for br in self.tree.iter_depth_first() if br.num_points() > 0]
        branches += [self.tree.get_branch(bid) for bid in self.tree.removed_branch_ids]
        return [_branch_record(br, classes, self.spacing) for br in branches]

    def save_records(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "spacing": list(self.spacing),
            "origin": list(self.origin),
            "start_point": None if self.start_point is None else list(self.start_point),
            "branches": self.to_records(),
            "loop_removed_points": [list(p) for p in self.tree.loop_removed_points],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
        with path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)

    def summary(self) -> Dict[str, int]:
        absent = sum(1 for r in self.radii.values() if r is None)
        kinds = Counter(d.kind.value for d in self.diagnostics)
        summary = {
            "branches": sum(1 for br in self.tree.iter_depth_first() if br.num_points() > 0),
            "removed_branches": len(self.tree.removed_branch_ids),
            "original_centreline_points": len(self.original_centreline_points),
            "centreline_points": len(self.centreline_points),
            "removed_points": len(self.removed_points),
            "bifurcation_points": len(self.bifurcation_points),
            "radii_absent": absent,
        }
        summary.update({f"diagnostics_{kind}": count for kind, count in sorted(kinds.items())})
        return summary


def _branch_record(
    branch: Branch,
    classes: Dict[Coord, PointClass],
    spacing: Sequence[float],
) -> Dict[str, Any]:
    coords = branch.coords()
    if branch.radii is None:
        radii: List[Optional[float]] = [None] * len(coords)
    else:
        radii = [None if np.isnan(r) else float(r) for r in branch.radii]
    return {
        "branch_id": int(branch.id),
        "parent_id": branch.parent_id,
        "length_mm": branch.length(tuple(spacing)),
        "points": [list(p) for p in coords],
        "radii": radii,
        "classes": [classes.get(p, PointClass.REMOVED).value for p in coords],
    }


def assemble_result(
    tree: AirwayTree,
    diagnostics: Optional[List[Diagnostic]] = None,
    spacing: Sequence[float] = (1.0, 1.0, 1.0),
    origin: Sequence[int] = (0, 0, 0),
) -> AirwayTreeResult:
    """Flatten ``tree`` into point collections by a depth-first walk (children in id order)."""
    centreline: List[Coord] = []
    radii: Dict[Coord, Optional[float]] = {}
    for branch in tree.iter_depth_first():
        coords = branch.coords()
        centreline.extend(coords)
        for i, p in enumerate(coords):
            value = None if branch.radii is None else float(branch.radii[i])
            radii[p] = None if value is None or np.isnan(value) else value

    removed: List[Coord] = []
    for branch_id in tree.removed_branch_ids:
        removed.extend(tree.get_branch(branch_id).coords())
    removed.extend(tree.loop_removed_points)

    # Junction voxels belong to the parent branch, so pruning never removes them.
    bifurcations = [
        branch.bifurcation
        for branch_id, branch in sorted(tree.branches.items())
        if branch.bifurcation is not None
    ]

    return AirwayTreeResult(
        tree=tree,
        original_centreline_points=centreline + removed,
        centreline_points=centreline,
        bifurcation_points=bifurcations,
        removed_points=removed,
        start_point=tree.start_point,
        radii=radii,
        diagnostics=list(diagnostics or []),
        spacing=tuple(float(s) for s in spacing),
        origin=as_coord(origin),
    )
