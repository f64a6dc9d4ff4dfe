"""Label volume rendering of centreline results."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from .graph_structure import PointClass
from .io import VolumeData
from .result import AirwayTreeResult

logger = logging.getLogger(__name__)

LABEL_VALUES: Dict[PointClass, int] = {
    PointClass.SKELETON: 1,
    PointClass.ORIGINAL_CENTRELINE: 2,
    PointClass.BIFURCATION: 3,
    PointClass.START: 4,
    PointClass.REMOVED: 6,
}


def render_label_volume(
    result: AirwayTreeResult,
    template: Optional[VolumeData] = None,
    shape: Optional[Sequence[int]] = None,
    origin: Optional[Sequence[int]] = None,
) -> np.ndarray:
    """Paint every classified point into a uint8 volume on the template grid.

    The grid is taken from ``template`` or from explicit ``shape``/``origin``
    (global index of the first template voxel). Layers are written original
    centreline, centreline, removed, bifurcation, start; unlabelled voxels
    stay 0.
    """
    if template is not None:
        shape = template.shape if shape is None else shape
        origin = template.origin if origin is None else origin
    if shape is None:
        raise ValueError("A template volume or an explicit shape is required.")
    if origin is None:
        origin = (0, 0, 0)
    shape_arr = np.asarray(shape, dtype=np.int64)
    # local result index -> local template index
    offset = np.asarray(result.origin, dtype=np.int64) - np.asarray(origin, dtype=np.int64)

    labels = np.zeros(tuple(int(s) for s in shape_arr), dtype=np.uint8)
    skipped = 0
    for point_class, points in result.class_layers():
        if not points:
            continue
        local = np.asarray(points, dtype=np.int64).reshape(-1, 3) + offset
        inside = np.all((local >= 0) & (local < shape_arr), axis=1)
        skipped += int((~inside).sum())
        labels[tuple(local[inside].T)] = LABEL_VALUES[point_class]

    if skipped:
        logger.debug("Skipped %d points outside the template of shape %s", skipped, tuple(shape_arr))
    return labels
