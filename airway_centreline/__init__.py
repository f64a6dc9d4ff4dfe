"""Airway centreline extraction and radius estimation from segmented CT."""

from .centerline import radius_prior_from_distance_transform, skeletonize_tree
from .config import PipelineConfig, PruningParams, RadiusParams, SkeletonParams
from .errors import (
    AirwayCentrelineError,
    Diagnostic,
    DiagnosticKind,
    PipelineCancelled,
    ThinningTopologyViolation,
)
from .graph_structure import AirwayTree, Branch, PointClass
from .io import VolumeData, load_mask, load_pair, load_volume, save_label_volume
from .pipeline import run_airway_centreline
from .pruning import remove_trailing_endpoints
from .radius import estimate_radii, fwhm_crossing
from .render import LABEL_VALUES, render_label_volume
from .result import AirwayTreeResult, assemble_result
from .segmentation_interface import SegmentedBranch, SegmentedTreeInput

__all__ = [
    "AirwayCentrelineError",
    "AirwayTree",
    "AirwayTreeResult",
    "Branch",
    "Diagnostic",
    "DiagnosticKind",
    "LABEL_VALUES",
    "PipelineCancelled",
    "PipelineConfig",
    "PointClass",
    "PruningParams",
    "RadiusParams",
    "SegmentedBranch",
    "SegmentedTreeInput",
    "SkeletonParams",
    "ThinningTopologyViolation",
    "VolumeData",
    "assemble_result",
    "estimate_radii",
    "fwhm_crossing",
    "load_mask",
    "load_pair",
    "load_volume",
    "radius_prior_from_distance_transform",
    "remove_trailing_endpoints",
    "render_label_volume",
    "run_airway_centreline",
    "save_label_volume",
    "skeletonize_tree",
]
