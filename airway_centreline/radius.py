"""Sub-voxel airway radius estimation from intensity profiles (FWHM).

For every centreline point a set of rays is cast in the plane orthogonal to
the local centreline tangent. Each ray's intensity profile is sampled with
trilinear interpolation and the radius along that ray is the distance at
which the profile crosses half way between its peak and the background.
The point radius is the median over all rays with a clean single crossing.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed
from scipy import ndimage
from tqdm import tqdm

from .centerline import CancelCheck, radius_prior_from_distance_transform
from .config import RadiusParams
from .errors import Diagnostic, DiagnosticKind, PipelineCancelled
from .graph_structure import AirwayTree, Branch, as_coord

logger = logging.getLogger(__name__)

SMALL_EPS = 1e-6


def _local_frame(tangent: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Two unit vectors spanning the plane orthogonal to ``tangent``."""
    reference = np.array([0.0, 0.0, 1.0])
    if abs(np.dot(tangent, reference)) > 0.95:
        reference = np.array([0.0, 1.0, 0.0])

    normal = np.cross(tangent, reference)
    normal /= max(np.linalg.norm(normal), SMALL_EPS)
    binormal = np.cross(tangent, normal)
    binormal /= max(np.linalg.norm(binormal), SMALL_EPS)
    return normal, binormal


def branch_tangents(points: np.ndarray, context: np.ndarray, window: int) -> np.ndarray:
    """Unit tangents by central difference over +/- ``window`` path points.

    ``points`` and ``context`` are physical coordinates; ``context`` holds the
    parent's trailing points and only extends the difference stencil.
    """
    path = np.vstack([context, points]) if context.size else points
    offset = path.shape[0] - points.shape[0]
    last = path.shape[0] - 1
    tangents = np.zeros_like(points, dtype=np.float64)
    for i in range(points.shape[0]):
        j = i + offset
        forward = path[min(j + window, last)] - path[max(j - window, 0)]
        norm = np.linalg.norm(forward)
        if norm < SMALL_EPS:
            tangents[i] = (0.0, 0.0, 1.0)
        else:
            tangents[i] = forward / norm
    return tangents


def ray_directions(tangent: np.ndarray, num_rays: int) -> np.ndarray:
    """``num_rays`` unit vectors evenly spaced in angle around ``tangent``."""
    normal, binormal = _local_frame(tangent)
    angles = np.linspace(0.0, 2 * math.pi, num_rays, endpoint=False)
    return np.cos(angles)[:, None] * normal + np.sin(angles)[:, None] * binormal


def fwhm_crossing(
    profile: np.ndarray,
    distances: np.ndarray,
    background_samples: int = 3,
    min_contrast: float = 1e-6,
) -> Optional[float]:
    """Distance where ``profile`` crosses half way from its peak to the background.

    The background is the mean of the last ``background_samples`` samples and
    the peak is the profile extremum on the same side as the ray origin, so
    bright and dark lumens are handled alike. Returns ``None`` unless the
    profile crosses the threshold exactly once, going from the peak side to
    the background side.
    """
    profile = np.asarray(profile, dtype=np.float64)
    if profile.size < 2 or not np.all(np.isfinite(profile)):
        return None
    background = float(profile[-background_samples:].mean())
    bright = profile[0] >= background
    peak = float(profile.max() if bright else profile.min())
    if abs(peak - background) < min_contrast:
        return None

    threshold = 0.5 * (peak + background)
    inside = profile >= threshold if bright else profile <= threshold
    changes = np.nonzero(inside[:-1] != inside[1:])[0]
    if changes.size != 1 or not inside[changes[0]]:
        return None

    i = int(changes[0])
    v0, v1 = profile[i], profile[i + 1]
    t = (threshold - v0) / (v1 - v0)
    return float(distances[i] + t * (distances[i + 1] - distances[i]))


def _estimate_branch(
    branch: Branch,
    context: np.ndarray,
    intensity: np.ndarray,
    spacing: np.ndarray,
    prior_mm: float,
    params: RadiusParams,
    out: np.ndarray,
) -> List[Diagnostic]:
    """Fill ``out`` (one slot per branch point) with radii; NaN where ambiguous."""
    diagnostics: List[Diagnostic] = []
    points_vox = branch.points.astype(np.float64)
    tangents = branch_tangents(points_vox * spacing, context * spacing, params.tangent_window)

    step = params.sample_step * float(spacing.min())
    max_length = max(prior_mm * params.safety_factor, 2 * step)
    distances = np.arange(0.0, max_length + 0.5 * step, step)
    upper = np.asarray(intensity.shape, dtype=np.float64) - 1.0

    out_of_bounds = 0
    for idx in range(points_vox.shape[0]):
        directions = ray_directions(tangents[idx], params.num_rays)
        # (rays, samples, 3) in voxel coordinates
        positions = points_vox[idx] + (directions[:, None, :] * distances[None, :, None]) / spacing
        in_bounds = np.all((positions >= 0.0) & (positions <= upper), axis=(1, 2))
        out_of_bounds += int((~in_bounds).sum())

        profiles = ndimage.map_coordinates(
            intensity, positions.reshape(-1, 3).T, order=1, mode="nearest"
        ).reshape(params.num_rays, distances.size)

        valid = []
        for ray in np.nonzero(in_bounds)[0]:
            crossing = fwhm_crossing(
                profiles[ray],
                distances,
                background_samples=params.background_samples,
                min_contrast=params.min_contrast,
            )
            if crossing is not None:
                valid.append(crossing)

        if 2 * len(valid) < params.num_rays:
            point = as_coord(branch.points[idx])
            diagnostics.append(
                Diagnostic(
                    DiagnosticKind.RADIUS_ESTIMATION_AMBIGUOUS,
                    f"Only {len(valid)} of {params.num_rays} rays gave a single FWHM crossing.",
                    branch_id=branch.id,
                    point=point,
                )
            )
            out[idx] = np.nan
        else:
            out[idx] = float(np.median(valid))

    num_ambiguous = sum(d.kind is DiagnosticKind.RADIUS_ESTIMATION_AMBIGUOUS for d in diagnostics)
    if num_ambiguous:
        logger.warning("Branch %d: radius ambiguous at %d of %d points", branch.id, num_ambiguous, len(out))
    if out_of_bounds:
        logger.warning("Branch %d: %d rays left the volume", branch.id, out_of_bounds)
        diagnostics.append(
            Diagnostic(
                DiagnosticKind.VOLUME_OUT_OF_BOUNDS,
                f"{out_of_bounds} rays left the volume and were discarded.",
                branch_id=branch.id,
            )
        )
    return diagnostics


def _parent_context(tree: AirwayTree, branch: Branch, window: int) -> np.ndarray:
    if branch.parent_id is None:
        return np.zeros((0, 3), dtype=np.float64)
    parent = tree.get_branch(branch.parent_id)
    return parent.points[-window:].astype(np.float64).reshape(-1, 3)


def estimate_radii(
    tree: AirwayTree,
    mask: np.ndarray,
    intensity: np.ndarray,
    spacing: Sequence[float],
    radius_prior: Optional[Mapping[int, float]] = None,
    params: Optional[RadiusParams] = None,
    should_cancel: CancelCheck = None,
) -> List[Diagnostic]:
    """Annotate every live branch of ``tree`` with per-point radii (mm).

    ``radius_prior`` maps branch id to a coarse radius in mm; branches without
    a usable prior fall back to the distance transform of ``mask``. Branch
    ``radii`` are only assigned once every branch has been processed, so a
    cancelled run leaves the tree untouched.
    """
    params = params or RadiusParams()
    intensity = np.asarray(intensity, dtype=np.float32)
    if intensity.shape != np.asarray(mask).shape:
        raise ValueError(f"Intensity/mask shape mismatch: {intensity.shape} vs {np.asarray(mask).shape}")
    spacing_arr = np.asarray(spacing, dtype=np.float64)
    priors: Dict[int, float] = dict(radius_prior or {})

    branches = [br for br in tree.iter_depth_first() if br.num_points() > 0]
    if any(not _usable(priors.get(br.id)) for br in branches):
        fallback = radius_prior_from_distance_transform(mask, tree, spacing_arr)
        for br in branches:
            if not _usable(priors.get(br.id)):
                priors[br.id] = fallback.get(br.id, 0.0) or float(spacing_arr.min())

    # One slot per centreline point, indexed by point id (DFS order).
    offsets = np.cumsum([0] + [br.num_points() for br in branches])
    values = np.full(int(offsets[-1]), np.nan, dtype=np.float64)

    def task(i: int) -> Optional[List[Diagnostic]]:
        if should_cancel is not None and should_cancel():
            return None
        branch = branches[i]
        return _estimate_branch(
            branch,
            _parent_context(tree, branch, params.tangent_window),
            intensity,
            spacing_arr,
            priors[branch.id],
            params,
            values[offsets[i]: offsets[i + 1]],
        )

    indices = tqdm(range(len(branches)), desc="radius", disable=not params.progress)
    if params.workers == 1:
        results = []
        for i in indices:
            results.append(task(i))
            if results[-1] is None:
                break
    else:
        n_jobs = params.workers if params.workers > 0 else -1
        results = Parallel(n_jobs=n_jobs, prefer="threads")(delayed(task)(i) for i in indices)
    if any(r is None for r in results):
        raise PipelineCancelled("Cancelled during radius estimation.")

    diagnostics: List[Diagnostic] = []
    for i, branch in enumerate(branches):
        branch.radii = values[offsets[i]: offsets[i + 1]].copy()
        diagnostics.extend(results[i])

    num_absent = int(np.isnan(values).sum())
    logger.info(
        "Estimated radii for %d points in %d branches (%d absent)",
        values.size - num_absent,
        len(branches),
        num_absent,
    )
    return diagnostics


def _usable(value: Optional[float]) -> bool:
    return value is not None and np.isfinite(value) and value > 0
