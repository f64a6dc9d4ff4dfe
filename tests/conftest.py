import itertools

import numpy as np
import pytest


def _segment_distance(points, a, b):
    ab = b - a
    t = np.clip(((points - a) @ ab) / float(ab @ ab), 0.0, 1.0)
    return np.linalg.norm(points - (a + t[:, None] * ab), axis=1)


def tube_phantom(shape, segments, radius, spacing=(1.0, 1.0, 1.0), supersample=1, contrast=100.0):
    """Union of capsules around voxel-space segments.

    Returns (mask, intensity). With ``supersample > 1`` the intensity is the
    partial-volume fraction inside the tube times ``contrast``; distances are
    physical (``radius`` in mm).
    """
    spacing = np.asarray(spacing, dtype=np.float64)
    base = np.indices(shape).reshape(3, -1).T.astype(np.float64)
    steps = (np.arange(supersample) + 0.5) / supersample - 0.5
    fraction = np.zeros(base.shape[0])
    for offset in itertools.product(steps, repeat=3):
        pts = (base + np.asarray(offset)) * spacing
        dist = np.min(
            [
                _segment_distance(pts, np.asarray(a, float) * spacing, np.asarray(b, float) * spacing)
                for a, b in segments
            ],
            axis=0,
        )
        fraction += dist <= radius
    fraction /= supersample ** 3
    intensity = (contrast * fraction).reshape(shape).astype(np.float32)
    mask = intensity >= 0.5 * contrast
    return mask, intensity


@pytest.fixture(scope="session")
def phantom():
    return tube_phantom


@pytest.fixture(scope="session")
def straight_tube():
    """Capsule of radius 3 along z, 50 voxels long."""
    return tube_phantom((40, 40, 80), [((20, 20, 15), (20, 20, 65))], 3.0, supersample=3)


@pytest.fixture(scope="session")
def y_tube():
    """Trunk along z splitting into two arms in the y-z plane; seed at the trunk end."""
    segments = [
        ((30, 30, 10), (30, 30, 40)),
        ((30, 30, 40), (30, 15, 65)),
        ((30, 30, 40), (30, 45, 65)),
    ]
    mask, intensity = tube_phantom((60, 60, 80), segments, 3.0, supersample=3)
    return mask, intensity, (30, 30, 10)


@pytest.fixture(scope="session")
def stub_tube():
    """Long tube along z with a short perpendicular stub half way; seed at the lower end."""
    segments = [
        ((20, 20, 5), (20, 20, 355)),
        ((20, 20, 180), (100, 20, 180)),
    ]
    mask, _ = tube_phantom((110, 40, 360), segments, 2.0)
    return mask, (20, 20, 5)


def line_points(start, length, axis=2):
    start = np.asarray(start, dtype=np.int64)
    points = np.repeat(start[None, :], length, axis=0)
    points[:, axis] += np.arange(length)
    return points


@pytest.fixture(scope="session")
def line():
    return line_points
