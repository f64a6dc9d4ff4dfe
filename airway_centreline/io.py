"""I/O utilities for CT volumes, airway masks and label volumes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import nibabel as nib
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class VolumeData:
    """Container for volumetric data and metadata.

    ``origin`` is the global voxel index of ``data[0, 0, 0]``; it lets a
    cropped region of interest map centreline coordinates back into a larger
    template.
    """

    data: np.ndarray
    affine: np.ndarray
    spacing: Tuple[float, float, float]
    path: Optional[Path] = None
    origin: Tuple[int, int, int] = (0, 0, 0)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return tuple(int(s) for s in self.data.shape[:3])


def load_nifti(path: str | Path) -> Tuple[np.ndarray, dict]:
    """Load a NIfTI file and return array + meta dict."""
    path = Path(path)
    image = nib.load(str(path))
    data = image.get_fdata()
    spacing = tuple(float(x) for x in image.header.get_zooms()[:3])
    meta = {"affine": image.affine, "spacing": spacing, "path": path}
    logger.debug("Loaded %s with shape %s and spacing %s", path, data.shape, spacing)
    return data, meta


def _as_volume(data: np.ndarray, meta: dict) -> VolumeData:
    return VolumeData(data=data, affine=meta["affine"], spacing=meta["spacing"], path=meta["path"])


def load_volume(path: str | Path) -> VolumeData:
    """Load a CT volume as float32 (Hounsfield units for CT)."""
    arr, meta = load_nifti(path)
    return _as_volume(arr.astype(np.float32), meta)


def load_mask(path: str | Path, threshold: float = 0.5) -> VolumeData:
    """Load a segmentation and binarise it; any label above ``threshold`` is airway."""
    arr, meta = load_nifti(path)
    return _as_volume((arr > threshold).astype(np.uint8), meta)


def load_pair(volume_path: str | Path, mask_path: str | Path) -> Tuple[VolumeData, VolumeData]:
    """Load intensity volume and airway mask; both must share the voxel grid."""
    vol = load_volume(volume_path)
    mask = load_mask(mask_path)
    if vol.shape != mask.shape:
        raise ValueError(f"Volume/mask shape mismatch: {vol.shape} vs {mask.shape}")
    if not np.allclose(vol.spacing, mask.spacing):
        logger.warning("Volume spacing %s differs from mask spacing %s; using the volume's.", vol.spacing, mask.spacing)
    return vol, mask


def save_label_volume(labels: np.ndarray, template: VolumeData, path: str | Path) -> None:
    """Write a uint8 label volume on the grid of ``template``."""
    if tuple(labels.shape) != template.shape:
        raise ValueError(f"Label shape {labels.shape} does not match template shape {template.shape}")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    nib.save(nib.Nifti1Image(labels.astype(np.uint8), template.affine), str(path))
