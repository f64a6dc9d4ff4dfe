"""Pipeline parameters and their JSON representation."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping


@dataclass
class SkeletonParams:
    """Thinning and tree decomposition settings."""

    # Seed points further than this (mm) from every endpoint are still used,
    # but a warning is logged.
    seed_tolerance_mm: float = 20.0


@dataclass
class PruningParams:
    """Trailing-branch removal settings."""

    voxel_limit: int = 150


@dataclass
class RadiusParams:
    """FWHM radius estimation settings."""

    num_rays: int = 16
    safety_factor: float = 3.0
    tangent_window: int = 2
    sample_step: float = 0.1  # fraction of the smallest voxel spacing
    background_samples: int = 3
    min_contrast: float = 1e-6
    workers: int = 1
    progress: bool = False


@dataclass
class PipelineConfig:
    skeleton: SkeletonParams = field(default_factory=SkeletonParams)
    pruning: PruningParams = field(default_factory=PruningParams)
    radius: RadiusParams = field(default_factory=RadiusParams)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.pruning.voxel_limit < 0:
            raise ValueError("pruning.voxel_limit must be non-negative.")
        if self.radius.num_rays < 8:
            raise ValueError(f"radius.num_rays must be at least 8, got {self.radius.num_rays}.")
        if self.radius.safety_factor <= 0:
            raise ValueError("radius.safety_factor must be positive.")
        if self.radius.sample_step <= 0:
            raise ValueError("radius.sample_step must be positive.")
        if self.radius.tangent_window < 1:
            raise ValueError("radius.tangent_window must be at least 1.")
        if self.radius.background_samples < 1:
            raise ValueError("radius.background_samples must be at least 1.")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a (possibly partial) mapping; unknown keys raise."""
        return cls(
            skeleton=SkeletonParams(**payload.get("skeleton", {})),
            pruning=PruningParams(**payload.get("pruning", {})),
            radius=RadiusParams(**payload.get("radius", {})),
        )

    @classmethod
    def load(cls, path: str | Path) -> "PipelineConfig":
        with Path(path).open("r", encoding="utf-8") as fh:
            return cls.from_dict(json.load(fh))

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as fh:
            json.dump(self.to_dict(), fh, indent=2)
