"""Exceptions and non-fatal diagnostics raised by the centreline pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from .graph_structure import Coord


class AirwayCentrelineError(Exception):
    """Base class for fatal pipeline errors."""


class ThinningTopologyViolation(AirwayCentrelineError):
    """Thinning changed the topology of a connected input component.

    Raised when thinning splits one 26-connected component into several
    pieces. Components erased entirely are restored to a single voxel.
    """

    def __init__(self, message: str, branch_id: Optional[int], coordinates: Sequence[Coord]) -> None:
        self.branch_id = branch_id
        self.coordinates = [tuple(int(v) for v in c) for c in coordinates]
        preview = ", ".join(str(c) for c in self.coordinates[:5])
        if len(self.coordinates) > 5:
            preview += ", ..."
        super().__init__(f"{message} (branch {branch_id}, voxels [{preview}])")


class PipelineCancelled(AirwayCentrelineError):
    """The caller requested cancellation between two units of work."""


class DiagnosticKind(str, Enum):
    INPUT_EMPTY = "input_empty"
    INPUT_DISCONNECTED = "input_disconnected"
    RADIUS_ESTIMATION_AMBIGUOUS = "radius_estimation_ambiguous"
    VOLUME_OUT_OF_BOUNDS = "volume_out_of_bounds"


@dataclass
class Diagnostic:
    """Non-fatal condition recorded on the result."""

    kind: DiagnosticKind
    message: str
    branch_id: Optional[int] = None
    point: Optional[Coord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "branch_id": self.branch_id,
            "point": None if self.point is None else list(self.point),
        }
