"""
===============================================================================
EPHEMVIZ - Renderable Descriptors and Sinks
===============================================================================
Plain descriptors handed to the rendering engine. The pipeline never talks
to a scene graph; it submits immutable descriptors per named layer and the
sink decides how to draw them. A new submission replaces the layer.

Layers used by the session:

    orbit_path         PathPolyline
    whiskers           LineSegment x N
    markers            PointMarker (spacecraft, ground track, sub-solar)
    shell              ShellSurface
    shell_rotation     ModelMatrix (per tick)
    path_rotation      ModelMatrix (per tick, inertial frame)
    light              DirectionalLight (per tick)
===============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence

import numpy as np

from ephemviz.services.colors import Color

logger = logging.getLogger(__name__)


# =============================================================================
# DESCRIPTORS
# =============================================================================

@dataclass(frozen=True)
class LineSegment:
    start: np.ndarray
    end: np.ndarray
    color: Color
    time: Optional[float] = None

    @property
    def length(self) -> float:
        return float(np.linalg.norm(self.end - self.start))


@dataclass(frozen=True)
class PointMarker:
    name: str
    position: np.ndarray
    time: Optional[float] = None


@dataclass(frozen=True)
class PathPolyline:
    positions: Sequence[np.ndarray]
    colors: Sequence[Color]
    width: float = 4.0


@dataclass(frozen=True)
class ShellSurface:
    """Model grid draped on a sphere of ``radius``."""
    pixels: np.ndarray          # (n_lat, n_lon, 4) uint8 RGBA
    latitudes: np.ndarray
    longitudes: np.ndarray
    radius: float


@dataclass(frozen=True)
class ModelMatrix:
    matrix: np.ndarray          # 4x4


@dataclass(frozen=True)
class DirectionalLight:
    direction: np.ndarray


# =============================================================================
# SINKS
# =============================================================================

class RenderableSink(Protocol):
    def submit(self, layer: str, renderables: Sequence) -> None:
        ...


class RecordingSink:
    """Keeps the latest submission of each layer; used by the CLI and tests."""

    def __init__(self) -> None:
        self.layers: Dict[str, List] = {}
        self.submissions = 0

    def submit(self, layer: str, renderables: Sequence) -> None:
        self.layers[layer] = list(renderables)
        self.submissions += 1
        logger.debug("Layer %s <- %d renderables", layer, len(self.layers[layer]))

    def latest(self, layer: str) -> List:
        return self.layers.get(layer, [])
