"""
===============================================================================
EPHEMVIZ - Vector Whisker Transformer
===============================================================================
Turns rows of a 3-component vector parameter (magnetic field, ion flow
velocity, characteristic directions; all in MSO) into short colored line
segments anchored on the spacecraft trajectory.

Per row:
    1. Body-fixed frame only: rotate the vector by the MSO -> body-fixed
       matrix of the same row index.
    2. Compress the magnitude:  v' = v * log10(|v| + 1) / |v|
       (a zero vector stays zero).
Over the whole call:
    3. min / max of the compressed magnitudes; one color per vector.
Per kept row (every Nth):
    4. Spacecraft position at the row time. Inertial frame: rotate it back
       into the fixed frame with the transpose of fixed -> inertial.
    5. Display length = (|v'| - min) / (max - min) * max_length along v',
       endpoint = position + that vector.

A row without a matrix or a position is skipped and logged; it never aborts
the transform.
===============================================================================
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ephemviz.config import WhiskerConfig
from ephemviz.core.constants import WHISKER_PARAMETERS
from ephemviz.core.errors import MalformedRow, MissingFrameMatrix
from ephemviz.core.samples import SampledSeries, to_posix_seconds
from ephemviz.pipeline.reference_frame import FrameProvider, ReferenceFrame
from ephemviz.services.colors import Color, ColorMapper
from ephemviz.services.render import LineSegment

logger = logging.getLogger(__name__)


# =============================================================================
# SOURCES AND ROWS
# =============================================================================

class WhiskerSource(Enum):
    """Instrument dataset a vector parameter comes from."""
    MAG = 'in_situ_kp_mag'
    STATIC = 'in_situ_kp_static'
    SWIA = 'in_situ_kp_swia'

    @property
    def dataset(self) -> str:
        return self.value

    @classmethod
    def from_dataset(cls, dataset: str) -> 'WhiskerSource':
        try:
            return cls(dataset)
        except ValueError:
            raise ValueError(f"Not a vector dataset: {dataset!r}") from None

    @classmethod
    def for_parameter(cls, parameter: str) -> 'WhiskerSource':
        if parameter not in WHISKER_PARAMETERS:
            raise ValueError(f"Unknown vector parameter {parameter!r}")
        return cls.from_dataset(WHISKER_PARAMETERS[parameter][0])


@dataclass(frozen=True)
class WhiskerRow:
    time: float
    x: float
    y: float
    z: float

    @classmethod
    def from_row(cls, row: Sequence) -> 'WhiskerRow':
        """Decode ``[time, x, y, z]``."""
        if len(row) < 4:
            raise MalformedRow(f"Expected 4 columns, got {len(row)}")
        try:
            return cls(to_posix_seconds(row[0]),
                       float(row[1]), float(row[2]), float(row[3]))
        except (TypeError, ValueError) as exc:
            raise MalformedRow(f"Undecodable vector row {row!r}: {exc}") from exc

    @property
    def vector(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)


@dataclass(frozen=True)
class WhiskerData:
    """Vector rows tagged with their source, resolved once at fetch time."""
    source: WhiskerSource
    parameter: str
    rows: Tuple[WhiskerRow, ...]


def decode_whisker_rows(source: WhiskerSource, parameter: str,
                        rows: Sequence[Sequence]) -> WhiskerData:
    """Decode raw rows into tagged WhiskerData.

    A malformed row becomes an all-NaN placeholder so row indices stay
    aligned with the rotation matrix series; the transformer skips it.
    """
    decoded = []
    for index, row in enumerate(rows):
        try:
            decoded.append(WhiskerRow.from_row(row))
        except MalformedRow as exc:
            logger.warning("Malformed %s row %d: %s", parameter, index, exc)
            decoded.append(WhiskerRow(np.nan, np.nan, np.nan, np.nan))
    return WhiskerData(source, parameter, tuple(decoded))


# =============================================================================
# SCALING
# =============================================================================

def compress_vector(vector: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Logarithmic magnitude compression.

    Returns
    -------
    scaled : np.ndarray
        ``vector * log10(|v| + 1) / |v|``; the zero vector is returned
        unchanged.
    magnitude : float
        Magnitude of ``scaled``, i.e. ``log10(|v| + 1)``.
    """
    v = np.asarray(vector, dtype=np.float64)
    magnitude = float(np.linalg.norm(v))
    if magnitude == 0.0:
        return v.copy(), 0.0
    scaled = v * (np.log10(magnitude + 1.0) / magnitude)
    return scaled, float(np.linalg.norm(scaled))


def stride_indices(length: int, stride: int) -> range:
    """Indices kept for display: ``ceil(length / stride)`` multiples of stride."""
    if stride < 1:
        raise ValueError(f"stride must be >= 1, got {stride}")
    return range(0, max(length, 0), stride)


def display_length(magnitude: float, minimum: float, maximum: float,
                   max_length: float) -> float:
    """Linear rescale of ``magnitude`` from [minimum, maximum] to [0, max_length].

    A degenerate range (every magnitude equal) maps to ``max_length``.
    """
    if maximum == minimum:
        return max_length
    return (magnitude - minimum) / (maximum - minimum) * max_length


# =============================================================================
# TRANSFORMER
# =============================================================================

@dataclass(frozen=True)
class WhiskerVector:
    timestamp: float
    raw_vector: np.ndarray
    magnitude: float
    scaled_endpoint: np.ndarray
    color: Color


@dataclass
class RenderableVectorSet:
    segments: List[LineSegment] = field(default_factory=list)
    vectors: List[WhiskerVector] = field(default_factory=list)
    min_magnitude: float = 0.0
    max_magnitude: float = 0.0
    candidates: int = 0
    skipped: Dict[int, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.segments)


class WhiskerTransformer:
    """
    Parameters
    ----------
    color_mapper : ColorMapper
        Maps compressed magnitudes to colors.
    config : WhiskerConfig
        Stride, maximum display length, alpha and palette.
    """

    def __init__(self, color_mapper: ColorMapper,
                 config: Optional[WhiskerConfig] = None) -> None:
        self.color_mapper = color_mapper
        self.config = config or WhiskerConfig()

    def transform(self, rows: Sequence[WhiskerRow], frame: ReferenceFrame,
                  rotation_matrices: Sequence[np.ndarray],
                  position_series: SampledSeries,
                  frame_provider: Optional[FrameProvider] = None) -> RenderableVectorSet:
        """
        Build whisker segments for one vector parameter.

        Parameters
        ----------
        rows : sequence of WhiskerRow
            Vector rows, index-aligned with ``rotation_matrices``.
        frame : ReferenceFrame
            Frame the spacecraft positions were produced in.
        rotation_matrices : sequence of np.ndarray
            MSO -> body-fixed matrices, one per row. Only read in the
            body-fixed frame.
        position_series : SampledSeries
            Spacecraft positions from the current ephemeris generation.
        frame_provider : FrameProvider, optional
            Required in the inertial frame.

        Returns
        -------
        RenderableVectorSet
        """
        cfg = self.config
        result = RenderableVectorSet()
        compressed: Dict[int, Tuple[np.ndarray, float]] = {}

        for index, row in enumerate(rows):
            vector = row.vector
            if not np.all(np.isfinite(vector)):
                result.skipped[index] = 'non-finite vector'
                continue
            if frame is ReferenceFrame.BODY_FIXED:
                if index >= len(rotation_matrices) or rotation_matrices[index] is None:
                    exc = MissingFrameMatrix(row.time, f"no MSO matrix for row {index}")
                    result.skipped[index] = str(exc)
                    continue
                vector = np.asarray(rotation_matrices[index], dtype=np.float64) @ vector
            compressed[index] = compress_vector(vector)

        if not compressed:
            logger.warning("No usable vectors in %d rows", len(rows))
            return result

        magnitudes = [m for _, m in compressed.values()]
        result.min_magnitude = lo = min(magnitudes)
        result.max_magnitude = hi = max(magnitudes)

        for index in stride_indices(len(rows), cfg.stride):
            result.candidates += 1
            if index not in compressed:
                continue
            row = rows[index]
            vector, magnitude = compressed[index]

            position = position_series.get_value(row.time)
            if position is None:
                result.skipped[index] = 'no spacecraft position'
                continue

            if frame is ReferenceFrame.INERTIAL:
                matrix = None if frame_provider is None else frame_provider.fixed_to_inertial(row.time)
                if matrix is None:
                    exc = MissingFrameMatrix(row.time, 'inertial whisker anchor')
                    logger.error("Failed to get inertial transform: %s", exc)
                    result.skipped[index] = str(exc)
                    continue
                position = np.asarray(matrix, dtype=np.float64).T @ position

            if magnitude == 0.0:
                offset = vector
            else:
                offset = vector * (display_length(magnitude, lo, hi, cfg.max_length_m) / magnitude)
            endpoint = position + offset

            color = self.color_mapper.interpolate(magnitude, lo, hi, cfg.palette).with_alpha(cfg.alpha)
            result.vectors.append(WhiskerVector(row.time, row.vector, magnitude, endpoint, color))
            result.segments.append(LineSegment(position, endpoint, color, row.time))

        logger.info("Whiskers: %d segments from %d rows (stride %d, %d skipped), "
                    "|v'| in [%.4g, %.4g]", len(result.segments), len(rows),
                    cfg.stride, len(result.skipped), lo, hi)
        return result
