"""
===============================================================================
EPHEMVIZ - Orbit Path Coloring
===============================================================================
Colors the orbit polyline by a 1D in-situ parameter (NGIMS densities). The
parameter cadence is usually sparser than the ephemeris, so values are
aligned onto the ephemeris timestamps first; positions without a value are
drawn in the neutral color.
===============================================================================
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from ephemviz.core.samples import to_posix_seconds
from ephemviz.pipeline.ephemeris import EphemerisProducts
from ephemviz.services.render import PathPolyline

logger = logging.getLogger(__name__)


def align_parameter_to_times(times: Sequence[float], rows: Sequence[Sequence],
                             tolerance: float = 1e-6) -> List[Optional[float]]:
    """
    Align ``[time, value]`` rows onto ephemeris ``times``.

    When there are fewer rows than timestamps, both sequences are walked in
    order: a timestamp matching the next row (within ``tolerance`` seconds)
    takes its value and advances the row cursor, any other timestamp gets
    None. Otherwise the row values are returned as they are.

    Parameters
    ----------
    times : sequence of float
        Ephemeris timestamps (POSIX s), sorted.
    rows : sequence of sequence
        Parameter rows ``[time, value]``, sorted.

    Returns
    -------
    list
        One entry per timestamp (or per row when rows are not sparser).
    """
    if len(rows) >= len(times):
        return [_value(row) for row in rows]

    aligned: List[Optional[float]] = []
    cursor = 0
    for t in times:
        if cursor < len(rows) and abs(to_posix_seconds(rows[cursor][0]) - t) <= tolerance:
            aligned.append(_value(rows[cursor]))
            cursor += 1
        else:
            aligned.append(None)

    if cursor < len(rows):
        logger.warning("%d of %d parameter rows matched no ephemeris time",
                       len(rows) - cursor, len(rows))
    return aligned


def _value(row: Sequence) -> Optional[float]:
    try:
        value = float(row[1])
    except (TypeError, ValueError, IndexError):
        return None
    return value if np.isfinite(value) else None


def build_orbit_path(products: EphemerisProducts, values: Optional[Sequence[Optional[float]]],
                     color_mapper, palette: str = 'viridis') -> PathPolyline:
    """
    Orbit polyline with one color per ephemeris position.

    ``values`` of None (no parameter selected) draws the whole path in the
    neutral color.
    """
    positions = products.position_list
    aligned = list(values or [])[:len(positions)]
    aligned += [None] * (len(positions) - len(aligned))
    return PathPolyline(positions, color_mapper.interpolate_array(aligned, palette))
