"""
===============================================================================
EPHEMVIZ - Illumination
===============================================================================
Scene light direction for the current tick. The renderer lights the side of
the body facing away from the given direction, so the light is pointed at
the antipode of the sub-solar point (the opposite-hemisphere series).
===============================================================================
"""

from typing import Optional

import numpy as np

from ephemviz.core.constants import LIGHT_LOOKUP_TOLERANCE
from ephemviz.pipeline.ephemeris import EphemerisProducts


def light_direction(time: float, products: Optional[EphemerisProducts],
                    tolerance: float = LIGHT_LOOKUP_TOLERANCE) -> Optional[np.ndarray]:
    """
    Unit light direction at ``time``.

    Uses the opposite-hemisphere sample closest to ``time`` when it lies
    within ``tolerance`` seconds; None otherwise, in which case the caller
    keeps its previous light.
    """
    if products is None:
        return None

    series = products.opposite_hemisphere_solar
    index = series.nearest_index(time, tolerance)
    if index is None:
        return None

    direction = series.value_at_index(index)
    norm = np.linalg.norm(direction)
    if norm == 0.0:
        return None
    return direction / norm
