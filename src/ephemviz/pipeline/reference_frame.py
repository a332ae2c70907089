"""
===============================================================================
EPHEMVIZ - Reference-Frame Transformer
===============================================================================
Converts geodetic telemetry into Cartesian positions in the selected frame.

    body-fixed   r = ellipsoid(lat, lon, h)
    inertial     r = M_fixed->inertial(t) @ ellipsoid(lat, lon, h)

The inertial matrices come from a frame provider keyed by timestamp. A
provider may not have data preloaded for a given instant; that instant is
then treated as identity-rotated. The result is degraded but not fatal, and
it is logged and counted.

Frame selection is owned here. Changing it bumps a revision number and
notifies listeners, which must re-derive every dependent series: a frame
change is a whole-series operation.
===============================================================================
"""

import logging
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

import numpy as np

from ephemviz.core.constants import MARS_ROTATION_RATE, ROTATION_MATRIX_FIELDS
from ephemviz.core.errors import MalformedRow
from ephemviz.core.frames import Ellipsoid, Rz, matrix_from_row_major, model_matrix

logger = logging.getLogger(__name__)


# =============================================================================
# FRAME SELECTION
# =============================================================================

class ReferenceFrame(Enum):
    BODY_FIXED = 'body_fixed'
    INERTIAL = 'inertial'

    @classmethod
    def from_name(cls, name: str) -> 'ReferenceFrame':
        """Accepts ``fixed``, ``body_fixed`` or ``inertial`` (any case)."""
        key = str(name).strip().lower()
        if key in ('fixed', 'body_fixed', 'body-fixed'):
            return cls.BODY_FIXED
        if key == 'inertial':
            return cls.INERTIAL
        raise ValueError(f"Unknown reference frame {name!r}")


# =============================================================================
# FRAME PROVIDERS
# =============================================================================

class FrameProvider(Protocol):
    """Source of body-fixed <-> inertial rotation matrices.

    Either method returns None when no transform is loaded for ``time``.
    """

    def fixed_to_inertial(self, time: float) -> Optional[np.ndarray]:
        ...

    def inertial_to_fixed(self, time: float) -> Optional[np.ndarray]:
        ...


class UniformRotationFrameProvider:
    """
    Body spinning at a constant rate about its polar axis.

    At ``epoch`` the frames coincide. The rotation angle at time t is

        theta = rotation_rate * (t - epoch)

    and the inertial position is obtained by undoing that spin:

        r_inertial = Rz(-theta) @ r_fixed

    Parameters
    ----------
    rotation_rate : float
        Sidereal rotation rate (rad/s).
    epoch : float
        POSIX time at which the frames are aligned.
    window : tuple of (float, float), optional
        Preloaded interval. Queries outside it return None.
    """

    def __init__(self, rotation_rate: float = MARS_ROTATION_RATE,
                 epoch: float = 0.0, window: Optional[Sequence[float]] = None) -> None:
        self.rotation_rate = rotation_rate
        self.epoch = epoch
        self.window = tuple(window) if window is not None else None

    def _angle(self, time: float) -> Optional[float]:
        if self.window is not None and not (self.window[0] <= time <= self.window[1]):
            return None
        return self.rotation_rate * (time - self.epoch)

    def fixed_to_inertial(self, time: float) -> Optional[np.ndarray]:
        theta = self._angle(time)
        return None if theta is None else Rz(-theta)

    def inertial_to_fixed(self, time: float) -> Optional[np.ndarray]:
        theta = self._angle(time)
        return None if theta is None else Rz(theta)


# =============================================================================
# TRANSFORMER
# =============================================================================

class ReferenceFrameTransformer:
    """
    Geodetic -> Cartesian conversion in the current reference frame.

    Parameters
    ----------
    ellipsoid : Ellipsoid
        Body shape used for the geodetic mapping.
    frame_provider : FrameProvider
        Source of fixed -> inertial matrices.
    frame : ReferenceFrame
        Initial frame selection.
    """

    def __init__(self, ellipsoid: Ellipsoid, frame_provider: FrameProvider,
                 frame: ReferenceFrame = ReferenceFrame.INERTIAL) -> None:
        self.ellipsoid = ellipsoid
        self.frame_provider = frame_provider
        self._frame = frame
        self._revision = 0
        self._listeners: List[Callable[[ReferenceFrame, int], None]] = []
        self.degraded_count = 0

    @property
    def frame(self) -> ReferenceFrame:
        return self._frame

    @property
    def revision(self) -> int:
        return self._revision

    def add_listener(self, callback: Callable[[ReferenceFrame, int], None]) -> None:
        """Register ``callback(frame, revision)`` for frame changes."""
        self._listeners.append(callback)

    def set_frame(self, frame: ReferenceFrame) -> bool:
        """
        Select the active frame.

        Returns
        -------
        bool
            True if the selection changed. Listeners are only notified in
            that case.
        """
        if frame is self._frame:
            return False

        previous = self._frame
        self._frame = frame
        self._revision += 1
        logger.info("Reference frame %s -> %s (revision %d)",
                    previous.value, frame.value, self._revision)

        for callback in list(self._listeners):
            callback(frame, self._revision)
        return True

    def transform_position(self, lat_deg: float, lon_deg: float, height: float,
                           time: float,
                           frame: Optional[ReferenceFrame] = None) -> np.ndarray:
        """
        Geodetic point to a Cartesian position in ``frame``.

        Parameters
        ----------
        lat_deg, lon_deg : float
            Geodetic latitude and longitude (deg).
        height : float
            Height above the ellipsoid (m).
        time : float
            Sample instant (POSIX s), used to look up the inertial matrix.
        frame : ReferenceFrame, optional
            Overrides the current selection.

        Returns
        -------
        np.ndarray
            3-element position (m).
        """
        frame = frame or self._frame
        fixed = self.ellipsoid.cartographic_to_cartesian(lat_deg, lon_deg, height)
        if frame is ReferenceFrame.BODY_FIXED:
            return fixed

        matrix = self.frame_provider.fixed_to_inertial(time)
        if matrix is None:
            self.degraded_count += 1
            logger.debug("No fixed->inertial matrix at t=%.3f; using identity", time)
            return fixed
        return np.asarray(matrix, dtype=np.float64) @ fixed

    def to_fixed(self, position: np.ndarray, time: float) -> Optional[np.ndarray]:
        """Inertial position back to body-fixed, or None without a matrix."""
        matrix = self.frame_provider.fixed_to_inertial(time)
        if matrix is None:
            return None
        return np.asarray(matrix, dtype=np.float64).T @ np.asarray(position, dtype=np.float64)


# =============================================================================
# ROTATION MATRIX ROWS
# =============================================================================

def decode_rotation_matrices(rows: Sequence[Sequence], has_time: bool = True) -> List[np.ndarray]:
    """
    Decode body-fixed -> MSO matrix rows into MSO -> body-fixed matrices.

    Each row holds the nine cells of ``ROTATION_MATRIX_FIELDS`` in row-major
    order, optionally preceded by a time column. The stored matrix is the
    transpose, in row order, so index ``i`` matches vector row ``i``.

    Raises
    ------
    MalformedRow
        If a row does not hold nine numeric cells.
    """
    offset = 1 if has_time else 0
    width = len(ROTATION_MATRIX_FIELDS)
    matrices = []
    for index, row in enumerate(rows):
        cells = list(row)[offset:offset + width]
        try:
            geo_to_mso = matrix_from_row_major(cells)
        except (TypeError, ValueError) as exc:
            raise MalformedRow(f"Rotation matrix row {index}: {exc}") from exc
        matrices.append(geo_to_mso.T)
    return matrices


def orbit_path_model_matrix(time: float, frame_provider: FrameProvider) -> np.ndarray:
    """
    Per-tick model matrix for inertial-frame path and whisker primitives.

    Rotates inertial geometry into the body-fixed scene by the
    inertial -> fixed matrix at ``time``; identity when unavailable.
    """
    matrix = frame_provider.inertial_to_fixed(time)
    if matrix is None:
        return model_matrix()
    return model_matrix(rotation=matrix)
