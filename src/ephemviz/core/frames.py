"""
===============================================================================
EPHEMVIZ - Reference Frame Geometry
===============================================================================
Geodetic <-> body-fixed Cartesian conversion on a biaxial body ellipsoid,
the elementary polar-axis rotation, and the small matrix helpers the
pipeline composes into model matrices for the renderer.

Frames used by the pipeline:

    Body-fixed (IAU_MARS) -> rotates with the planet; telemetry lat/lon/alt
    Inertial              -> non-rotating, reached through a frame provider
    MSO                   -> Mars-Solar-Orbital, frame of vector telemetry

All functions take and return NumPy arrays. Public geodetic functions take
angles in degrees since that is how the telemetry arrives.

References
----------
    [1] Vallado, "Fundamentals of Astrodynamics and Applications", 4th ed.
    [2] Bowring, "Transformation from spatial to geographical coordinates",
        Survey Review, 1976.

===============================================================================
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from ephemviz.core.constants import DEG2RAD, RAD2DEG, MARS_RADIUS


# =============================================================================
# ELEMENTARY ROTATION
# =============================================================================

def Rz(angle: float) -> np.ndarray:
    """
    Elementary frame rotation about the polar (Z) axis.

        Rz(a) = |  cos(a)  sin(a)  0 |
                | -sin(a)  cos(a)  0 |
                |    0       0     1 |

    Parameters
    ----------
    angle : float
        Rotation angle in radians.

    Returns
    -------
    np.ndarray
        3x3 rotation matrix.
    """
    c = np.cos(angle)
    s = np.sin(angle)
    return np.array([
        [  c,    s,  0.0],
        [ -s,    c,  0.0],
        [0.0,  0.0,  1.0],
    ], dtype=np.float64)


# =============================================================================
# BODY ELLIPSOID
# =============================================================================

@dataclass(frozen=True)
class Ellipsoid:
    """
    Biaxial body ellipsoid.

    Parameters
    ----------
    equatorial_radius : float
        Semi-major axis a (m).
    polar_radius : float
        Semi-minor axis b (m). Equal to ``a`` for a sphere.
    """
    equatorial_radius: float
    polar_radius: float

    def __post_init__(self) -> None:
        if self.equatorial_radius <= 0.0 or self.polar_radius <= 0.0:
            raise ValueError(
                f"Ellipsoid radii must be positive, got "
                f"a={self.equatorial_radius}, b={self.polar_radius}"
            )

    @classmethod
    def from_radii(cls, radii: Sequence[float]) -> 'Ellipsoid':
        """Build from ``[x, y, z]`` radii; x and y must agree."""
        x, y, z = (float(r) for r in radii)
        if not np.isclose(x, y):
            raise ValueError(f"Triaxial ellipsoids are not supported: {radii}")
        return cls(x, z)

    @classmethod
    def sphere(cls, radius: float) -> 'Ellipsoid':
        return cls(radius, radius)

    @property
    def flattening(self) -> float:
        return (self.equatorial_radius - self.polar_radius) / self.equatorial_radius

    @property
    def eccentricity_sq(self) -> float:
        f = self.flattening
        return 2.0 * f - f * f

    @property
    def maximum_radius(self) -> float:
        return max(self.equatorial_radius, self.polar_radius)

    def cartographic_to_cartesian(self, lat_deg: float, lon_deg: float,
                                  height: float) -> np.ndarray:
        """
        Geodetic latitude/longitude/height to body-fixed Cartesian.

        Uses the prime vertical radius of curvature:

            N = a / sqrt(1 - e^2 sin^2(lat))
            x = (N + h) cos(lat) cos(lon)
            y = (N + h) cos(lat) sin(lon)
            z = (N (1 - e^2) + h) sin(lat)

        Parameters
        ----------
        lat_deg, lon_deg : float
            Geodetic latitude and longitude in degrees.
        height : float
            Height above the ellipsoid (m).

        Returns
        -------
        np.ndarray
            3-element body-fixed position (m).
        """
        lat = lat_deg * DEG2RAD
        lon = lon_deg * DEG2RAD
        e2 = self.eccentricity_sq

        sin_lat = np.sin(lat)
        cos_lat = np.cos(lat)
        N = self.equatorial_radius / np.sqrt(1.0 - e2 * sin_lat * sin_lat)

        return np.array([
            (N + height) * cos_lat * np.cos(lon),
            (N + height) * cos_lat * np.sin(lon),
            (N * (1.0 - e2) + height) * sin_lat,
        ], dtype=np.float64)

    def cartesian_to_cartographic(self, r: np.ndarray) -> Tuple[float, float, float]:
        """
        Body-fixed Cartesian to geodetic (lat_deg, lon_deg, height).

        Bowring's iteration on the reduced latitude; converges in a few
        steps for any height and is exact in one step for a sphere.

        Returns
        -------
        tuple of (float, float, float)
            Latitude (deg), longitude (deg), height above ellipsoid (m).
        """
        r = np.asarray(r, dtype=np.float64)
        x, y, z = r[0], r[1], r[2]

        a = self.equatorial_radius
        b = self.polar_radius
        f = self.flattening
        e2 = self.eccentricity_sq
        ep2 = (a * a - b * b) / (b * b)

        lon = np.arctan2(y, x)
        p = np.sqrt(x * x + y * y)
        lat = np.arctan2(z, p * (1.0 - e2))

        for _ in range(5):
            beta = np.arctan2((1.0 - f) * np.sin(lat), np.cos(lat))
            sin_beta = np.sin(beta)
            cos_beta = np.cos(beta)
            lat = np.arctan2(
                z + ep2 * b * sin_beta ** 3,
                p - e2 * a * cos_beta ** 3,
            )

        sin_lat = np.sin(lat)
        cos_lat = np.cos(lat)
        N = a / np.sqrt(1.0 - e2 * sin_lat * sin_lat)

        # Pole: p / cos(lat) is undefined
        if abs(cos_lat) > 1e-10:
            height = p / cos_lat - N
        else:
            height = abs(z) - b

        return (float(lat * RAD2DEG), float(lon * RAD2DEG), float(height))


MARS_IAU2000 = Ellipsoid.sphere(MARS_RADIUS)


# =============================================================================
# MATRIX HELPERS
# =============================================================================

def matrix_from_row_major(values: Sequence[float]) -> np.ndarray:
    """
    Nine row-major values to a 3x3 matrix.

    Raises
    ------
    ValueError
        If ``values`` does not hold exactly nine finite numbers.
    """
    m = np.asarray([float(v) for v in values], dtype=np.float64)
    if m.shape != (9,) or not np.all(np.isfinite(m)):
        raise ValueError(f"Expected 9 finite matrix cells, got {values!r}")
    return m.reshape(3, 3)


def model_matrix(rotation: np.ndarray = None,
                 translation: np.ndarray = None,
                 scale: float = 1.0) -> np.ndarray:
    """
    4x4 homogeneous model matrix ``T * R * S``.

    Parameters
    ----------
    rotation : np.ndarray, optional
        3x3 rotation. Identity when omitted.
    translation : np.ndarray, optional
        3-element translation. Zero when omitted.
    scale : float
        Uniform scale.

    Returns
    -------
    np.ndarray
        4x4 matrix.
    """
    m = np.eye(4, dtype=np.float64)
    if rotation is not None:
        m[:3, :3] = np.asarray(rotation, dtype=np.float64)
    m[:3, :3] *= scale
    if translation is not None:
        m[:3, 3] = np.asarray(translation, dtype=np.float64)
    return m
