"""
===============================================================================
EPHEMVIZ - Model Shell: Data Grid and Rotation Solver
===============================================================================
The atmospheric-model (M-GITM) shell is a translucent sphere textured with
one model parameter at a fixed altitude. The model is only run for four
seasons, each with its own sub-solar point, so the shell is rotated every
tick until the model sub-solar point sits over the observed one.

Rotation (two axis-angle steps, longitude first):

    rotation1 = R(Z,    observedLon - modelLon)
    axis2     = Z x r_observed_subsolar
    rotation2 = R(axis2, modelLat - observedLat)
    result    = rotation2 * rotation1

Unlike longitude there is no fixed latitude axis; axis2 is rebuilt from the
current sub-solar vector each time. No observed sample -> identity.

Season rounding of the mean solar longitude Ls (deg):

    Ls >= 315 or Ls < 45  -> 0
    45  <= Ls < 135       -> 90
    135 <= Ls < 225       -> 180
    otherwise             -> 270
===============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ephemviz.core.constants import (
    DEG2RAD, MODEL_DATASET, MODEL_PARAMETERS, MODEL_SUBSOLAR_POINTS,
    SHELL_ALPHA, SHELL_CLEARANCE, KM_TO_M,
)
from ephemviz.core.errors import EmptyDataset, MalformedRow
from ephemviz.core.frames import Ellipsoid, model_matrix
from ephemviz.core.quaternion import Quaternion
from ephemviz.core.samples import SampledSeries
from ephemviz.services.colors import ColorMapper

logger = logging.getLogger(__name__)

POLAR_AXIS = np.array([0.0, 0.0, 1.0])

# Fixed slice positions for the latitude / longitude profile plots
PROFILE_LONGITUDE = 2.5
PROFILE_LATITUDE = -87.5


# =============================================================================
# SEASON AND MODEL SUB-SOLAR POINT
# =============================================================================

def round_solar_longitude(mean_solar_longitude: float) -> int:
    """Round a mean Ls (deg) to the nearest modelled season: 0, 90, 180 or 270."""
    ls = mean_solar_longitude
    if ls >= 315.0 or ls < 45.0:
        return 0
    if ls < 135.0:
        return 90
    if ls < 225.0:
        return 180
    return 270


def model_subsolar_point(season: int) -> Tuple[float, float]:
    """
    Sub-solar (lat, lon) in degrees of the model run for ``season``.

    The equinox runs have latitude 0 and the solstice runs +/- the axial
    tilt. Longitudes at Ls 0 and 180 are adjusted for better alignment.
    """
    if season not in MODEL_SUBSOLAR_POINTS:
        raise ValueError(f"No model run for solar longitude {season!r}")
    return MODEL_SUBSOLAR_POINTS[season]


# =============================================================================
# ROTATION SOLVER
# =============================================================================

class ShellRotationSolver:
    """
    Aligns the model sub-solar point with the observed one.

    Parameters
    ----------
    ellipsoid : Ellipsoid
        Body shape used to recover lat/lon from the observed position.
    """

    def __init__(self, ellipsoid: Ellipsoid) -> None:
        self.ellipsoid = ellipsoid

    def compute_rotation(self, time: float,
                         model_subsolar: Tuple[float, float],
                         observed_series: Optional[SampledSeries]) -> Quaternion:
        """
        Rotation quaternion for the shell at ``time``.

        Parameters
        ----------
        time : float
            Tick time (POSIX s).
        model_subsolar : tuple of (float, float)
            Model sub-solar (lat, lon) in degrees.
        observed_series : SampledSeries or None
            Body-fixed Cartesian sub-solar positions.

        Returns
        -------
        Quaternion
            ``rotation2 * rotation1``, or identity without an observed
            sample at ``time``.
        """
        if observed_series is None or len(observed_series) == 0:
            return Quaternion.identity()

        observed = observed_series.get_value(time)
        if observed is None:
            return Quaternion.identity()

        obs_lat, obs_lon, _ = self.ellipsoid.cartesian_to_cartographic(observed)
        model_lat, model_lon = model_subsolar

        rotation1 = Quaternion.from_axis_angle(POLAR_AXIS, (obs_lon - model_lon) * DEG2RAD)

        axis2 = np.cross(POLAR_AXIS, observed)
        if np.linalg.norm(axis2) < 1e-9 * max(np.linalg.norm(observed), 1.0):
            # Sub-solar point on the pole: latitude axis undefined
            logger.debug("Polar sub-solar point at t=%.3f; latitude step skipped", time)
            return rotation1

        rotation2 = Quaternion.from_axis_angle(axis2, (model_lat - obs_lat) * DEG2RAD)
        return rotation2 * rotation1


def shell_model_matrix(rotation: Quaternion) -> np.ndarray:
    """4x4 model matrix: zero translation, ``rotation``, unit scale."""
    return model_matrix(rotation=rotation.to_dcm())


# =============================================================================
# MODEL DATA
# =============================================================================

@dataclass(frozen=True)
class ModelQuery:
    dataset: str
    fields: Tuple[str, ...]
    filters: Tuple[str, ...]


def build_model_query(parameter: str, altitude_km: float, solar_flux: int,
                      season: int) -> ModelQuery:
    """Full lat/lon grid of ``parameter`` at one altitude, flux and season."""
    if parameter not in MODEL_PARAMETERS:
        raise ValueError(f"Unknown model parameter {parameter!r}")
    return ModelQuery(
        MODEL_DATASET,
        ('Latitude', 'Longitude', parameter),
        _model_filters(altitude_km, solar_flux, season),
    )


def build_profile_queries(parameter: str, altitude_km: float, solar_flux: int,
                          season: int) -> Dict[str, ModelQuery]:
    """
    Latitude and longitude profile queries for the side plots.

    Library-only: the session draws the shell and leaves profile charts to
    callers that render them.
    """
    base = _model_filters(altitude_km, solar_flux, season)
    return {
        'latitude': ModelQuery(MODEL_DATASET, ('Latitude', parameter),
                               base + (f'Longitude={PROFILE_LONGITUDE}',)),
        'longitude': ModelQuery(MODEL_DATASET, ('Longitude', parameter),
                                base + (f'Latitude={PROFILE_LATITUDE}',)),
    }


def _model_filters(altitude_km: float, solar_flux: int, season: int) -> Tuple[str, ...]:
    return (f'altitude={altitude_km}', f'solar_flux={solar_flux}',
            f'solar_longitude={season}')


@dataclass(frozen=True)
class ShellGrid:
    """Model parameter colored on a (latitude, longitude) pixel grid."""
    latitudes: np.ndarray
    longitudes: np.ndarray
    pixels: np.ndarray          # (n_lat, n_lon, 4) uint8 RGBA
    minimum: float
    maximum: float


def build_shell_grid(rows: Sequence[Sequence], color_mapper: ColorMapper,
                     palette: str = 'viridis', alpha: float = SHELL_ALPHA) -> ShellGrid:
    """
    Color ``[lat, lon, value]`` rows onto a pixel grid.

    Distinct latitudes and longitudes keep their first-seen order and index
    the grid rows and columns. Colors are normalised over the data min/max.
    Cells with no row stay fully transparent.

    Raises
    ------
    EmptyDataset
        If there are no rows.
    MalformedRow
        If a row does not hold three numbers.
    """
    if not rows:
        raise EmptyDataset("No model rows")

    try:
        table = [(float(r[0]), float(r[1]), float(r[2])) for r in rows]
    except (TypeError, ValueError, IndexError) as exc:
        raise MalformedRow(f"Model rows must be [lat, lon, value]: {exc}") from exc

    lat_index: Dict[float, int] = {}
    lon_index: Dict[float, int] = {}
    for lat, lon, _ in table:
        lat_index.setdefault(lat, len(lat_index))
        lon_index.setdefault(lon, len(lon_index))

    values = [v for _, _, v in table]
    lo, hi = min(values), max(values)

    pixels = np.zeros((len(lat_index), len(lon_index), 4), dtype=np.uint8)
    for lat, lon, value in table:
        color = color_mapper.interpolate(value, lo, hi, palette).with_alpha(alpha)
        pixels[lat_index[lat], lon_index[lon]] = color.to_bytes()

    logger.info("Shell grid %d x %d, value range [%.4g, %.4g]",
                len(lat_index), len(lon_index), lo, hi)
    return ShellGrid(np.array(list(lat_index)), np.array(list(lon_index)),
                     pixels, lo, hi)


def shell_radius(altitude_km: float, body_max_radius: float,
                 clearance: float = SHELL_CLEARANCE) -> float:
    """Shell sphere radius (m) at ``altitude_km`` plus a clearance over the body."""
    return altitude_km * KM_TO_M + body_max_radius + clearance
