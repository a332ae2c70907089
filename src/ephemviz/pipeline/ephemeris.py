"""
===============================================================================
EPHEMVIZ - Ephemeris Ingestion Pipeline
===============================================================================
Turns decoded ephemeris rows into the sampled series the renderer queries:

    positions                  spacecraft, in the selected frame
    ground_track               (lat, lon) at a nominal 100 m height
    solar_positions            sub-solar direction scaled by sun distance
    sub_solar                  sub-solar surface marker, 80 km up
    opposite_hemisphere_solar  antipode of the sub-solar point, height 0
    solar_zenith_angles        scalar
    mean_solar_longitude       arithmetic mean of Ls over all rows

Only the spacecraft position goes through the frame transformer. The
surface points and the sun are drawn on the rotating globe and stay
body-fixed; the shell solver reads the sub-solar series in that frame.

Column layout of a raw row (request order of EPHEMERIS_FIELDS):

    0 time   1 Ls   2 sun distance (AU)   3 altitude (km)   4 lat   5 lon
    6 solar zenith angle   7 sub-solar lat   8 sub-solar lon
===============================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ephemviz.config import EphemerisConfig
from ephemviz.core.constants import (
    COL_ALTITUDE, COL_LATITUDE, COL_LONGITUDE, COL_SOLAR_LONGITUDE,
    COL_SOLAR_ZENITH_ANGLE, COL_SUBSOLAR_LATITUDE, COL_SUBSOLAR_LONGITUDE,
    COL_SUN_DISTANCE, COL_TIME, EPHEMERIS_FIELDS, KM_TO_M,
)
from ephemviz.core.errors import EmptyDataset, MalformedRow
from ephemviz.core.samples import SampledSeries, ValueKind, to_posix_seconds
from ephemviz.pipeline.reference_frame import ReferenceFrame, ReferenceFrameTransformer

logger = logging.getLogger(__name__)


# =============================================================================
# ROW DECODING
# =============================================================================

@dataclass(frozen=True)
class EphemerisRow:
    """One decoded ephemeris record. Angles in degrees."""
    time: float
    spacecraft_altitude_km: float
    spacecraft_lat_deg: float
    spacecraft_lon_deg: float
    sun_distance_au: float
    subsolar_lat_deg: float
    subsolar_lon_deg: float
    solar_longitude_deg: float
    solar_zenith_angle_deg: float

    @classmethod
    def from_row(cls, row: Sequence) -> 'EphemerisRow':
        """
        Decode a raw row by column index.

        Raises
        ------
        MalformedRow
            If the row is too short or a cell is not numeric.
        """
        if len(row) < len(EPHEMERIS_FIELDS):
            raise MalformedRow(
                f"Expected {len(EPHEMERIS_FIELDS)} columns, got {len(row)}")
        try:
            values = {
                'time': to_posix_seconds(row[COL_TIME]),
                'spacecraft_altitude_km': float(row[COL_ALTITUDE]),
                'spacecraft_lat_deg': float(row[COL_LATITUDE]),
                'spacecraft_lon_deg': float(row[COL_LONGITUDE]),
                'sun_distance_au': float(row[COL_SUN_DISTANCE]),
                'subsolar_lat_deg': float(row[COL_SUBSOLAR_LATITUDE]),
                'subsolar_lon_deg': float(row[COL_SUBSOLAR_LONGITUDE]),
                'solar_longitude_deg': float(row[COL_SOLAR_LONGITUDE]),
                'solar_zenith_angle_deg': float(row[COL_SOLAR_ZENITH_ANGLE]),
            }
        except (TypeError, ValueError) as exc:
            raise MalformedRow(f"Undecodable ephemeris row {row!r}: {exc}") from exc

        if not all(np.isfinite(v) for v in values.values()):
            raise MalformedRow(f"Non-finite value in ephemeris row {row!r}")
        return cls(**values)


def decode_ephemeris_rows(rows: Sequence[Sequence]) -> List[EphemerisRow]:
    """Decode raw rows, skipping (and logging) malformed ones."""
    decoded = []
    for index, row in enumerate(rows):
        try:
            decoded.append(EphemerisRow.from_row(row))
        except MalformedRow as exc:
            logger.warning("Skipping ephemeris row %d: %s", index, exc)
    return decoded


# =============================================================================
# PRODUCTS
# =============================================================================

@dataclass
class EphemerisProducts:
    """Derived series for one ingestion generation."""
    frame: ReferenceFrame
    positions: SampledSeries
    ground_track: SampledSeries
    solar_positions: SampledSeries
    sub_solar: SampledSeries
    opposite_hemisphere_solar: SampledSeries
    solar_zenith_angles: SampledSeries
    mean_solar_longitude: float
    times: np.ndarray
    position_list: List[np.ndarray] = field(default_factory=list)
    degraded_count: int = 0

    SERIES = ('positions', 'ground_track', 'solar_positions', 'sub_solar',
              'opposite_hemisphere_solar', 'solar_zenith_angles')

    def __len__(self) -> int:
        return len(self.times)

    def to_frame(self) -> pd.DataFrame:
        """All series side by side, indexed by UTC time."""
        frames = [getattr(self, name).to_frame() for name in self.SERIES]
        table = pd.concat(frames, axis=1)
        table['frame'] = self.frame.value
        return table


# =============================================================================
# INGESTOR
# =============================================================================

class EphemerisIngestor:
    """
    Builds EphemerisProducts from decoded rows.

    Parameters
    ----------
    transformer : ReferenceFrameTransformer
        Supplies the ellipsoid, the frame selection and inertial matrices.
    config : EphemerisConfig
        Offsets, AU conversion and per-series interpolation policy.
    """

    def __init__(self, transformer: ReferenceFrameTransformer,
                 config: Optional[EphemerisConfig] = None) -> None:
        self.transformer = transformer
        self.config = config or EphemerisConfig()

    def _series(self, name: str, kind: ValueKind) -> SampledSeries:
        return SampledSeries(kind, self.config.interpolation[name], name=name)

    def ingest_raw(self, rows: Sequence[Sequence],
                   frame: Optional[ReferenceFrame] = None) -> EphemerisProducts:
        """Decode raw data-source rows, then ingest them."""
        decoded = decode_ephemeris_rows(rows)
        if rows and not decoded:
            raise EmptyDataset(f"All {len(rows)} ephemeris rows were malformed")
        return self.ingest(decoded, frame)

    def ingest(self, rows: Sequence[EphemerisRow],
               frame: Optional[ReferenceFrame] = None) -> EphemerisProducts:
        """
        Derive every ephemeris series from ``rows``.

        Parameters
        ----------
        rows : sequence of EphemerisRow
            Time-sorted records.
        frame : ReferenceFrame, optional
            Frame for spacecraft positions. Defaults to the transformer's
            current selection.

        Returns
        -------
        EphemerisProducts

        Raises
        ------
        EmptyDataset
            If ``rows`` is empty; the mean solar longitude is undefined.
        OutOfOrderSample
            If rows are not time-sorted.
        """
        if not rows:
            raise EmptyDataset("No ephemeris rows for the selected range")

        frame = frame or self.transformer.frame
        ellipsoid = self.transformer.ellipsoid
        cfg = self.config
        degraded_before = self.transformer.degraded_count

        positions = self._series('positions', ValueKind.POINT)
        ground_track = self._series('ground_track', ValueKind.POINT)
        solar_positions = self._series('solar_positions', ValueKind.POINT)
        sub_solar = self._series('sub_solar', ValueKind.POINT)
        opposite = self._series('opposite_hemisphere_solar', ValueKind.POINT)
        zenith = self._series('solar_zenith_angles', ValueKind.SCALAR)

        position_list = []
        solar_longitude_sum = 0.0

        for row in rows:
            t = row.time
            spacecraft = self.transformer.transform_position(
                row.spacecraft_lat_deg, row.spacecraft_lon_deg,
                row.spacecraft_altitude_km * KM_TO_M, t, frame)
            positions.add_sample(t, spacecraft)
            position_list.append(spacecraft)

            ground_track.add_sample(t, ellipsoid.cartographic_to_cartesian(
                row.spacecraft_lat_deg, row.spacecraft_lon_deg,
                cfg.ground_track_altitude))
            solar_positions.add_sample(t, ellipsoid.cartographic_to_cartesian(
                row.subsolar_lat_deg, row.subsolar_lon_deg,
                row.sun_distance_au * cfg.au_to_length))
            sub_solar.add_sample(t, ellipsoid.cartographic_to_cartesian(
                row.subsolar_lat_deg, row.subsolar_lon_deg,
                cfg.subsolar_altitude))
            opposite.add_sample(t, ellipsoid.cartographic_to_cartesian(
                -row.subsolar_lat_deg, row.subsolar_lon_deg + 180.0,
                cfg.opposite_hemisphere_altitude))
            zenith.add_sample(t, row.solar_zenith_angle_deg)

            solar_longitude_sum += row.solar_longitude_deg

        degraded = self.transformer.degraded_count - degraded_before
        if degraded:
            logger.warning("%d of %d positions used identity for the inertial "
                           "transform (no frame matrix loaded)", degraded, len(rows))

        products = EphemerisProducts(
            frame=frame,
            positions=positions,
            ground_track=ground_track,
            solar_positions=solar_positions,
            sub_solar=sub_solar,
            opposite_hemisphere_solar=opposite,
            solar_zenith_angles=zenith,
            mean_solar_longitude=solar_longitude_sum / len(rows),
            times=positions.times,
            position_list=position_list,
            degraded_count=degraded,
        )
        logger.info("Ingested %d ephemeris rows (%s frame), mean Ls = %.2f deg",
                    len(rows), frame.value, products.mean_solar_longitude)
        return products
