"""
===============================================================================
EPHEMVIZ - Time-Ordered Sample Series
===============================================================================
Append-only container of (time, value) samples queried by time, used for
every derived physical quantity (positions, scalars, matrices, attitudes).

Interpolation policies
----------------------
    LINEAR  Between two bracketing samples the value is interpolated
            linearly (SLERP for quaternions). Outside [first, last] the
            series has no value. An exact sample time returns that sample.
    HOLD    Step function: the latest sample at or before the query time.
            Nothing before the first sample. Used for marker series such as
            the ground track and the sub-solar point.

The policy is chosen per series when it is created.

Timestamps are float POSIX seconds. Samples must arrive in non-decreasing
time order; equal timestamps are allowed.
===============================================================================
"""

from bisect import bisect_left, bisect_right
from enum import Enum
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from ephemviz.core.errors import OutOfOrderSample
from ephemviz.core.quaternion import Quaternion

SampleValue = Union[np.ndarray, float, Quaternion]


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Interpolation(Enum):
    """How a series answers queries between samples."""
    LINEAR = 'linear'
    HOLD = 'hold'

    @classmethod
    def from_name(cls, name: str) -> 'Interpolation':
        try:
            return cls(str(name).lower())
        except ValueError:
            raise ValueError(
                f"Unknown interpolation {name!r}; expected one of "
                f"{[m.value for m in cls]}"
            ) from None


class ValueKind(Enum):
    """Shape of the values held by a series."""
    POINT = 'point'
    SCALAR = 'scalar'
    MATRIX = 'matrix'
    QUATERNION = 'quaternion'


_COLUMNS = {
    ValueKind.POINT: ['x', 'y', 'z'],
    ValueKind.MATRIX: [f'm{r}{c}' for r in range(1, 4) for c in range(1, 4)],
    ValueKind.QUATERNION: ['w', 'x', 'y', 'z'],
}


# =============================================================================
# SAMPLED SERIES
# =============================================================================

class SampledSeries:
    """Time-ordered samples of one quantity with a fixed interpolation policy.

    Parameters
    ----------
    kind : ValueKind
        Shape of the stored values.
    interpolation : Interpolation
        Query policy between samples.
    name : str
        Label used in logs and tabular export.

    Examples
    --------
    >>> s = SampledSeries(ValueKind.SCALAR)
    >>> s.add_sample(0.0, 1.0)
    >>> s.add_sample(10.0, 3.0)
    >>> s.get_value(5.0)
    2.0
    """

    def __init__(self, kind: ValueKind,
                 interpolation: Interpolation = Interpolation.LINEAR,
                 name: str = '') -> None:
        self.kind = kind
        self.interpolation = interpolation
        self.name = name or kind.value
        self._times: List[float] = []
        self._values: List[SampleValue] = []

    # -- write -------------------------------------------------------------

    def add_sample(self, time: float, value: SampleValue) -> None:
        """Append a sample.

        Raises
        ------
        OutOfOrderSample
            If ``time`` is strictly before the last sample time. The series
            is left unchanged.
        ValueError
            If ``value`` does not match the series kind.
        """
        time = float(time)
        if self._times and time < self._times[-1]:
            raise OutOfOrderSample(time, self._times[-1])

        self._values.append(self._coerce(value))
        self._times.append(time)

    def _coerce(self, value: SampleValue) -> SampleValue:
        if self.kind is ValueKind.QUATERNION:
            if not isinstance(value, Quaternion):
                raise ValueError(f"{self.name}: expected a Quaternion, got {type(value).__name__}")
            return value
        if self.kind is ValueKind.SCALAR:
            return float(value)

        expected = (3,) if self.kind is ValueKind.POINT else (3, 3)
        arr = np.array(value, dtype=np.float64)
        if arr.shape != expected:
            raise ValueError(f"{self.name}: expected shape {expected}, got {arr.shape}")
        return arr

    # -- read --------------------------------------------------------------

    def get_value(self, time: float) -> Optional[SampleValue]:
        """Value at ``time`` under the series policy, or None.

        Deterministic and side-effect free; arrays are returned as copies.
        """
        if not self._times:
            return None

        if self.interpolation is Interpolation.HOLD:
            idx = bisect_right(self._times, time) - 1
            if idx < 0:
                return None
            return self._copy(self._values[idx])

        if time < self._times[0] or time > self._times[-1]:
            return None

        hi = bisect_left(self._times, time)
        if self._times[hi] == time:
            return self._copy(self._values[hi])

        lo = hi - 1
        t0, t1 = self._times[lo], self._times[hi]
        frac = (time - t0) / (t1 - t0)
        return self._interpolate(self._values[lo], self._values[hi], frac)

    def _interpolate(self, v0: SampleValue, v1: SampleValue,
                     frac: float) -> SampleValue:
        if self.kind is ValueKind.QUATERNION:
            return Quaternion.slerp(v0, v1, frac)
        return v0 + (v1 - v0) * frac

    @staticmethod
    def _copy(value: SampleValue) -> SampleValue:
        if isinstance(value, np.ndarray):
            return value.copy()
        return value

    def nearest_index(self, time: float, tolerance: float) -> Optional[int]:
        """Index of the sample closest to ``time`` if within ``tolerance``."""
        if not self._times:
            return None

        hi = bisect_left(self._times, time)
        candidates = [i for i in (hi - 1, hi) if 0 <= i < len(self._times)]
        best = min(candidates, key=lambda i: abs(self._times[i] - time))
        if abs(self._times[best] - time) > tolerance:
            return None
        return best

    def value_at_index(self, index: int) -> SampleValue:
        return self._copy(self._values[index])

    @property
    def times(self) -> np.ndarray:
        return np.array(self._times, dtype=np.float64)

    @property
    def values(self) -> List[SampleValue]:
        return [self._copy(v) for v in self._values]

    @property
    def start(self) -> Optional[float]:
        return self._times[0] if self._times else None

    @property
    def stop(self) -> Optional[float]:
        return self._times[-1] if self._times else None

    # -- export ------------------------------------------------------------

    def to_frame(self) -> pd.DataFrame:
        """Samples as a DataFrame indexed by UTC time.

        Columns are ``<name>`` for scalars and ``<name>_<component>``
        otherwise.
        """
        index = pd.to_datetime(self._times, unit='s', utc=True)
        index.name = 'time'

        if self.kind is ValueKind.SCALAR:
            return pd.DataFrame({self.name: self._values}, index=index)

        if self.kind is ValueKind.QUATERNION:
            data = np.array([q.components for q in self._values]).reshape(-1, 4)
        else:
            data = np.array(self._values).reshape(len(self._values), -1)

        columns = [f'{self.name}_{c}' for c in _COLUMNS[self.kind]]
        return pd.DataFrame(data, index=index, columns=columns)

    def __len__(self) -> int:
        return len(self._times)

    def __repr__(self) -> str:
        return (f"SampledSeries(name={self.name!r}, kind={self.kind.value}, "
                f"interpolation={self.interpolation.value}, count={len(self)})")


# =============================================================================
# TIME CELLS
# =============================================================================

def to_posix_seconds(cell) -> float:
    """
    Decode a row time cell to POSIX seconds.

    Numeric cells are milliseconds since the Unix epoch, the data service's
    numeric time convention. Strings are parsed as ISO-8601 in UTC with
    nanosecond precision.

    Raises
    ------
    ValueError
        If the cell cannot be interpreted as a time.
    """
    if isinstance(cell, bool) or cell is None:
        raise ValueError(f"Not a time value: {cell!r}")
    if isinstance(cell, (int, float, np.integer, np.floating)):
        value = float(cell)
        if not np.isfinite(value):
            raise ValueError(f"Not a time value: {cell!r}")
        return value / 1000.0

    stamp = pd.to_datetime(cell, utc=True)
    if pd.isna(stamp):
        raise ValueError(f"Not a time value: {cell!r}")
    return stamp.value / 1e9
