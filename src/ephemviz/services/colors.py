"""
===============================================================================
EPHEMVIZ - Color Mapping
===============================================================================
Maps scalar values onto palette colors for whiskers, the orbit path and the
model shell. Palettes are matplotlib colormaps resampled to a fixed number
of shades, so neighbouring values fall into discrete bands.

    bluered  -> matplotlib 'bwr'
    cool, inferno, plasma, spring, viridis -> same-named colormaps
===============================================================================
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import matplotlib
import numpy as np

from ephemviz.core.constants import COLOR_SHADES, PALETTES

_MATPLOTLIB_NAMES = {'bluered': 'bwr'}


@dataclass(frozen=True)
class Color:
    """RGBA color with float channels in [0, 1]."""
    red: float
    green: float
    blue: float
    alpha: float = 1.0

    def with_alpha(self, alpha: float) -> 'Color':
        return replace(self, alpha=float(alpha))

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.red, self.green, self.blue, self.alpha)

    def to_bytes(self) -> Tuple[int, int, int, int]:
        """Channels scaled to 0-255 for pixel buffers."""
        return tuple(int(round(c * 255.0)) for c in self.to_tuple())


GRAY = Color(0.5, 0.5, 0.5, 1.0)


class ColorMapper(Protocol):
    def interpolate(self, value: float, minimum: float, maximum: float,
                    palette: str) -> Color:
        ...


class MatplotlibColorMapper:
    """
    Palette lookup backed by matplotlib colormaps.

    Parameters
    ----------
    nshades : int
        Number of discrete shades each palette is resampled to.
    """

    def __init__(self, nshades: int = COLOR_SHADES) -> None:
        if nshades < 2:
            raise ValueError(f"nshades must be >= 2, got {nshades}")
        self.nshades = nshades
        self._cache: Dict[str, matplotlib.colors.Colormap] = {}

    def _colormap(self, palette: str):
        if palette not in PALETTES:
            raise ValueError(f"Unknown palette {palette!r}; expected one of {PALETTES}")
        if palette not in self._cache:
            name = _MATPLOTLIB_NAMES.get(palette, palette)
            self._cache[palette] = matplotlib.colormaps[name].resampled(self.nshades)
        return self._cache[palette]

    def interpolate(self, value: float, minimum: float, maximum: float,
                    palette: str = 'viridis') -> Color:
        """
        Color of ``value`` normalised into [minimum, maximum].

        Values outside the range clip to the end colors. A degenerate range
        maps everything to the low end.
        """
        span = maximum - minimum
        fraction = 0.0 if span <= 0.0 else (value - minimum) / span
        fraction = float(np.clip(fraction, 0.0, 1.0))
        r, g, b, a = self._colormap(palette)(fraction)
        return Color(float(r), float(g), float(b), float(a))

    def interpolate_array(self, values: Sequence[Optional[float]],
                          palette: str = 'viridis',
                          missing: Color = GRAY) -> List[Color]:
        """
        Colors for a whole series, normalised over its finite values.

        ``None``, empty strings and NaN get the ``missing`` color.
        """
        numeric = [_as_float(v) for v in values]
        finite = [v for v in numeric if v is not None]
        if not finite:
            return [missing] * len(numeric)

        lo, hi = min(finite), max(finite)
        return [missing if v is None else self.interpolate(v, lo, hi, palette)
                for v in numeric]


def _as_float(value) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if np.isfinite(result) else None
