"""
===============================================================================
EPHEMVIZ - Configuration
===============================================================================
Loads the YAML configuration file and maps it onto typed, immutable
settings objects. Every section is optional and falls back to the packaged
defaults in ``ephemviz/data/ephemviz.yaml``.

Malformed configuration is the only fatal error in the pipeline; it is
detected here, at startup, and raised as ConfigurationError.
===============================================================================
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from ephemviz.core.constants import (
    AU_TO_DISPLAY_LENGTH, COLOR_SHADES, DEFAULT_MODEL_ALTITUDE, DEFAULT_SOLAR_FLUX,
    EPHEMERIS_DATASET, GROUND_TRACK_ALTITUDE, LIGHT_LOOKUP_TOLERANCE, MARS_RADIUS,
    MARS_ROTATION_RATE, OPPOSITE_HEMISPHERE_ALTITUDE, PALETTES, SHELL_ALPHA,
    SHELL_CLEARANCE, SOLAR_FLUX_OPTIONS, SUBSOLAR_MARKER_ALTITUDE, WHISKER_ALPHA,
    WHISKER_MAX_LENGTH, WHISKER_STRIDE,
)
from ephemviz.core.errors import ConfigurationError
from ephemviz.core.frames import Ellipsoid
from ephemviz.core.samples import Interpolation
from ephemviz.pipeline.reference_frame import ReferenceFrame

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'data' / 'ephemviz.yaml'

# Derived ephemeris series and their default interpolation policy
DEFAULT_INTERPOLATION = {
    'positions': Interpolation.LINEAR,
    'solar_positions': Interpolation.LINEAR,
    'solar_zenith_angles': Interpolation.LINEAR,
    'ground_track': Interpolation.HOLD,
    'sub_solar': Interpolation.HOLD,
    'opposite_hemisphere_solar': Interpolation.HOLD,
}


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class BodyConfig:
    name: str = 'Mars'
    radii_m: Tuple[float, float, float] = (MARS_RADIUS, MARS_RADIUS, MARS_RADIUS)
    rotation_rate: float = MARS_ROTATION_RATE

    def ellipsoid(self) -> Ellipsoid:
        return Ellipsoid.from_radii(self.radii_m)


@dataclass(frozen=True)
class EphemerisConfig:
    dataset: str = EPHEMERIS_DATASET
    ground_track_altitude: float = GROUND_TRACK_ALTITUDE
    subsolar_altitude: float = SUBSOLAR_MARKER_ALTITUDE
    opposite_hemisphere_altitude: float = OPPOSITE_HEMISPHERE_ALTITUDE
    au_to_length: float = AU_TO_DISPLAY_LENGTH
    light_tolerance_s: float = LIGHT_LOOKUP_TOLERANCE
    interpolation: Dict[str, Interpolation] = field(
        default_factory=lambda: dict(DEFAULT_INTERPOLATION))


@dataclass(frozen=True)
class WhiskerConfig:
    stride: int = WHISKER_STRIDE
    max_length_m: float = WHISKER_MAX_LENGTH
    alpha: float = WHISKER_ALPHA
    palette: str = 'viridis'


@dataclass(frozen=True)
class ShellConfig:
    clearance_m: float = SHELL_CLEARANCE
    alpha: float = SHELL_ALPHA
    palette: str = 'viridis'
    nshades: int = COLOR_SHADES
    default_altitude_km: float = DEFAULT_MODEL_ALTITUDE
    default_solar_flux: int = DEFAULT_SOLAR_FLUX


@dataclass(frozen=True)
class LatisConfig:
    base_url: str = 'http://localhost:8080/latis/dap/'
    timeout_s: float = 30.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = 'INFO'
    format: str = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    file: Optional[str] = None


@dataclass(frozen=True)
class VizConfig:
    body: BodyConfig = field(default_factory=BodyConfig)
    default_frame: ReferenceFrame = ReferenceFrame.INERTIAL
    ephemeris: EphemerisConfig = field(default_factory=EphemerisConfig)
    whiskers: WhiskerConfig = field(default_factory=WhiskerConfig)
    shell: ShellConfig = field(default_factory=ShellConfig)
    latis: LatisConfig = field(default_factory=LatisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# =============================================================================
# LOADING
# =============================================================================

def load_config(config_path: Optional[str] = None) -> VizConfig:
    """
    Load configuration from a YAML file.

    Parameters
    ----------
    config_path : str, optional
        Path to the YAML file. Defaults to the packaged configuration.

    Returns
    -------
    VizConfig

    Raises
    ------
    ConfigurationError
        If the file cannot be read or holds invalid values.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    logger.info("Loading configuration from: %s", path)

    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read configuration {path}: {exc}") from exc

    config = parse_config(raw)
    logger.info("Body: %s, radii=%s m, frame=%s",
                config.body.name, config.body.radii_m, config.default_frame.value)
    return config


def parse_config(raw: dict) -> VizConfig:
    """Validate a configuration mapping and build a VizConfig."""
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    try:
        return VizConfig(
            body=_parse_body(raw.get('body', {})),
            default_frame=ReferenceFrame.from_name(raw.get('frame', 'inertial')),
            ephemeris=_parse_ephemeris(raw.get('ephemeris', {})),
            whiskers=_parse_whiskers(raw.get('whiskers', {})),
            shell=_parse_shell(raw.get('shell', {})),
            latis=LatisConfig(**raw.get('latis', {})),
            logging=LoggingConfig(**raw.get('logging', {})),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _parse_body(section: dict) -> BodyConfig:
    if 'radii_m' not in section:
        raise ConfigurationError("body.radii_m is required (ellipsoid radii in meters)")

    radii = section['radii_m']
    if isinstance(radii, (int, float)):
        radii = [radii] * 3
    if radii is None or len(radii) != 3:
        raise ConfigurationError(f"body.radii_m must hold 3 values, got {radii!r}")

    body = BodyConfig(
        name=section.get('name', 'Mars'),
        radii_m=tuple(float(r) for r in radii),
        rotation_rate=float(section.get('rotation_rate', MARS_ROTATION_RATE)),
    )
    try:
        body.ellipsoid()
    except ValueError as exc:
        raise ConfigurationError(f"body.radii_m: {exc}") from exc
    return body


def _parse_ephemeris(section: dict) -> EphemerisConfig:
    interpolation = dict(DEFAULT_INTERPOLATION)
    for series, policy in (section.get('interpolation') or {}).items():
        if series not in interpolation:
            raise ConfigurationError(f"Unknown ephemeris series {series!r}")
        interpolation[series] = Interpolation.from_name(policy)

    values = {k: v for k, v in section.items() if k != 'interpolation'}
    return EphemerisConfig(interpolation=interpolation, **values)


def _parse_whiskers(section: dict) -> WhiskerConfig:
    whiskers = WhiskerConfig(**section)
    if int(whiskers.stride) < 1:
        raise ConfigurationError(f"whiskers.stride must be >= 1, got {whiskers.stride}")
    if whiskers.palette not in PALETTES:
        raise ConfigurationError(f"Unknown palette {whiskers.palette!r}")
    return whiskers


def _parse_shell(section: dict) -> ShellConfig:
    shell = ShellConfig(**section)
    if shell.palette not in PALETTES:
        raise ConfigurationError(f"Unknown palette {shell.palette!r}")
    if shell.default_solar_flux not in SOLAR_FLUX_OPTIONS:
        raise ConfigurationError(
            f"shell.default_solar_flux must be one of {SOLAR_FLUX_OPTIONS}")
    return shell
