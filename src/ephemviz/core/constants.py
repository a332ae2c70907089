"""
===============================================================================
EPHEMVIZ - Physical Constants and Dataset Column Contracts
===============================================================================
Central repository for the constants used throughout the pipeline. Lengths
are in meters, times in seconds, angles in degrees unless noted otherwise.

The dataset field lists below are a contract with the remote time-series
service: the order of each request's field list defines the column index of
every value in the returned rows.
===============================================================================
"""

import numpy as np


# =============================================================================
# MATHEMATICAL CONSTANTS
# =============================================================================
PI = np.pi
TWO_PI = 2.0 * np.pi
DEG2RAD = PI / 180.0
RAD2DEG = 180.0 / PI

# =============================================================================
# UNIT CONVERSIONS
# =============================================================================
KM_TO_M = 1000.0
MS_PER_SECOND = 1000.0

# Approximate AU -> display length for the sun marker, not the true AU
AU_TO_DISPLAY_LENGTH = 1496000000.0

# =============================================================================
# MARS PARAMETERS
# =============================================================================
MARS_RADIUS = 3396000.0                 # IAU 2000 spherical radius (m)
MARS_ROTATION_RATE = 7.088218e-5        # rad/s (sidereal, 24h 37m 22.7s)
MARS_AXIAL_TILT = 25.19                 # deg

# =============================================================================
# EPHEMERIS DERIVED-POINT OFFSETS (m above the ellipsoid)
# =============================================================================
GROUND_TRACK_ALTITUDE = 100.0
SUBSOLAR_MARKER_ALTITUDE = 80000.0
OPPOSITE_HEMISPHERE_ALTITUDE = 0.0

# Light direction lookup tolerance around the tick time (s)
LIGHT_LOOKUP_TOLERANCE = 3600.0

# =============================================================================
# WHISKER DISPLAY
# =============================================================================
WHISKER_STRIDE = 25
WHISKER_MAX_LENGTH = 5000000.0          # m
WHISKER_ALPHA = 0.75

# =============================================================================
# MODEL SHELL
# =============================================================================
SHELL_CLEARANCE = 10000.0               # m above the largest body radius
SHELL_ALPHA = 127.5 / 255.0
DEFAULT_MODEL_ALTITUDE = 98.75          # km
DEFAULT_SOLAR_FLUX = 130
SOLAR_FLUX_OPTIONS = (70, 130, 200)
COLOR_SHADES = 250

# Model sub-solar point (lat, lon) for each rounded solar longitude season
MODEL_SUBSOLAR_POINTS = {
    0: (0.0, -10.0),
    90: (-MARS_AXIAL_TILT, 11.75),
    180: (0.0, -10.0),
    270: (MARS_AXIAL_TILT, 8.06),
}

MODEL_PARAMETERS = (
    'o2plus', 'oplus', 'co2plus', 'n_e', 'co2', 'co', 'n2', 'o2', 'o',
    'Zonal_vel', 'Merid_vel', 'Vert_vel', 'Temp_tn', 'Temp_ti', 'Temp_te',
)

# =============================================================================
# DATASETS AND COLUMN CONTRACTS
# =============================================================================
EPHEMERIS_DATASET = 'in_situ_kp_spice'
AVAILABILITY_DATASET = 'in_situ_kp_data'
MODEL_DATASET = 'mgitm'

# Request order == row index order.
EPHEMERIS_FIELDS = (
    'time',
    'spice_mars_season_ls',
    'spice_mars_sun_distance',
    'spice_spacecraft_altitude_w_r_t_ellipsoid',
    'spice_spacecraft_geo_latitude',
    'spice_spacecraft_geo_longitude',
    'spice_spacecraft_solar_zenith_angle',
    'spice_subsolar_point_geo_latitude',
    'spice_subsolar_point_geo_longitude',
)

COL_TIME = 0
COL_SOLAR_LONGITUDE = 1
COL_SUN_DISTANCE = 2
COL_ALTITUDE = 3
COL_LATITUDE = 4
COL_LONGITUDE = 5
COL_SOLAR_ZENITH_ANGLE = 6
COL_SUBSOLAR_LATITUDE = 7
COL_SUBSOLAR_LONGITUDE = 8

# Row-major body-fixed -> MSO rotation matrix cells
ROTATION_MATRIX_FIELDS = tuple(
    f'spice_rotation_matrix_iau_mars_maven_mso_{r}_{c}'
    for r in range(1, 4) for c in range(1, 4)
)

# 3D parameter id -> (dataset, unit)
WHISKER_PARAMETERS = {
    'mag_magnetic_field_mso': ('in_situ_kp_mag', 'nT'),
    'swia_hplus_flow_velocity_mso': ('in_situ_kp_swia', 'km/s'),
    'static_o2plus_flow_velocity_mso': ('in_situ_kp_static', 'km/s'),
    'static_hplus_characteristic_direction_mso': ('in_situ_kp_static', ''),
    'static_dominant_pickup_ion_characteristic_direction_mso': ('in_situ_kp_static', ''),
}

PALETTES = ('bluered', 'cool', 'inferno', 'plasma', 'spring', 'viridis')

# 1D orbit-path color parameters (all from one dataset)
PATH_COLOR_DATASET = 'in_situ_kp_ngims'
PATH_COLOR_PARAMETERS = {
    'ngims_ar_density': 'Ar Density',
    'ngims_co2_density': 'CO2 Density',
    'ngims_co_density': 'CO Density',
    'ngims_he_density': 'He Density',
}
