"""
===============================================================================
EPHEMVIZ - Ephemeris Transformation and Reference-Frame Pipeline
===============================================================================
Core of a 3D Mars / MAVEN visualization: ingests time-tagged telemetry rows,
converts them between body-fixed and inertial frames, derives ground track,
sub-solar and illumination quantities, orients vector whiskers and aligns the
atmospheric-model shell with the observed sub-solar point.

Sub-packages:
    core/      - constants, errors, quaternion, frames, sampled series
    pipeline/  - ingestion, frame transform, whiskers, shell, readiness
    services/  - data source, color mapper, render sink, session
===============================================================================
"""

__version__ = "0.1.0"
