#!/usr/bin/env python3
"""
===============================================================================
EPHEMVIZ - COMMAND LINE ENTRY POINT
===============================================================================
Runs one viewing session against a LaTiS service without a renderer: loads
a day of ephemeris, optionally a whisker parameter and a model shell,
steps the clock through the day and reports what would be drawn.

USAGE:
    ephemviz                                  # 2019-06-01, inertial frame
    ephemviz --date 2019-07-04 --frame fixed
    ephemviz --whisker mag_magnetic_field_mso --model Temp_tn
    ephemviz --export ephemeris.csv           # Derived series as CSV
    ephemviz --date 2019-07-04 --check-availability
===============================================================================
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import numpy as np

from ephemviz.config import LoggingConfig, VizConfig, load_config
from ephemviz.core.constants import (
    MODEL_PARAMETERS, PATH_COLOR_PARAMETERS, SOLAR_FLUX_OPTIONS,
    WHISKER_PARAMETERS,
)
from ephemviz.core.errors import ConfigurationError
from ephemviz.services.latis import DateRange, LatisDataSource
from ephemviz.services.render import RecordingSink
from ephemviz.services.session import EphemerisSession

logger = logging.getLogger('ephemviz')

DEFAULT_DATE = '2019-06-01'


def setup_logging(config: LoggingConfig, level: Optional[str] = None) -> None:
    """Stream handler on stdout plus an optional log file."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.file:
        handlers.append(logging.FileHandler(config.file, mode='w'))
    logging.basicConfig(
        level=(level or config.level).upper(),
        format=config.format,
        handlers=handlers,
        force=True,
    )


async def run_session(config: VizConfig, args: argparse.Namespace) -> EphemerisSession:
    """Drive one session through the requested selections."""
    sink = RecordingSink()
    async with LatisDataSource(config.latis.base_url, config.latis.timeout_s) as source:
        session = EphemerisSession(config, source, sink=sink)

        if args.check_availability:
            await check_availability(source, args.date)

        if args.whisker:
            await session.select_whisker_parameter(args.whisker)
        if args.path:
            await session.select_path_parameter(args.path)
        if args.model:
            await session.select_model_parameter(args.model, args.altitude, args.solar_flux)

        await session.set_frame(args.frame or config.default_frame)
        await session.select_dates(args.date)

        if session.products is not None and args.ticks > 0:
            times = np.linspace(session.products.times[0], session.products.times[-1], args.ticks)
            for t in times:
                layers = session.on_tick(float(t))
                logger.debug("Tick %.0f: %s", t, ', '.join(layers) or 'nothing')
    return session


async def check_availability(source: LatisDataSource, day: str) -> None:
    """
    Refuse a day outside the service's data coverage.

    Raises
    ------
    ValueError
        If ``day`` lies outside the available date range.
    """
    available = await source.available_date_range()
    requested = DateRange.for_day(day)
    logger.info("Data available from %s to %s",
                available.start.isoformat(), available.end.isoformat())
    if requested.end <= available.start or requested.start > available.end:
        raise ValueError(
            f"{day} is outside the available data "
            f"({available.start:%Y-%m-%d} to {available.end:%Y-%m-%d})")


def report(session: EphemerisSession) -> None:
    print("=" * 70)
    print("  EPHEMVIZ SESSION SUMMARY")
    print("=" * 70)
    for line in session.readiness.get_status_summary().splitlines():
        print(f"  {line}")

    products = session.products
    if products is not None:
        print(f"  Samples: {len(products)} ({products.frame.value} frame)")
        print(f"  Mean solar longitude: {products.mean_solar_longitude:.2f} deg")
        if products.degraded_count:
            print(f"  Identity-transformed positions: {products.degraded_count}")
    if session.whisker_set is not None:
        print(f"  Whiskers: {len(session.whisker_set)} segments, "
              f"{len(session.whisker_set.skipped)} rows skipped")
    if session.shell_grid is not None:
        grid = session.shell_grid
        print(f"  Shell: {len(grid.latitudes)} x {len(grid.longitudes)} cells, "
              f"range [{grid.minimum:.4g}, {grid.maximum:.4g}]")
    print("=" * 70)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point. Parses command line arguments and runs a session.

    Returns
    -------
    int
        Process exit code: 0 with ephemeris loaded, 1 without, 2 for a
        configuration error.
    """
    parser = argparse.ArgumentParser(
        description='MAVEN ephemeris and reference-frame pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ephemviz --date 2019-07-04
  ephemviz --frame fixed --whisker mag_magnetic_field_mso
  ephemviz --model Temp_tn --altitude 150 --solar-flux 200
        """
    )
    parser.add_argument('--config', type=str, default=None,
                        help='Path to config YAML (default: packaged)')
    parser.add_argument('--date', type=str, default=DEFAULT_DATE,
                        help=f'UTC day to load (default: {DEFAULT_DATE})')
    parser.add_argument('--frame', type=str, default=None,
                        help='Reference frame: inertial or fixed')
    parser.add_argument('--whisker', type=str, default=None,
                        choices=sorted(WHISKER_PARAMETERS),
                        help='3D vector parameter drawn as whiskers')
    parser.add_argument('--path', type=str, default=None,
                        choices=sorted(PATH_COLOR_PARAMETERS),
                        help='1D parameter coloring the orbit path')
    parser.add_argument('--model', type=str, default=None,
                        choices=MODEL_PARAMETERS,
                        help='Model parameter shown on the shell')
    parser.add_argument('--altitude', type=float, default=None,
                        help='Model shell altitude (km)')
    parser.add_argument('--solar-flux', type=int, default=None,
                        choices=SOLAR_FLUX_OPTIONS,
                        help='Model solar flux (F10.7)')
    parser.add_argument('--ticks', type=int, default=24,
                        help='Clock ticks to step through the day (default: 24)')
    parser.add_argument('--check-availability', action='store_true',
                        help='Check --date against the data coverage first')
    parser.add_argument('--export', type=str, default=None,
                        help='Write the derived ephemeris series to this CSV')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Override the configured log level')

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    setup_logging(config.logging, args.log_level)

    try:
        session = asyncio.run(run_session(config, args))
    except ValueError as exc:
        logger.error("%s", exc)
        return 2

    report(session)

    if session.products is None:
        logger.error("No ephemeris loaded for %s", args.date)
        return 1

    if args.export:
        session.products.to_frame().to_csv(args.export)
        logger.info("Ephemeris products written to %s", args.export)
    return 0


if __name__ == '__main__':
    sys.exit(main())
