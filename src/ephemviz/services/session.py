"""
===============================================================================
EPHEMVIZ - Ephemeris Session
===============================================================================
One viewing session: the selected day, frame and parameters, the loaded
inputs, and the renderables derived from them.

    select_dates ----> EPHEMERIS ------+--> orbit_path, markers
                 \\--> FRAME_MATRIX ---+--> whiskers
                  \\-> MODEL ----------+--> shell
    set_frame -------> EPHEMERIS (re-derived from retained rows)
    on_tick ---------> shell_rotation, path_rotation, light, markers

Loads run as asyncio tasks tagged with a readiness generation. A newer
request cancels the task it supersedes, and every continuation re-validates
its generation after each await, so only the latest request reaches the
sink.
===============================================================================
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Awaitable, Dict, List, Optional, Sequence, Union

import numpy as np

from ephemviz.config import VizConfig
from ephemviz.core.constants import (
    EPHEMERIS_FIELDS, PATH_COLOR_DATASET, PATH_COLOR_PARAMETERS,
    ROTATION_MATRIX_FIELDS,
)
from ephemviz.core.errors import (
    DataSourceError, EmptyDataset, InputsNotReady, MalformedRow,
    OutOfOrderSample, StaleGenerationResult,
)
from ephemviz.pipeline.ephemeris import EphemerisIngestor, EphemerisProducts
from ephemviz.pipeline.illumination import light_direction
from ephemviz.pipeline.path import align_parameter_to_times, build_orbit_path
from ephemviz.pipeline.readiness import (
    Generation, ReadinessCoordinator, ReadinessState, TrackedInput,
)
from ephemviz.pipeline.reference_frame import (
    FrameProvider, ReferenceFrame, ReferenceFrameTransformer,
    UniformRotationFrameProvider, decode_rotation_matrices,
    orbit_path_model_matrix,
)
from ephemviz.pipeline.shell import (
    ShellGrid, ShellRotationSolver, build_model_query, build_shell_grid,
    model_subsolar_point, round_solar_longitude, shell_model_matrix,
    shell_radius,
)
from ephemviz.pipeline.whiskers import (
    RenderableVectorSet, WhiskerData, WhiskerSource, WhiskerTransformer,
    decode_whisker_rows,
)
from ephemviz.services.colors import MatplotlibColorMapper
from ephemviz.services.latis import DataSource, DateRange
from ephemviz.services.render import (
    DirectionalLight, ModelMatrix, PointMarker, RecordingSink, RenderableSink,
    ShellSurface,
)

logger = logging.getLogger(__name__)

NO_DATA = 'no data'


class EphemerisSession:
    """
    Orchestrates loading, frame changes and per-tick updates.

    Parameters
    ----------
    config : VizConfig
        Loaded configuration.
    data_source : DataSource
        Row source, usually a LatisDataSource.
    frame_provider : FrameProvider, optional
        Fixed <-> inertial matrices. Defaults to a uniform spin at the
        configured body rotation rate.
    color_mapper : MatplotlibColorMapper, optional
    sink : RenderableSink, optional
        Receives every layer. Defaults to a RecordingSink.
    """

    def __init__(self, config: VizConfig, data_source: DataSource,
                 frame_provider: Optional[FrameProvider] = None,
                 color_mapper: Optional[MatplotlibColorMapper] = None,
                 sink: Optional[RenderableSink] = None) -> None:
        self.config = config
        self.data_source = data_source
        self.frame_provider = frame_provider or UniformRotationFrameProvider(
            config.body.rotation_rate)
        self.color_mapper = color_mapper or MatplotlibColorMapper(config.shell.nshades)
        self.sink = sink if sink is not None else RecordingSink()

        self.ellipsoid = config.body.ellipsoid()
        self.readiness = ReadinessCoordinator()
        self.transformer = ReferenceFrameTransformer(
            self.ellipsoid, self.frame_provider, config.default_frame)
        self.ingestor = EphemerisIngestor(self.transformer, config.ephemeris)
        self.whisker_transformer = WhiskerTransformer(self.color_mapper, config.whiskers)
        self.shell_solver = ShellRotationSolver(self.ellipsoid)

        self.date_range: Optional[DateRange] = None
        self.products: Optional[EphemerisProducts] = None
        self.rotation_matrices: List[np.ndarray] = []
        self._ephemeris_rows: Sequence[Sequence] = []
        self._rows_range: Optional[DateRange] = None

        self.whisker_parameter: Optional[str] = None
        self.whisker_data: Optional[WhiskerData] = None
        self.whisker_set: Optional[RenderableVectorSet] = None

        self.path_parameter: Optional[str] = None
        self.path_values: Optional[List[Optional[float]]] = None

        self.model_parameter: Optional[str] = None
        self.model_altitude_km = config.shell.default_altitude_km
        self.solar_flux = config.shell.default_solar_flux
        self.model_subsolar = None
        self.shell_grid: Optional[ShellGrid] = None

        self._light: Optional[np.ndarray] = None
        self._tasks: Dict[TrackedInput, asyncio.Task] = {}
        self._requests = {'whiskers': 0, 'path': 0}

        self.transformer.add_listener(self._on_frame_changed)

    # =========================================================================
    # TASKS
    # =========================================================================

    def _start(self, tracked: TrackedInput, coro: Awaitable) -> asyncio.Task:
        previous = self._tasks.get(tracked)
        if previous is not None and not previous.done():
            logger.debug("Cancelling superseded %s load", tracked.name)
            previous.cancel()
        task = asyncio.ensure_future(coro)
        self._tasks[tracked] = task
        return task

    def _in_flight(self, tracked: TrackedInput) -> Optional[asyncio.Task]:
        task = self._tasks.get(tracked)
        return task if task is not None and not task.done() else None

    async def _wait_for(self, *inputs: TrackedInput) -> None:
        """
        Wait out in-flight loads of ``inputs``, then require them READY.

        Raises
        ------
        InputsNotReady
        """
        while True:
            pending = [t for t in (self._in_flight(i) for i in inputs) if t is not None]
            if not pending:
                break
            await asyncio.wait(pending)
        self.readiness.guard(*inputs)

    # =========================================================================
    # DATE RANGE
    # =========================================================================

    async def select_dates(self, day: Union[str, date, datetime]) -> ReadinessState:
        """
        Load one UTC day of ephemeris, frame matrices and (when a model
        parameter is selected) model data, then refresh the selected
        whisker and path parameters.
        """
        date_range = DateRange.for_day(day)
        self.date_range = date_range
        self._clear_day()
        reason = f"dates {date_range.start:%Y-%m-%d}"
        logger.info("Selected %s to %s", date_range.start.isoformat(), date_range.end.isoformat())

        tasks = [
            self._start(TrackedInput.EPHEMERIS, self._load_ephemeris(
                self.readiness.begin(TrackedInput.EPHEMERIS, reason), date_range)),
            self._start(TrackedInput.FRAME_MATRIX, self._load_frame_matrices(
                self.readiness.begin(TrackedInput.FRAME_MATRIX, reason), date_range)),
        ]
        if self.model_parameter is not None:
            tasks.append(self._start(TrackedInput.MODEL, self._load_model(
                self.readiness.begin(TrackedInput.MODEL, reason))))

        await asyncio.wait(tasks)
        if self.date_range is not date_range:
            logger.debug("Date selection %s superseded", reason)
            return self.readiness.snapshot()

        if self.whisker_parameter is not None:
            await self.select_whisker_parameter(self.whisker_parameter)
        if self.path_parameter is not None:
            await self.select_path_parameter(self.path_parameter)
        return self.readiness.snapshot()

    def _clear_day(self) -> None:
        # Nothing derived from the previous day may outlive its selection
        self.products = None
        self._ephemeris_rows = []
        self._rows_range = None
        self.rotation_matrices = []
        self.whisker_data = self.whisker_set = None
        self.path_values = None

    async def _load_ephemeris(self, generation: Generation, date_range: DateRange) -> None:
        try:
            rows = await self.data_source.fetch(
                self.config.ephemeris.dataset, EPHEMERIS_FIELDS, date_range.filters())
            self.readiness.validate(generation)
            if not rows:
                raise EmptyDataset(f"No ephemeris rows for {date_range.start:%Y-%m-%d}")
            self._ingest(generation, rows, date_range)
        except StaleGenerationResult as exc:
            logger.debug("Discarded ephemeris result: %s", exc)
        except EmptyDataset as exc:
            logger.warning("Ephemeris: %s", exc)
            self.readiness.fail(generation, NO_DATA)
        except (DataSourceError, OutOfOrderSample) as exc:
            logger.error("Ephemeris load failed: %s", exc)
            self.readiness.fail(generation, str(exc))

    def _ingest(self, generation: Generation, rows: Sequence[Sequence],
                date_range: DateRange) -> None:
        products = self.ingestor.ingest_raw(rows, self.transformer.frame)
        self._ephemeris_rows = rows
        self._rows_range = date_range
        self.products = products
        if self.readiness.complete(generation):
            self._emit_orbit_path()
            self._emit_markers(float(products.times[0]))

    async def _load_frame_matrices(self, generation: Generation, date_range: DateRange) -> None:
        try:
            rows = await self.data_source.fetch(
                self.config.ephemeris.dataset, ROTATION_MATRIX_FIELDS, date_range.filters())
            self.readiness.validate(generation)
            if not rows:
                raise EmptyDataset(f"No frame matrices for {date_range.start:%Y-%m-%d}")
            self.rotation_matrices = decode_rotation_matrices(rows, has_time=False)
            logger.info("Loaded %d MSO -> body-fixed matrices", len(self.rotation_matrices))
            self.readiness.complete(generation)
        except StaleGenerationResult as exc:
            logger.debug("Discarded frame-matrix result: %s", exc)
        except EmptyDataset as exc:
            logger.warning("Frame matrices: %s", exc)
            self.readiness.fail(generation, NO_DATA)
        except (DataSourceError, MalformedRow) as exc:
            logger.error("Frame-matrix load failed: %s", exc)
            self.readiness.fail(generation, str(exc))

    # =========================================================================
    # REFERENCE FRAME
    # =========================================================================

    async def set_frame(self, frame: Union[str, ReferenceFrame]) -> bool:
        """
        Switch the reference frame and re-derive every dependent series.

        Returns
        -------
        bool
            False if ``frame`` was already selected.
        """
        if not isinstance(frame, ReferenceFrame):
            frame = ReferenceFrame.from_name(frame)
        if not self.transformer.set_frame(frame):
            return False

        pending = self._in_flight(TrackedInput.EPHEMERIS)
        if pending is not None:
            await asyncio.wait([pending])
        await self._emit_whiskers()
        return True

    def _on_frame_changed(self, frame: ReferenceFrame, revision: int) -> None:
        # An in-flight load reads the frame when it ingests
        if self._in_flight(TrackedInput.EPHEMERIS) is not None or not self._ephemeris_rows:
            return
        if self._rows_range is not self.date_range:
            logger.debug("Retained ephemeris rows belong to another day; not re-derived")
            return

        generation = self.readiness.begin(
            TrackedInput.EPHEMERIS, f"frame {frame.value} (revision {revision})")
        try:
            self._ingest(generation, self._ephemeris_rows, self._rows_range)
        except EmptyDataset as exc:
            logger.warning("Ephemeris: %s", exc)
            self.readiness.fail(generation, NO_DATA)
        except OutOfOrderSample as exc:
            logger.error("Ephemeris re-derivation failed: %s", exc)
            self.readiness.fail(generation, str(exc))

    # =========================================================================
    # WHISKERS
    # =========================================================================

    async def select_whisker_parameter(self, parameter: Optional[str]) -> Optional[RenderableVectorSet]:
        """
        Fetch a 3D vector parameter for the selected day and draw it as
        whiskers. None clears the layer.

        Raises
        ------
        ValueError
            If ``parameter`` is not a known vector parameter.
        """
        self._requests['whiskers'] += 1
        request = self._requests['whiskers']

        if parameter is None:
            self.whisker_parameter = self.whisker_data = self.whisker_set = None
            self.sink.submit('whiskers', [])
            return None

        source = WhiskerSource.for_parameter(parameter)
        self.whisker_parameter = parameter
        date_range = self.date_range
        if date_range is None:
            logger.info("%s selected; loads with the next date range", parameter)
            return None

        fields = ['time'] + [f'{parameter}_{axis}' for axis in 'xyz']
        try:
            rows = await self.data_source.fetch(source.dataset, fields, date_range.filters())
        except DataSourceError as exc:
            logger.error("Whisker load failed: %s", exc)
            return None
        if request != self._requests['whiskers'] or date_range is not self.date_range:
            logger.debug("Discarded superseded %s rows", parameter)
            return None
        if not rows:
            logger.warning("No %s rows for %s", parameter, f"{date_range.start:%Y-%m-%d}")
            self.whisker_data = None
            self.sink.submit('whiskers', [])
            return None

        self.whisker_data = decode_whisker_rows(source, parameter, rows)
        return await self._emit_whiskers()

    async def _emit_whiskers(self) -> Optional[RenderableVectorSet]:
        data = self.whisker_data
        if data is None:
            return None

        required = [TrackedInput.EPHEMERIS]
        if self.transformer.frame is ReferenceFrame.BODY_FIXED:
            required.append(TrackedInput.FRAME_MATRIX)
        try:
            await self._wait_for(*required)
        except InputsNotReady as exc:
            logger.warning("Whiskers not drawn: %s", exc)
            return None
        if data is not self.whisker_data:
            return None

        result = self.whisker_transformer.transform(
            data.rows, self.products.frame, self.rotation_matrices,
            self.products.positions, self.frame_provider)
        self.whisker_set = result
        self.sink.submit('whiskers', result.segments)
        return result

    # =========================================================================
    # ORBIT PATH
    # =========================================================================

    async def select_path_parameter(self, parameter: Optional[str]):
        """
        Color the orbit path by a 1D parameter; None restores the neutral
        color.

        Raises
        ------
        ValueError
            If ``parameter`` is not a known path parameter.
        """
        self._requests['path'] += 1
        request = self._requests['path']

        if parameter is None:
            self.path_parameter = self.path_values = None
            return self._emit_orbit_path()
        if parameter not in PATH_COLOR_PARAMETERS:
            raise ValueError(f"Unknown path parameter {parameter!r}")

        self.path_parameter = parameter
        date_range = self.date_range
        if date_range is None:
            logger.info("%s selected; loads with the next date range", parameter)
            return None
        try:
            rows = await self.data_source.fetch(
                PATH_COLOR_DATASET, ['time', parameter], date_range.filters())
            await self._wait_for(TrackedInput.EPHEMERIS)
        except (DataSourceError, InputsNotReady) as exc:
            logger.error("Path coloring by %s failed: %s", parameter, exc)
            return None
        if request != self._requests['path'] or date_range is not self.date_range:
            logger.debug("Discarded superseded %s rows", parameter)
            return None

        self.path_values = align_parameter_to_times(self.products.times, rows)
        return self._emit_orbit_path()

    def _emit_orbit_path(self):
        if self.products is None or not self.readiness.is_ready(TrackedInput.EPHEMERIS):
            return None
        path = build_orbit_path(self.products, self.path_values, self.color_mapper)
        self.sink.submit('orbit_path', [path])
        return path

    # =========================================================================
    # MODEL SHELL
    # =========================================================================

    async def select_model_parameter(self, parameter: Optional[str],
                                     altitude_km: Optional[float] = None,
                                     solar_flux: Optional[int] = None) -> Optional[ShellGrid]:
        """
        Load the model shell for ``parameter``; None hides it.

        The season of the model run is the rounded mean solar longitude of
        the loaded ephemeris, so the load waits for EPHEMERIS.

        Raises
        ------
        ValueError
            If ``parameter`` is not a model parameter.
        """
        if altitude_km is not None:
            self.model_altitude_km = altitude_km
        if solar_flux is not None:
            self.solar_flux = solar_flux

        if parameter is None:
            self.model_parameter = self.shell_grid = self.model_subsolar = None
            self.readiness.reset(TrackedInput.MODEL, 'model hidden')
            self.sink.submit('shell', [])
            return None

        # Validates the parameter before any state changes
        build_model_query(parameter, self.model_altitude_km, self.solar_flux, 0)
        self.model_parameter = parameter
        if self.date_range is None:
            return None

        generation = self.readiness.begin(TrackedInput.MODEL, parameter)
        await asyncio.wait([self._start(TrackedInput.MODEL, self._load_model(generation))])
        if self.readiness.is_current(generation) and self.readiness.is_ready(TrackedInput.MODEL):
            return self.shell_grid
        return None

    async def _load_model(self, generation: Generation) -> None:
        cfg = self.config.shell
        try:
            await self._wait_for(TrackedInput.EPHEMERIS)
            self.readiness.validate(generation)

            season = round_solar_longitude(self.products.mean_solar_longitude)
            query = build_model_query(self.model_parameter, self.model_altitude_km,
                                      self.solar_flux, season)
            rows = await self.data_source.fetch(query.dataset, query.fields, query.filters)
            self.readiness.validate(generation)

            grid = build_shell_grid(rows, self.color_mapper, cfg.palette, cfg.alpha)
        except StaleGenerationResult as exc:
            logger.debug("Discarded model result: %s", exc)
            return
        except EmptyDataset as exc:
            logger.warning("Model: %s", exc)
            self.readiness.fail(generation, NO_DATA)
            return
        except (InputsNotReady, DataSourceError, MalformedRow) as exc:
            logger.error("Model load failed: %s", exc)
            self.readiness.fail(generation, str(exc))
            return

        self.shell_grid = grid
        self.model_subsolar = model_subsolar_point(season)
        logger.info("Model %s at %.2f km, F10.7=%d, Ls season %d",
                    self.model_parameter, self.model_altitude_km, self.solar_flux, season)
        if self.readiness.complete(generation):
            radius = shell_radius(self.model_altitude_km, self.ellipsoid.maximum_radius,
                                  cfg.clearance_m)
            self.sink.submit('shell', [ShellSurface(grid.pixels, grid.latitudes,
                                                    grid.longitudes, radius)])

    # =========================================================================
    # PER-TICK UPDATES
    # =========================================================================

    def on_tick(self, time: float) -> List[str]:
        """
        Per-frame updates at clock ``time`` (POSIX s).

        Returns
        -------
        list of str
            Layers submitted during this tick.
        """
        emitted = []
        if not self.readiness.is_ready(TrackedInput.EPHEMERIS):
            return emitted
        products = self.products

        if self.readiness.is_ready(TrackedInput.MODEL) and self.model_subsolar is not None:
            rotation = self.shell_solver.compute_rotation(
                time, self.model_subsolar, products.sub_solar)
            self.sink.submit('shell_rotation', [ModelMatrix(shell_model_matrix(rotation))])
            emitted.append('shell_rotation')

        if products.frame is ReferenceFrame.INERTIAL:
            matrix = orbit_path_model_matrix(time, self.frame_provider)
            self.sink.submit('path_rotation', [ModelMatrix(matrix)])
            emitted.append('path_rotation')

        direction = light_direction(time, products, self.config.ephemeris.light_tolerance_s)
        if direction is not None:
            self._light = direction
        if self._light is not None:
            self.sink.submit('light', [DirectionalLight(self._light)])
            emitted.append('light')

        if self._emit_markers(time):
            emitted.append('markers')
        return emitted

    def _emit_markers(self, time: float) -> bool:
        markers = []
        for name in ('positions', 'ground_track', 'sub_solar', 'solar_positions'):
            value = getattr(self.products, name).get_value(time)
            if value is not None:
                markers.append(PointMarker(name, value, time))
        if not markers:
            return False
        self.sink.submit('markers', markers)
        return True
