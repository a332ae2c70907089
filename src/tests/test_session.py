"""
===============================================================================
EPHEMVIZ - Session Test Suite
===============================================================================
End-to-end tests of the session against an in-memory data source: date
selection, failure reasons, discarding of superseded loads, frame changes,
whiskers, orbit-path coloring, the model shell and per-tick updates.
===============================================================================
"""

import sys
import os
import asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from ephemviz.config import VizConfig, WhiskerConfig
from ephemviz.core.constants import MARS_AXIAL_TILT, MARS_RADIUS
from ephemviz.core.errors import DataSourceError
from ephemviz.pipeline.readiness import InputState, TrackedInput
from ephemviz.pipeline.reference_frame import ReferenceFrame
from ephemviz.services.colors import GRAY
from ephemviz.services.render import RecordingSink
from ephemviz.services.session import EphemerisSession

DAY1 = '2019-06-01'
DAY2 = '2019-06-02'
DAY1_MS = 1559347200000
T0 = DAY1_MS / 1000.0
IDENTITY_ROW = [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0]
MODEL_ROWS = [[-87.5, 2.5, 100.0], [-87.5, 7.5, 200.0],
              [-82.5, 2.5, 300.0], [-82.5, 7.5, 400.0]]


def day_ms(filters):
    """Epoch ms of the day in a ``time>YYYY-MM-DD`` filter."""
    day = filters[0].split('>')[1]
    return pd.Timestamp(day, tz='UTC').value // 1000000


def ephemeris_rows(start_ms, n=10, ls=100.0):
    return [[start_ms + 60000 * i, ls, 1.5, 400.0 + i, 10.0 + i, 20.0 + i,
             45.0, 5.0, -30.0 + i] for i in range(n)]


class FakeDataSource:
    """
    In-memory DataSource. Each table is a list of rows, a callable taking
    the request filters, or an exception to raise.
    """

    def __init__(self, **tables):
        self.tables = {
            'ephemeris': lambda f: ephemeris_rows(day_ms(f)),
            'matrices': lambda f: [IDENTITY_ROW] * 10,
            'vectors': lambda f: [[day_ms(f) + 60000 * i, float(i + 1), 0.0, 0.0]
                                  for i in range(10)],
            'path': lambda f: [[day_ms(f), 1.0], [day_ms(f) + 120000, 3.0]],
            'model': MODEL_ROWS,
        }
        self.tables.update(tables)
        self.delays = {}
        self.requests = []

    @staticmethod
    def _route(dataset, fields):
        if dataset == 'in_situ_kp_spice':
            return 'ephemeris' if fields[0] == 'time' else 'matrices'
        if dataset == 'mgitm':
            return 'model'
        if dataset == 'in_situ_kp_ngims':
            return 'path'
        return 'vectors'

    async def fetch(self, dataset, fields, filters=()):
        self.requests.append((dataset, tuple(fields), tuple(filters)))
        await asyncio.sleep(self.delays.get(filters[0] if filters else None, 0.0))

        table = self.tables[self._route(dataset, list(fields))]
        if isinstance(table, Exception):
            raise table
        return table(filters) if callable(table) else list(table)


def failing_day(failure):
    """Ephemeris table whose second day returns ``failure`` (rows or an exception)."""
    def table(filters):
        if filters[0] == 'time>2019-06-02':
            if isinstance(failure, Exception):
                raise failure
            return failure
        return ephemeris_rows(day_ms(filters))
    return table


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def source():
    return FakeDataSource()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def config():
    return VizConfig(whiskers=WhiskerConfig(stride=1, max_length_m=1000.0))


@pytest.fixture
def session(config, source, sink):
    return EphemerisSession(config, source, sink=sink)


# =============================================================================
# Test: Date selection
# =============================================================================

class TestSelectDates:

    def test_loads_ephemeris_and_matrices(self, session, sink):
        state = run(session.select_dates(DAY1))

        assert state.ephemeris_ready and state.frame_matrix_ready
        assert session.readiness.state(TrackedInput.MODEL) is InputState.IDLE
        assert len(session.products) == 10
        assert session.products.times[0] == T0
        assert len(session.rotation_matrices) == 10
        assert len(sink.latest('orbit_path')[0].positions) == 10
        assert {m.name for m in sink.latest('markers')} == {
            'positions', 'ground_track', 'sub_solar', 'solar_positions'}

    def test_requests_use_day_filters(self, session, source):
        run(session.select_dates(DAY1))
        filters = {request[2] for request in source.requests}
        assert filters == {('time>2019-06-01', 'time<2019-06-02')}

    def test_empty_ephemeris_fails_with_no_data(self, config, sink):
        session = EphemerisSession(config, FakeDataSource(ephemeris=[]), sink=sink)
        state = run(session.select_dates(DAY1))

        assert not state.ephemeris_ready
        assert session.readiness.state(TrackedInput.EPHEMERIS) is InputState.FAILED
        assert session.readiness.reason(TrackedInput.EPHEMERIS) == 'no data'
        assert session.products is None
        assert sink.latest('orbit_path') == []

    def test_data_source_error_fails_input(self, config, sink):
        source = FakeDataSource(matrices=DataSourceError('in_situ_kp_spice: request failed'))
        session = EphemerisSession(config, source, sink=sink)
        state = run(session.select_dates(DAY1))

        assert state.ephemeris_ready
        assert session.readiness.state(TrackedInput.FRAME_MATRIX) is InputState.FAILED
        assert 'request failed' in session.readiness.reason(TrackedInput.FRAME_MATRIX)

    def test_superseded_selection_is_discarded(self, session, source):
        source.delays['time>2019-06-01'] = 0.05

        async def scenario():
            first = asyncio.ensure_future(session.select_dates(DAY1))
            await asyncio.sleep(0)
            await session.select_dates(DAY2)
            await first

        run(scenario())
        assert session.products.times[0] == T0 + 86400.0
        assert session.date_range.start == pd.Timestamp(DAY2, tz='UTC')
        assert session.readiness.current(TrackedInput.EPHEMERIS).number == 2
        assert session.readiness.is_ready(TrackedInput.EPHEMERIS, TrackedInput.FRAME_MATRIX)

    def test_stale_generation_result_not_applied(self, session):
        async def scenario():
            await session.select_dates(DAY1)
            loaded = session.products
            stale = session.readiness.begin(TrackedInput.EPHEMERIS)
            session.readiness.begin(TrackedInput.EPHEMERIS)
            await session._load_ephemeris(stale, session.date_range)
            return loaded

        loaded = run(scenario())
        assert session.products is loaded


    @pytest.mark.parametrize("failure, reason", [
        ([], 'no data'),
        (DataSourceError('in_situ_kp_spice: request failed'), 'request failed'),
    ])
    def test_failed_day_not_revived_by_frame_change(self, config, sink, failure, reason):
        session = EphemerisSession(config, FakeDataSource(ephemeris=failing_day(failure)), sink=sink)

        async def scenario():
            await session.select_dates(DAY1)
            await session.select_dates(DAY2)
            return await session.set_frame(ReferenceFrame.BODY_FIXED)

        assert run(scenario())
        assert session.readiness.state(TrackedInput.EPHEMERIS) is InputState.FAILED
        assert reason in session.readiness.reason(TrackedInput.EPHEMERIS)
        assert session.readiness.current(TrackedInput.EPHEMERIS).number == 2
        assert session.products is None
        assert session.on_tick(T0) == []


# =============================================================================
# Test: Frame changes
# =============================================================================

class TestSetFrame:

    def test_frame_change_rederives_series(self, session, source):
        async def scenario():
            await session.select_dates(DAY1)
            inertial = session.products
            changed = await session.set_frame('fixed')
            return inertial, changed

        inertial, changed = run(scenario())
        fixed = session.products

        assert changed
        assert fixed.frame is ReferenceFrame.BODY_FIXED
        assert fixed is not inertial
        assert session.readiness.current(TrackedInput.EPHEMERIS).number == 2
        assert session.readiness.is_ready(TrackedInput.EPHEMERIS)
        assert not np.allclose(fixed.positions.get_value(T0 + 540.0),
                               inertial.positions.get_value(T0 + 540.0))
        # Rows were retained, not refetched
        assert sum(1 for r in source.requests if r[1][0] == 'time' and r[0] == 'in_situ_kp_spice') == 1

    def test_same_frame_is_noop(self, session):
        assert not run(session.set_frame(ReferenceFrame.INERTIAL))

    def test_frame_change_before_data(self, session):
        assert run(session.set_frame(ReferenceFrame.BODY_FIXED))
        assert session.readiness.state(TrackedInput.EPHEMERIS) is InputState.IDLE


# =============================================================================
# Test: Whiskers and orbit path
# =============================================================================

class TestWhiskersAndPath:

    def test_whiskers_selected_before_dates(self, session, sink):
        async def scenario():
            assert await session.select_whisker_parameter('mag_magnetic_field_mso') is None
            await session.select_dates(DAY1)

        run(scenario())
        assert len(session.whisker_set) == 10
        assert len(sink.latest('whiskers')) == 10

    def test_whisker_request_fields(self, session, source):
        async def scenario():
            await session.select_dates(DAY1)
            await session.select_whisker_parameter('swia_hplus_flow_velocity_mso')

        run(scenario())
        dataset, fields, _ = source.requests[-1]
        assert dataset == 'in_situ_kp_swia'
        assert fields == ('time', 'swia_hplus_flow_velocity_mso_x',
                          'swia_hplus_flow_velocity_mso_y', 'swia_hplus_flow_velocity_mso_z')

    def test_whiskers_redrawn_on_frame_change(self, session, sink):
        async def scenario():
            await session.select_dates(DAY1)
            await session.select_whisker_parameter('mag_magnetic_field_mso')
            inertial_start = sink.latest('whiskers')[5].start
            await session.set_frame(ReferenceFrame.BODY_FIXED)
            return inertial_start

        inertial_start = run(scenario())
        fixed_start = sink.latest('whiskers')[5].start
        assert_allclose(fixed_start, session.products.positions.get_value(T0 + 300.0))
        assert_allclose(inertial_start, fixed_start, atol=1e-6)

    def test_body_fixed_whiskers_need_frame_matrices(self, config, sink):
        source = FakeDataSource(matrices=[])
        session = EphemerisSession(config, source, sink=sink)

        async def scenario():
            await session.set_frame(ReferenceFrame.BODY_FIXED)
            await session.select_dates(DAY1)
            return await session.select_whisker_parameter('mag_magnetic_field_mso')

        assert run(scenario()) is None
        assert session.readiness.reason(TrackedInput.FRAME_MATRIX) == 'no data'
        assert sink.latest('whiskers') == []

    def test_whiskers_of_previous_day_discarded(self, session, source, sink):
        async def scenario():
            await session.select_dates(DAY1)
            source.delays['time>2019-06-01'] = 0.05
            source.delays['time>2019-06-02'] = 0.1
            previous = asyncio.ensure_future(
                session.select_whisker_parameter('mag_magnetic_field_mso'))
            await asyncio.sleep(0)
            await session.select_dates(DAY2)
            return await previous

        assert run(scenario()) is None
        assert len(session.whisker_set) == 10
        assert len(sink.latest('whiskers')) == 10
        assert session.whisker_data.rows[0].time == T0 + 86400.0

    def test_path_of_previous_day_discarded(self, session, source, sink):
        async def scenario():
            await session.select_dates(DAY1)
            source.delays['time>2019-06-01'] = 0.05
            source.delays['time>2019-06-02'] = 0.1
            previous = asyncio.ensure_future(session.select_path_parameter('ngims_ar_density'))
            await asyncio.sleep(0)
            await session.select_dates(DAY2)
            return await previous

        assert run(scenario()) is None
        assert session.path_values[:3] == [1.0, None, 3.0]
        assert sink.latest('orbit_path')[0].colors[0] != GRAY

    def test_clear_whiskers(self, session, sink):
        async def scenario():
            await session.select_dates(DAY1)
            await session.select_whisker_parameter('mag_magnetic_field_mso')
            await session.select_whisker_parameter(None)

        run(scenario())
        assert session.whisker_parameter is None
        assert sink.latest('whiskers') == []

    def test_unknown_whisker_parameter(self, session):
        with pytest.raises(ValueError):
            run(session.select_whisker_parameter('ngims_ar_density'))

    def test_path_coloring(self, session, sink):
        async def scenario():
            await session.select_dates(DAY1)
            await session.select_path_parameter('ngims_ar_density')

        run(scenario())
        colors = sink.latest('orbit_path')[0].colors
        assert len(colors) == 10
        assert colors[0] != GRAY and colors[2] != GRAY
        assert colors[1] == GRAY and colors[9] == GRAY
        assert session.path_values[:3] == [1.0, None, 3.0]

    def test_unknown_path_parameter(self, session):
        with pytest.raises(ValueError):
            run(session.select_path_parameter('Temp_tn'))


# =============================================================================
# Test: Model shell and ticks
# =============================================================================

class TestModelAndTicks:

    def test_model_shell(self, session, source, sink):
        async def scenario():
            await session.select_dates(DAY1)
            return await session.select_model_parameter('Temp_tn')

        grid = run(scenario())
        assert grid is session.shell_grid
        assert grid.pixels.shape == (2, 2, 4)
        assert ('mgitm', ('Latitude', 'Longitude', 'Temp_tn'),
                ('altitude=98.75', 'solar_flux=130', 'solar_longitude=90')) in source.requests

        surface = sink.latest('shell')[0]
        assert surface.radius == pytest.approx(98750.0 + MARS_RADIUS + 10000.0)
        assert session.model_subsolar == (-MARS_AXIAL_TILT, 11.75)
        assert session.readiness.is_ready()

    def test_model_selected_before_dates(self, session):
        async def scenario():
            assert await session.select_model_parameter('o2plus', 150.0, 200) is None
            return await session.select_dates(DAY1)

        state = run(scenario())
        assert state.model_ready
        assert session.shell_grid is not None

    def test_empty_model_fails(self, config, sink):
        session = EphemerisSession(config, FakeDataSource(model=[]), sink=sink)

        async def scenario():
            await session.select_dates(DAY1)
            await session.select_model_parameter('Temp_tn')

        run(scenario())
        assert session.readiness.state(TrackedInput.MODEL) is InputState.FAILED
        assert session.readiness.reason(TrackedInput.MODEL) == 'no data'
        assert 'shell_rotation' not in session.on_tick(T0)

    def test_hide_model(self, session, sink):
        async def scenario():
            await session.select_dates(DAY1)
            await session.select_model_parameter('Temp_tn')
            await session.select_model_parameter(None)

        run(scenario())
        assert session.readiness.state(TrackedInput.MODEL) is InputState.IDLE
        assert sink.latest('shell') == []

    def test_tick_before_data(self, session, sink):
        assert session.on_tick(T0) == []
        assert sink.submissions == 0

    def test_tick_layers(self, session, sink):
        async def scenario():
            await session.select_dates(DAY1)
            await session.select_model_parameter('Temp_tn')

        run(scenario())
        emitted = session.on_tick(T0 + 90.0)
        assert emitted == ['shell_rotation', 'path_rotation', 'light', 'markers']

        rotation = sink.latest('shell_rotation')[0].matrix
        assert rotation.shape == (4, 4)
        assert_allclose(rotation[:3, :3] @ rotation[:3, :3].T, np.eye(3), atol=1e-12)

        light = sink.latest('light')[0].direction
        assert np.linalg.norm(light) == pytest.approx(1.0)

    def test_body_fixed_tick_has_no_path_rotation(self, session):
        async def scenario():
            await session.set_frame(ReferenceFrame.BODY_FIXED)
            await session.select_dates(DAY1)

        run(scenario())
        assert 'path_rotation' not in session.on_tick(T0)

    def test_light_kept_without_nearby_sample(self, session, sink):
        run(session.select_dates(DAY1))
        session.on_tick(T0)
        before = sink.latest('light')[0].direction

        assert 'light' in session.on_tick(T0 + 10 * 86400.0)
        assert_allclose(sink.latest('light')[0].direction, before)
