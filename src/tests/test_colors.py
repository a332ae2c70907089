"""
===============================================================================
EPHEMVIZ - Color Mapping and Orbit Path Test Suite
===============================================================================
Tests for palette lookup, range clipping, series coloring with missing
values, alignment of sparse path parameters onto ephemeris times, the
orbit polyline and the recording sink.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest

from ephemviz.config import EphemerisConfig
from ephemviz.core.frames import MARS_IAU2000
from ephemviz.pipeline.ephemeris import EphemerisIngestor
from ephemviz.pipeline.path import align_parameter_to_times, build_orbit_path
from ephemviz.pipeline.reference_frame import (
    ReferenceFrame, ReferenceFrameTransformer, UniformRotationFrameProvider,
)
from ephemviz.services.colors import GRAY, Color, MatplotlibColorMapper
from ephemviz.services.render import LineSegment, RecordingSink

T0_MS = 1559347200000
T0 = T0_MS / 1000.0


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mapper():
    return MatplotlibColorMapper()


@pytest.fixture
def products():
    transformer = ReferenceFrameTransformer(
        MARS_IAU2000, UniformRotationFrameProvider(), ReferenceFrame.BODY_FIXED)
    rows = [[T0_MS + 60000 * i, 90.0, 1.5, 400.0, 10.0, 20.0 + i, 45.0, 5.0, -30.0]
            for i in range(5)]
    return EphemerisIngestor(transformer, EphemerisConfig()).ingest_raw(rows)


# =============================================================================
# Test: Colors
# =============================================================================

class TestColorMapper:

    def test_color_bytes(self):
        assert Color(1.0, 0.5, 0.0, 0.5).to_bytes() == (255, 128, 0, 128)

    def test_with_alpha(self):
        assert Color(0.1, 0.2, 0.3).with_alpha(0.25).to_tuple() == (0.1, 0.2, 0.3, 0.25)

    def test_endpoints_and_clipping(self, mapper):
        low = mapper.interpolate(0.0, 0.0, 10.0, 'plasma')
        high = mapper.interpolate(10.0, 0.0, 10.0, 'plasma')
        assert low != high
        assert mapper.interpolate(-5.0, 0.0, 10.0, 'plasma') == low
        assert mapper.interpolate(50.0, 0.0, 10.0, 'plasma') == high

    def test_degenerate_range_maps_to_low_end(self, mapper):
        assert mapper.interpolate(3.0, 3.0, 3.0) == mapper.interpolate(0.0, 0.0, 1.0)

    @pytest.mark.parametrize("palette", ['bluered', 'cool', 'inferno', 'plasma', 'spring', 'viridis'])
    def test_palettes(self, mapper, palette):
        color = mapper.interpolate(0.5, 0.0, 1.0, palette)
        assert all(0.0 <= c <= 1.0 for c in color.to_tuple())

    def test_bluered_runs_blue_to_red(self, mapper):
        blue = mapper.interpolate(0.0, 0.0, 1.0, 'bluered')
        red = mapper.interpolate(1.0, 0.0, 1.0, 'bluered')
        assert blue.blue > blue.red
        assert red.red > red.blue

    def test_unknown_palette(self, mapper):
        with pytest.raises(ValueError):
            mapper.interpolate(0.5, 0.0, 1.0, 'jet')

    def test_shades_are_discrete(self):
        mapper = MatplotlibColorMapper(nshades=2)
        assert mapper.interpolate(0.1, 0.0, 1.0) == mapper.interpolate(0.4, 0.0, 1.0)

    def test_too_few_shades(self):
        with pytest.raises(ValueError):
            MatplotlibColorMapper(nshades=1)

    def test_array_with_missing_values(self, mapper):
        colors = mapper.interpolate_array([1.0, None, '', float('nan'), 3.0])
        assert colors[1:4] == [GRAY, GRAY, GRAY]
        assert colors[0] == mapper.interpolate(0.0, 0.0, 1.0)
        assert colors[4] == mapper.interpolate(1.0, 0.0, 1.0)

    def test_array_all_missing(self, mapper):
        assert mapper.interpolate_array([None, None]) == [GRAY, GRAY]


# =============================================================================
# Test: Orbit path
# =============================================================================

class TestOrbitPath:

    def test_sparse_rows_aligned_by_time(self):
        times = [T0, T0 + 60.0, T0 + 120.0, T0 + 180.0]
        rows = [[T0_MS + 60000, 5.0], [T0_MS + 180000, 7.0]]
        assert align_parameter_to_times(times, rows) == [None, 5.0, None, 7.0]

    def test_dense_rows_kept_as_is(self):
        rows = [[T0_MS, 1.0], [T0_MS + 60000, 'bad'], [T0_MS + 120000, 3.0]]
        assert align_parameter_to_times([T0, T0 + 60.0], rows) == [1.0, None, 3.0]

    def test_unmatched_rows_dropped(self):
        rows = [[T0_MS + 30000, 5.0]]
        assert align_parameter_to_times([T0, T0 + 60.0], rows) == [None, None]

    def test_path_without_parameter_is_gray(self, products, mapper):
        path = build_orbit_path(products, None, mapper)
        assert len(path.positions) == 5
        assert path.colors == [GRAY] * 5

    def test_path_values_padded(self, products, mapper):
        path = build_orbit_path(products, [1.0, 2.0], mapper)
        assert len(path.colors) == 5
        assert path.colors[2:] == [GRAY] * 3
        assert path.colors[0] != path.colors[1]


# =============================================================================
# Test: Recording sink
# =============================================================================

class TestRecordingSink:

    def test_submission_replaces_layer(self):
        sink = RecordingSink()
        segment = LineSegment(np.zeros(3), np.array([3.0, 4.0, 0.0]), GRAY)
        sink.submit('whiskers', [segment, segment])
        sink.submit('whiskers', [segment])

        assert sink.latest('whiskers') == [segment]
        assert sink.submissions == 2
        assert sink.latest('shell') == []
        assert segment.length == 5.0
