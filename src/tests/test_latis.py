"""
===============================================================================
EPHEMVIZ - LaTiS Data Source Test Suite
===============================================================================
Tests for request URL construction, day ranges and filters, response
parsing, error wrapping and the available date range. HTTP traffic goes
through an httpx.MockTransport.
===============================================================================
"""

import sys
import os
import asyncio
from datetime import date

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import httpx
import pandas as pd
import pytest

from ephemviz.core.errors import DataSourceError
from ephemviz.services.latis import DateRange, LatisDataSource, build_url

BASE = 'http://latis.test/latis/dap/'


def make_source(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LatisDataSource(BASE, client=client), client


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# Test: URLs and date ranges
# =============================================================================

class TestRequests:

    def test_build_url(self):
        url = build_url(BASE, 'in_situ_kp_spice', ['time', 'spice_mars_season_ls'],
                        ['time>2019-06-01', 'time<2019-06-02'])
        assert url == (BASE + 'in_situ_kp_spice.jsond?time,spice_mars_season_ls'
                       '&time>2019-06-01&time<2019-06-02')

    def test_build_url_without_filters(self):
        assert build_url(BASE, 'mgitm', ['Latitude'], suffix='csv') == BASE + 'mgitm.csv?Latitude&'

    @pytest.mark.parametrize("day", ['2019-06-01', date(2019, 6, 1), '2019-06-01T17:45:00Z'])
    def test_day_range(self, day):
        date_range = DateRange.for_day(day)
        assert date_range.start == pd.Timestamp('2019-06-01', tz='UTC')
        assert date_range.end == pd.Timestamp('2019-06-02', tz='UTC')
        assert date_range.end_seconds - date_range.start_seconds == 86400.0

    def test_day_filters(self):
        assert DateRange.for_day('2019-12-31').filters() == ('time>2019-12-31', 'time<2020-01-01')


# =============================================================================
# Test: Fetching
# =============================================================================

class TestFetch:

    def test_rows_returned(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={'in_situ_kp_mag': {'data': [[1, 2.0, 3.0, 4.0]]}})

        source, client = make_source(handler)
        rows = run(source.fetch('in_situ_kp_mag', ['time', 'x', 'y', 'z'], ['time>2019-06-01']))
        assert rows == [[1, 2.0, 3.0, 4.0]]
        assert seen[0].startswith(BASE + 'in_situ_kp_mag.jsond?time,x,y,z')

    def test_http_error_wrapped(self):
        source, _ = make_source(lambda request: httpx.Response(503))
        with pytest.raises(DataSourceError, match='request failed'):
            run(source.fetch('in_situ_kp_spice', ['time']))

    def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        source, _ = make_source(handler)
        with pytest.raises(DataSourceError):
            run(source.fetch('in_situ_kp_spice', ['time']))

    def test_missing_data_block(self):
        source, _ = make_source(lambda request: httpx.Response(200, json={'other': {}}))
        with pytest.raises(DataSourceError, match='no data block'):
            run(source.fetch('in_situ_kp_spice', ['time']))

    def test_invalid_json(self):
        source, _ = make_source(lambda request: httpx.Response(200, text='<html>'))
        with pytest.raises(DataSourceError, match='not JSON'):
            run(source.fetch('in_situ_kp_spice', ['time']))

    def test_empty_rows_are_not_an_error(self):
        source, _ = make_source(
            lambda request: httpx.Response(200, json={'mgitm': {'data': []}}))
        assert run(source.fetch('mgitm', ['Latitude', 'Longitude', 'o2'])) == []

    def test_available_date_range(self):
        def handler(request):
            first = 'first()' in str(request.url) or 'first%28%29' in str(request.url)
            stamp = 1414800000000 if first else '2020-01-31T12:00:00Z'
            return httpx.Response(200, json={'in_situ_kp_data': {'data': [[stamp]]}})

        source, _ = make_source(handler)
        available = run(source.available_date_range())
        assert available.start == pd.Timestamp(1414800000000, unit='ms', tz='UTC')
        assert available.end == pd.Timestamp('2020-01-31T12:00:00', tz='UTC')

    def test_owned_client_closed(self):
        async def scenario():
            async with LatisDataSource(BASE) as source:
                client = source._client
            return client.is_closed

        assert run(scenario())

    def test_shared_client_left_open(self):
        source, client = make_source(lambda request: httpx.Response(200))
        run(source.aclose())
        assert not client.is_closed
