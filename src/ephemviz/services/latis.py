"""
===============================================================================
EPHEMVIZ - LaTiS Time-Series Data Source
===============================================================================
Row-oriented access to the LaTiS data service over HTTP.

Request URL:

    {base}{dataset}.{suffix}?{field,field,...}&{filter}&{filter}...

The ``jsond`` response is ``{dataset: {"data": [[...], ...]}}``; each row
holds one value per requested field, in request order.
===============================================================================
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import httpx
import pandas as pd

from ephemviz.core.constants import AVAILABILITY_DATASET
from ephemviz.core.errors import DataSourceError

logger = logging.getLogger(__name__)

Rows = List[list]


class DataSource(Protocol):
    async def fetch(self, dataset: str, fields: Sequence[str],
                    filters: Sequence[str] = ()) -> Rows:
        ...


# =============================================================================
# DATE RANGES
# =============================================================================

@dataclass(frozen=True)
class DateRange:
    """Half-open UTC interval [start, end)."""
    start: pd.Timestamp
    end: pd.Timestamp

    @classmethod
    def for_day(cls, day: Union[str, date, datetime, pd.Timestamp]) -> 'DateRange':
        """From the start of ``day`` (UTC) to the start of the next day."""
        start = pd.to_datetime(day, utc=True).normalize()
        return cls(start, start + pd.Timedelta(days=1))

    def filters(self) -> Tuple[str, str]:
        return (f"time>{self.start.strftime('%Y-%m-%d')}",
                f"time<{self.end.strftime('%Y-%m-%d')}")

    @property
    def start_seconds(self) -> float:
        return self.start.value / 1e9

    @property
    def end_seconds(self) -> float:
        return self.end.value / 1e9


# =============================================================================
# CLIENT
# =============================================================================

def build_url(base_url: str, dataset: str, fields: Sequence[str],
              filters: Sequence[str] = (), suffix: str = 'jsond') -> str:
    """LaTiS request URL; field order defines the column order of the rows."""
    projection = ','.join(fields)
    return f"{base_url}{dataset}.{suffix}?{projection}&{'&'.join(filters)}"


class LatisDataSource:
    """
    Async LaTiS client.

    Parameters
    ----------
    base_url : str
        Service root, ending in ``/``.
    timeout : float
        Per-request timeout (s).
    client : httpx.AsyncClient, optional
        Shared client; one is created (and owned) when omitted.
    """

    def __init__(self, base_url: str, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> 'LatisDataSource':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, dataset: str, fields: Sequence[str],
                    filters: Sequence[str] = ()) -> Rows:
        """
        Rows of ``dataset`` for ``fields`` under ``filters``.

        Raises
        ------
        DataSourceError
            On transport or HTTP errors, or a payload without
            ``{dataset: {"data": ...}}``.
        """
        url = build_url(self.base_url, dataset, fields, filters)
        logger.info("GET %s", url)
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            raise DataSourceError(f"{dataset}: request failed: {exc}") from exc
        except ValueError as exc:
            raise DataSourceError(f"{dataset}: response is not JSON: {exc}") from exc

        try:
            rows = payload[dataset]['data']
        except (KeyError, TypeError) as exc:
            raise DataSourceError(f"{dataset}: no data block in response") from exc

        logger.info("%s: %d rows", dataset, len(rows))
        return rows

    async def available_date_range(self) -> DateRange:
        """First and last timestamps of the in-situ key-parameter data."""
        first = await self.fetch(AVAILABILITY_DATASET, ['timetag'], ['first()'])
        last = await self.fetch(AVAILABILITY_DATASET, ['timetag'], ['last()'])
        if not first or not last:
            raise DataSourceError("Availability query returned no rows")
        return DateRange(_as_timestamp(first[0][0]), _as_timestamp(last[0][0]))


def _as_timestamp(cell) -> pd.Timestamp:
    if isinstance(cell, (int, float)):
        return pd.Timestamp(cell, unit='ms', tz='UTC')
    return pd.to_datetime(cell, utc=True)
