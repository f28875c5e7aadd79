"""Ordered DORA metric series over a windowed data source."""

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Protocol

from traffic_light.errors import UnsupportedAggregationError
from traffic_light.models import Granularity, MetricKind, MetricPoint

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class WindowedMetricSource(Protocol):
    def supports(self, kind: MetricKind, granularity: Granularity) -> bool: ...

    def query(
        self,
        kind: MetricKind,
        granularity: Granularity,
        groups: Sequence[str],
        from_time: datetime,
        to_time: datetime,
    ) -> list[MetricPoint]: ...

    def list_projects(self) -> list[str]: ...


class MetricAggregator:
    def __init__(self, source: WindowedMetricSource) -> None:
        self._source = source

    async def get_metric(
        self,
        kind: MetricKind,
        granularity: Granularity,
        groups: Sequence[str],
        from_time: datetime,
        to_time: datetime,
    ) -> list[MetricPoint]:
        """Metric series for ``groups`` (all projects when empty), ascending by period key.

        Raises:
            UnsupportedAggregationError: If the source has no query for (kind, granularity).
            ValueError: If ``from_time`` is after ``to_time``.
        """
        if not self._source.supports(kind, granularity):
            raise UnsupportedAggregationError(kind, granularity)
        from_time, to_time = _as_utc(from_time), _as_utc(to_time)
        if from_time > to_time:
            msg = f"'from' ({from_time.isoformat()}) is after 'to' ({to_time.isoformat()})"
            raise ValueError(msg)

        points = await asyncio.to_thread(self._source.query, kind, granularity, groups, from_time, to_time)
        return sorted(points, key=lambda point: point.period_key)

    async def list_groups(self) -> list[str]:
        return await asyncio.to_thread(self._source.list_projects)
