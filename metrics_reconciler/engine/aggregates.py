"""Daily-aggregate to metric-series adapter.

The aggregate provider may paginate one day's averages by payload key, so
rows sharing ``(date, type, name)`` are folded together before conversion.
The output has the same :class:`MetricRecord` shape as live data, with the
sentinel identity, so the rest of the pipeline stays uniform.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Tuple

from ..domain.models import SENTINEL_ID, DailyAggregate, MetricRecord, Series
from .merge import sort_series


def aggregates_to_series(rows: Iterable[DailyAggregate]) -> Series:
    """Convert daily aggregates into synthetic metric records.

    Parameters
    ----------
    rows: Iterable[DailyAggregate]
        Aggregate rows in provider order. On key collision within one
        ``(date, type, name)`` group the later row's value wins.

    Returns
    -------
    Series
        One record per group, ``id == 0``, sorted ascending by date.
    """
    grouped: Dict[Tuple[datetime, str, str], Dict[str, float]] = {}
    for row in rows:
        values = grouped.setdefault((row.date, row.type, row.name), {})
        values.update(row.average_values)

    return sort_series(
        MetricRecord(
            id=SENTINEL_ID,
            type=metric_type,
            name=name,
            payload=dict(values),
            created_at=date,
        )
        for (date, metric_type, name), values in grouped.items()
    )
