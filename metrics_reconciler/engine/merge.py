"""Identity-keyed merge of metric series.

Series from different sources (historical snapshot, live buffer) overlap by
record identity. Later inputs overwrite earlier ones for the same ``id``; the
result is sorted ascending by ``created_at``. Python's sort is stable, so
records sharing a timestamp keep the order in which their identity was first
seen.
"""

from __future__ import annotations

import logging
from typing import Dict, Hashable, Iterable, Sequence

from ..domain.models import MetricRecord, Series

logger = logging.getLogger(__name__)


def identity_key(record: MetricRecord) -> Hashable:
    """Deduplication key for ``record``.

    Sentinel records share ``id == 0`` across independent aggregate rows, so
    they are distinguished by ``(type, name, created_at)`` instead.
    """
    if record.is_sentinel:
        return ("sentinel", record.type, record.name, record.created_at)
    return record.id


def sort_series(records: Iterable[MetricRecord]) -> Series:
    """Return ``records`` as a tuple sorted by ``created_at`` (stable)."""
    return tuple(sorted(records, key=lambda r: r.created_at))


def merge_series(*sources: Sequence[MetricRecord]) -> Series:
    """Merge and de-duplicate metric series.

    De-duplication strategy:
    - Inputs are applied in argument order; a later record with the same
      identity replaces the earlier one (latest wins).
    - A replaced record keeps the position of the first occurrence, which only
      matters for breaking ``created_at`` ties.

    Args:
        *sources: Zero or more series; empty series are valid.

    Returns:
        Merged series sorted ascending by ``created_at``.
    """
    merged: Dict[Hashable, MetricRecord] = {}
    total = 0
    for source in sources:
        for record in source:
            merged[identity_key(record)] = record
            total += 1

    result = sort_series(merged.values())
    if total != len(result):
        logger.debug(
            "merge.deduplication",
            extra={
                "input_records": total,
                "merged_records": len(result),
                "duplicates_removed": total - len(result),
            },
        )
    return result

