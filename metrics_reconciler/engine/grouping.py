"""Type grouping index derived from the canonical series."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from ..domain.models import MetricRecord, TypeGroups


def group_by_type(series: Sequence[MetricRecord]) -> TypeGroups:
    """Map each metric type to its records, preserving series order.

    Keys are inserted in sorted order so iteration is deterministic for
    presentation. The index is rebuilt from scratch on every call.
    """
    buckets: Dict[str, List[MetricRecord]] = {}
    for record in series:
        buckets.setdefault(record.type, []).append(record)
    return {metric_type: tuple(buckets[metric_type]) for metric_type in sorted(buckets)}


def available_locations(series: Sequence[MetricRecord]) -> List[str]:
    """Distinct non-empty record names, sorted."""
    return sorted({record.name for record in series if record.name})


def series_for_type(
    groups: TypeGroups, metric_type: str, location: Optional[str] = None
) -> Tuple[MetricRecord, ...]:
    """Records of ``metric_type``, optionally restricted to one location."""
    records = groups.get(metric_type, ())
    if location:
        return tuple(r for r in records if r.name == location)
    return records
