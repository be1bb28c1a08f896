"""Bounded live buffer for push-delivered metrics.

This module provides a thin, typed wrapper over :class:`cachetools.FIFOCache`
keyed by record identity. Eviction is by arrival order (the buffer's own
append order), never by ``created_at``: a late-arriving but chronologically
old metric still counts as new.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from cachetools import FIFOCache  # type: ignore[import-untyped]

from ..domain.models import MetricRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class _ArrivalOrderCache(FIFOCache):
    """FIFO cache that counts evictions."""

    def __init__(self, maxsize: int) -> None:
        super().__init__(maxsize=maxsize)
        self.evictions = 0

    def popitem(self) -> Tuple[Any, Any]:
        key, value = super().popitem()
        self.evictions += 1
        logger.debug("live_buffer.evicted", extra={"metric_id": key})
        return key, value


class LiveBuffer:
    """Identity-keyed, arrival-ordered buffer with a hard capacity.

    Parameters
    ----------
    capacity: int
        Maximum number of records retained. When a new identity would exceed
        it, the oldest-by-arrival record is discarded first.

    Notes
    -----
    Re-observing an identity that is already buffered replaces the record and
    counts as a fresh arrival, so an actively updated metric is the last to be
    evicted.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._cache = _ArrivalOrderCache(capacity)

    @property
    def capacity(self) -> int:
        return int(self._cache.maxsize)

    @property
    def evictions(self) -> int:
        """Number of records evicted since creation."""
        return self._cache.evictions

    def add(self, record: MetricRecord) -> bool:
        """Insert or refresh ``record``; sentinel records are rejected."""
        if record.is_sentinel:
            return False
        if record.id in self._cache:
            # Drop first so the dict order and the FIFO order both move it last
            del self._cache[record.id]
        self._cache[record.id] = record
        return True

    def get(self, metric_id: int) -> Optional[MetricRecord]:
        return self._cache.get(metric_id)

    def values(self) -> Tuple[MetricRecord, ...]:
        """Snapshot of buffered records, oldest arrival first."""
        return tuple(self._cache.values())

    def clear(self) -> None:
        # Cache.clear() pops item by item and would count as evictions
        evictions = self._cache.evictions
        self._cache = _ArrivalOrderCache(self.capacity)
        self._cache.evictions = evictions

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, metric_id: object) -> bool:
        return metric_id in self._cache
