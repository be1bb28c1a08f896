"""Upstream collaborator interfaces.

The reconciliation controller depends only on these protocols. Concrete
implementations live alongside (REST, GraphQL, server-sent events); tests
provide in-memory fakes.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence

from ..domain.models import (
    DailyAggregate,
    FilterState,
    HistoricalPage,
    MetricRecord,
    MetricsSummary,
)
from ..errors import MalformedResponseError

logger = logging.getLogger(__name__)

MetricCallback = Callable[[object], None]
InvalidateCallback = Callable[[], None]
ConnectivityCallback = Callable[[bool], None]


class HistoricalSource(Protocol):
    """Paged bulk read of individual metric records."""

    async def fetch_historical(
        self, filter_state: FilterState, page: int, page_size: int
    ) -> HistoricalPage:
        """Return one page of records matching ``filter_state``."""
        raise NotImplementedError


class AggregateSource(Protocol):
    """Range read of server-computed daily averages."""

    async def fetch_daily_aggregates(
        self, from_date: datetime, to_date: datetime, filter_state: FilterState
    ) -> Sequence[DailyAggregate]:
        """Return daily aggregates for the inclusive range."""
        raise NotImplementedError


class SummarySource(Protocol):
    """Server-side counts per metric type."""

    async def fetch_summary(self, filter_state: FilterState) -> MetricsSummary:
        """Return counts for records matching the type/name predicates."""
        raise NotImplementedError


class PushChannel(Protocol):
    """Live push channel.

    ``start()`` and ``stop()`` are idempotent. Metric callbacks receive the raw
    decoded event so that the consumer owns validation; invalidation
    callbacks carry no payload.
    """

    def on_metric(self, callback: Optional[MetricCallback]) -> None:
        """Register the per-metric callback; ``None`` unsubscribes."""
        raise NotImplementedError

    def on_invalidate(self, callback: Optional[InvalidateCallback]) -> None:
        """Register the data-invalidation callback."""
        raise NotImplementedError

    def on_connectivity(self, callback: Optional[ConnectivityCallback]) -> None:
        """Register the connectivity-status callback."""
        raise NotImplementedError

    async def start(self) -> None:
        """Connect; failures only flip connectivity to False."""
        raise NotImplementedError

    async def stop(self) -> None:
        """Disconnect and stop delivering callbacks."""
        raise NotImplementedError


async def collect_historical(
    source: HistoricalSource,
    filter_state: FilterState,
    *,
    page_size: int = 20,
    max_items: int = 100,
) -> List[MetricRecord]:
    """Drive historical pagination into one bounded snapshot.

    Pages are requested from 1 until the provider reports the last page or
    ``max_items`` records have accumulated; the result is truncated to
    ``max_items``.

    Raises
    ------
    MalformedResponseError
        If the provider reports a page other than the one requested.
    """
    items: List[MetricRecord] = []
    page = 1
    while True:
        result = await source.fetch_historical(filter_state, page, page_size)
        if result.page != page:
            raise MalformedResponseError(
                f"requested page {page} but provider returned page {result.page}"
            )
        items.extend(result.items)
        logger.debug(
            "historical.page",
            extra={
                "page": page,
                "items": len(result.items),
                "total_pages": result.total_pages,
                "accumulated": len(items),
            },
        )
        if result.page >= result.total_pages or len(items) >= max_items:
            break
        if not result.items:
            # Provider claims more pages but returned nothing; avoid spinning
            break
        page += 1
    return items[:max_items]
