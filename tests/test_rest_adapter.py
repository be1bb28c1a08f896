"""REST adapter tests with a mocked HTTP client.

These tests validate request parameters, response parsing, and translation of
transport and status failures into the fetch error taxonomy without a live
metrics API.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import httpx
import pytest

from metrics_reconciler.adapters import collect_historical
from metrics_reconciler.adapters.rest import (
    DAILY_AVERAGES_PATH,
    METRICS_PATH,
    MetricsRestAdapter,
)
from metrics_reconciler.domain.models import FilterState
from metrics_reconciler.errors import (
    ClientError,
    MalformedResponseError,
    ServerError,
    TransportError,
)


def _response(status: int = 200, **kwargs: Any) -> httpx.Response:
    return httpx.Response(
        status, request=httpx.Request("GET", "http://metrics.test/api"), **kwargs
    )


class _MockClient:
    """Tiny mock of httpx.AsyncClient replaying queued outcomes for ``get``."""

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    async def get(self, path: str, params: Dict[str, str]) -> httpx.Response:
        self.calls.append((path, dict(params)))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        return None


def _adapter(*outcomes: Any, **kwargs: Any) -> Tuple[MetricsRestAdapter, _MockClient]:
    kwargs.setdefault("backoff_initial_ms", 0)
    adapter = MetricsRestAdapter("http://metrics.test", **kwargs)
    client = _MockClient(*outcomes)
    adapter.inject_http_client_for_testing(client)
    return adapter, client


def _item(metric_id: int, hour: int = 0) -> Dict[str, Any]:
    return {
        "id": metric_id,
        "type": "energy",
        "name": "kitchen",
        "payload": {"energy": 1.0},
        "createdAt": f"2024-01-01T{hour:02d}:00:00Z",
    }


@pytest.mark.asyncio
async def test_fetch_historical_params_and_parsing() -> None:
    adapter, client = _adapter(
        _response(
            json={
                "items": [_item(1), _item(2, 1)],
                "page": 1,
                "totalPages": 2,
                "totalCount": 3,
                "pageSize": 2,
            }
        )
    )
    page = await adapter.fetch_historical(
        FilterState(type="energy", name="kit"), 1, 2
    )

    path, params = client.calls[0]
    assert path == METRICS_PATH
    assert params == {"page": "1", "pageSize": "2", "type": "energy", "name": "kit"}
    assert [r.id for r in page.items] == [1, 2]
    assert (page.page, page.total_pages, page.total_count) == (1, 2, 3)


@pytest.mark.asyncio
async def test_fetch_historical_sends_window_only_when_complete() -> None:
    window = FilterState(
        from_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        to_date=datetime(2024, 1, 2, tzinfo=timezone.utc),
    )
    half = FilterState(from_date=datetime(2024, 1, 1, tzinfo=timezone.utc))
    adapter, client = _adapter(
        _response(json={"items": [], "page": 1, "totalPages": 1}),
        _response(json={"items": [], "page": 1, "totalPages": 1}),
    )
    await adapter.fetch_historical(window, 1, 20)
    await adapter.fetch_historical(half, 1, 20)

    assert client.calls[0][1]["fromDate"] == "2024-01-01T00:00:00.000Z"
    assert client.calls[0][1]["toDate"] == "2024-01-02T00:00:00.000Z"
    assert "fromDate" not in client.calls[1][1]


@pytest.mark.asyncio
async def test_fetch_historical_skips_invalid_items() -> None:
    adapter, _ = _adapter(
        _response(
            json={
                "Items": [_item(1), {"id": "x"}, _item(3)],
                "page": 1,
                "totalPages": 1,
            }
        )
    )
    page = await adapter.fetch_historical(FilterState(), 1, 20)
    assert [r.id for r in page.items] == [1, 3]


@pytest.mark.asyncio
async def test_fetch_historical_rejects_non_object() -> None:
    adapter, _ = _adapter(_response(json=[_item(1)]))
    with pytest.raises(MalformedResponseError):
        await adapter.fetch_historical(FilterState(), 1, 20)


@pytest.mark.asyncio
async def test_fetch_daily_aggregates() -> None:
    adapter, client = _adapter(
        _response(
            json=[
                {
                    "date": "2024-01-02T00:00:00Z",
                    "type": "energy",
                    "name": "kitchen",
                    "averageValues": {"energy": 2.5},
                    "count": 10,
                }
            ]
        )
    )
    rows = await adapter.fetch_daily_aggregates(
        datetime(2024, 1, 2, tzinfo=timezone.utc),
        datetime(2024, 1, 2, 23, 59, 59, 999000, tzinfo=timezone.utc),
        FilterState(type="energy"),
    )

    path, params = client.calls[0]
    assert path == DAILY_AVERAGES_PATH
    assert params == {
        "fromDate": "2024-01-02T00:00:00.000Z",
        "toDate": "2024-01-02T23:59:59.999Z",
        "type": "energy",
    }
    assert rows[0].average_values == {"energy": 2.5}


@pytest.mark.asyncio
async def test_daily_aggregates_require_list() -> None:
    adapter, _ = _adapter(_response(json={"items": []}))
    with pytest.raises(MalformedResponseError):
        await adapter.fetch_daily_aggregates(
            datetime(2024, 1, 1, tzinfo=timezone.utc),
            datetime(2024, 1, 1, tzinfo=timezone.utc),
            FilterState(),
        )


@pytest.mark.asyncio
async def test_connect_error_is_retried_then_succeeds() -> None:
    adapter, client = _adapter(
        httpx.ConnectError("refused"),
        _response(json={"items": [], "page": 1, "totalPages": 1}),
        max_retries=1,
    )
    page = await adapter.fetch_historical(FilterState(), 1, 20)
    assert page.items == []
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_connect_error_after_retries_is_transport_error() -> None:
    adapter, client = _adapter(
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        max_retries=1,
    )
    with pytest.raises(TransportError) as exc_info:
        await adapter.fetch_historical(FilterState(), 1, 20)
    assert exc_info.value.retryable
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_status_errors_are_classified() -> None:
    adapter, _ = _adapter(
        _response(503, text="unavailable"),
        _response(400, json={"message": "Invalid type filter"}),
    )
    with pytest.raises(ServerError) as server_exc:
        await adapter.fetch_historical(FilterState(), 1, 20)
    assert server_exc.value.status == 503

    with pytest.raises(ClientError) as client_exc:
        await adapter.fetch_historical(FilterState(), 1, 20)
    assert client_exc.value.message == "Invalid type filter"
    assert client_exc.value.status == 400


@pytest.mark.asyncio
async def test_html_body_is_malformed_response() -> None:
    adapter, _ = _adapter(_response(text="<!doctype html><html></html>"))
    with pytest.raises(MalformedResponseError, match="HTML"):
        await adapter.fetch_historical(FilterState(), 1, 20)


@pytest.mark.asyncio
async def test_collect_historical_walks_pages_until_last() -> None:
    adapter, client = _adapter(
        _response(json={"items": [_item(1), _item(2)], "page": 1, "totalPages": 2}),
        _response(json={"items": [_item(3)], "page": 2, "totalPages": 2}),
    )
    items = await collect_historical(adapter, FilterState(), page_size=2)
    assert [r.id for r in items] == [1, 2, 3]
    assert [c[1]["page"] for c in client.calls] == ["1", "2"]


@pytest.mark.asyncio
async def test_collect_historical_rejects_page_mismatch() -> None:
    adapter, _ = _adapter(
        _response(json={"items": [_item(1)], "page": 1, "totalPages": 3}),
        _response(json={"items": [_item(2)], "page": 1, "totalPages": 3}),
    )
    with pytest.raises(MalformedResponseError):
        await collect_historical(adapter, FilterState(), page_size=1)


@pytest.mark.asyncio
async def test_collect_historical_stops_on_empty_page() -> None:
    adapter, client = _adapter(
        _response(json={"items": [], "page": 1, "totalPages": 5}),
    )
    assert await collect_historical(adapter, FilterState()) == []
    assert len(client.calls) == 1
