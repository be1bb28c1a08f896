"""REST metrics adapter.

This adapter reads the historical snapshot (paged) and the daily-aggregate
series from the metrics REST API. It encapsulates transport concerns (base
URL, headers, timeouts, retries) and raises the fetch error taxonomy at its
boundary so the controller never sees raw ``httpx`` exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..domain.models import DailyAggregate, FilterState, HistoricalPage, MetricRecord
from ..domain.utils.timestamps import format_timestamp
from ..errors import MalformedResponseError, TransportError, from_http_status
from ..utils.correlation import get_fetch_id

logger = logging.getLogger(__name__)

METRICS_PATH = "/api/metrics"
DAILY_AVERAGES_PATH = "/api/metrics/daily-averages"


class MetricsRestAdapter:
    """Adapter for the metrics REST API.

    Parameters
    ----------
    base_url: str
        Base URL of the metrics API (e.g., "http://localhost:5000").
    api_key: Optional[str]
        Optional bearer token for authenticating requests.
    timeout: int
        Request timeout in seconds for all HTTP operations.

    Attributes
    ----------
    _client: httpx.AsyncClient
        Shared async client configured with base URL, timeout, and headers.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        *,
        max_retries: int = 1,
        backoff_initial_ms: int = 200,
        backoff_multiplier: float = 2.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, headers=self._headers(api_key)
        )
        self._max_retries = max(0, int(max_retries))
        self._backoff_initial_ms = max(0, int(backoff_initial_ms))
        self._backoff_multiplier = max(1.0, float(backoff_multiplier))
        self._timeout_seconds = timeout
        logger.info(
            "rest.adapter.init",
            extra={"base_url": base_url, "timeout_seconds": timeout},
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only).

        This allows unit tests to provide a mock compatible with ``get()``.
        """
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _headers(api_key: Optional[str]) -> dict:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _backoff_delay(self, attempt: int) -> float:
        return (self._backoff_initial_ms / 1000.0) * (self._backoff_multiplier**attempt)

    async def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        """GET an endpoint and return parsed JSON.

        Connection failures and read timeouts are retried with exponential
        backoff up to ``max_retries`` times.

        Raises
        ------
        TransportError
            No response after all attempts.
        ServerError, ClientError
            Non-2xx status.
        MalformedResponseError
            Body is not JSON (e.g., an HTML error page from a proxy).
        """
        logger.debug(
            "rest.http.get",
            extra={"fetch_id": get_fetch_id(), "path": path, "params": params},
        )
        attempt = 0
        while True:
            try:
                resp = await self._client.get(path, params=params)
                resp.raise_for_status()
                break
            except (httpx.ConnectError, httpx.ReadTimeout) as exc:
                if attempt >= self._max_retries:
                    logger.warning(
                        "rest.http.unreachable",
                        extra={
                            "fetch_id": get_fetch_id(),
                            "path": path,
                            "attempts": attempt + 1,
                            "timeout_seconds": self._timeout_seconds,
                            "error": str(exc),
                        },
                    )
                    raise TransportError(
                        "Network error. Please check your connection."
                    ) from exc
                await asyncio.sleep(self._backoff_delay(attempt))
                attempt += 1
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "rest.http.status_error",
                    extra={
                        "fetch_id": get_fetch_id(),
                        "path": path,
                        "status": exc.response.status_code,
                    },
                )
                raise from_http_status(exc) from exc
            except httpx.TransportError as exc:
                raise TransportError(
                    "Network error. Please check your connection."
                ) from exc

        try:
            data = resp.json()
        except ValueError as exc:
            text = getattr(resp, "text", "") or ""
            if text.lstrip().startswith("<"):
                raise MalformedResponseError(
                    "Server returned HTML instead of JSON. Check API endpoint "
                    "URL and server configuration."
                ) from exc
            raise MalformedResponseError(f"Invalid JSON from {path}") from exc
        logger.debug(
            "rest.http.response",
            extra={
                "fetch_id": get_fetch_id(),
                "path": path,
                "status_code": resp.status_code,
            },
        )
        return data

    @staticmethod
    def _filter_params(filter_state: FilterState) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if filter_state.type:
            params["type"] = filter_state.type
        if filter_state.name:
            params["name"] = filter_state.name
        return params

    async def fetch_historical(
        self, filter_state: FilterState, page: int, page_size: int
    ) -> HistoricalPage:
        """Fetch one page of metrics.

        Parameters
        ----------
        filter_state: FilterState
            Type/name predicates are always sent; the time window only when
            both bounds are present.
        page: int
            1-based page number.
        page_size: int
            Items per page.

        Returns
        -------
        HistoricalPage
            The page; records failing validation are skipped with a warning.
        """
        params = {"page": str(page), "pageSize": str(page_size)}
        params.update(self._filter_params(filter_state))
        if filter_state.from_date is not None and filter_state.to_date is not None:
            params["fromDate"] = format_timestamp(filter_state.from_date)
            params["toDate"] = format_timestamp(filter_state.to_date)

        data = await self._get_json(METRICS_PATH, params)
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Expected paged object from {METRICS_PATH}, got {type(data).__name__}"
            )
        raw_items = data.get("items", data.get("Items", []))
        if not isinstance(raw_items, list):
            raise MalformedResponseError("Paged result 'items' is not a list")

        items: List[MetricRecord] = []
        for raw in raw_items:
            try:
                items.append(MetricRecord.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "rest.historical.item_skipped",
                    extra={"fetch_id": get_fetch_id(), "error": str(exc)},
                )
        return HistoricalPage(
            items=items,
            page=data.get("page") or page,
            total_pages=data.get("totalPages") or 0,
            total_count=data.get("totalCount") or 0,
            page_size=data.get("pageSize") or page_size,
        )

    async def fetch_daily_aggregates(
        self, from_date: datetime, to_date: datetime, filter_state: FilterState
    ) -> List[DailyAggregate]:
        """Fetch per-day averages for the inclusive range."""
        params = {
            "fromDate": format_timestamp(from_date),
            "toDate": format_timestamp(to_date),
        }
        params.update(self._filter_params(filter_state))

        data = await self._get_json(DAILY_AVERAGES_PATH, params)
        if not isinstance(data, list):
            raise MalformedResponseError(
                f"Expected a list from {DAILY_AVERAGES_PATH}, "
                f"got {type(data).__name__}"
            )
        try:
            return [DailyAggregate.model_validate(row) for row in data]
        except ValidationError as exc:
            raise MalformedResponseError(f"Invalid daily aggregate: {exc}") from exc
