"""GraphQL summary adapter.

Reads the per-type record counts shown next to the charts. Only the
``metricsAggregation`` query is used; chart data always comes from the REST
adapter.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..domain.models import FilterState, MetricsSummary
from ..errors import ClientError, MalformedResponseError, TransportError, from_http_status
from ..utils.correlation import get_fetch_id

logger = logging.getLogger(__name__)

GRAPHQL_PATH = "/graphql"

METRICS_AGGREGATION_QUERY = """
query GetMetricsAggregation($fromDate: DateTime, $toDate: DateTime, $type: String) {
  metricsAggregation(fromDate: $fromDate, toDate: $toDate, type: $type) {
    totalCount
    typeAggregations {
      type
      count
    }
  }
}
"""


class MetricsGraphQLAdapter:
    """Adapter for the metrics GraphQL endpoint.

    Parameters
    ----------
    base_url: str
        Base URL of the metrics API; queries are POSTed to ``/graphql``.
    api_key: Optional[str]
        Optional bearer token for authenticating requests.
    timeout: int
        Request timeout in seconds.
    """

    def __init__(
        self, base_url: str, api_key: Optional[str] = None, timeout: int = 30
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, headers=headers
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self._client.post(
                GRAPHQL_PATH, json={"query": query, "variables": variables}
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise from_http_status(exc) from exc
        except httpx.TransportError as exc:
            raise TransportError("Network error. Please check your connection.") from exc
        try:
            body = resp.json()
        except ValueError as exc:
            raise MalformedResponseError("GraphQL response is not JSON") from exc
        if not isinstance(body, dict):
            raise MalformedResponseError("GraphQL response is not an object")
        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else {}
            message = first.get("message") if isinstance(first, dict) else None
            logger.warning(
                "graphql.query_errors",
                extra={"fetch_id": get_fetch_id(), "errors": errors},
            )
            raise ClientError(message or "GraphQL query failed")
        data = body.get("data")
        if not isinstance(data, dict):
            raise MalformedResponseError("GraphQL response has no data")
        return data

    async def fetch_summary(self, filter_state: FilterState) -> MetricsSummary:
        """Fetch total and per-type counts for the type predicate."""
        variables: Dict[str, Any] = {"type": filter_state.type}
        data = await self._query(METRICS_AGGREGATION_QUERY, variables)
        try:
            return MetricsSummary.model_validate(data["metricsAggregation"])
        except (KeyError, ValidationError) as exc:
            raise MalformedResponseError(
                f"Invalid metricsAggregation payload: {exc}"
            ) from exc
