"""Push channel over server-sent events.

The metrics hub publishes two event kinds on one ``text/event-stream``:

- ``MetricReceived``: ``data`` is a single metric record as JSON.
- ``DataUpdated``: coarse invalidation with no meaningful payload.

Reconnection and backoff are deliberately absent; when the stream ends or
fails the channel reports ``connected=False`` and stays down until
``start()`` is called again.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, List, Optional, Tuple

import httpx

from . import ConnectivityCallback, InvalidateCallback, MetricCallback

logger = logging.getLogger(__name__)

METRIC_EVENT = "MetricReceived"
INVALIDATE_EVENT = "DataUpdated"


async def iter_sse_events(
    lines: AsyncIterable[str],
) -> AsyncIterator[Tuple[str, str]]:
    """Group raw SSE lines into ``(event, data)`` pairs.

    Follows the event-stream framing: ``event:``/``data:`` fields accumulate
    until a blank line dispatches them; ``:`` lines are comments; multiple
    ``data:`` lines are joined with newlines. The event name defaults to
    ``message``.
    """
    event = ""
    data: List[str] = []
    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield event or "message", "\n".join(data)
            event, data = "", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield event or "message", "\n".join(data)


class SsePushChannel:
    """Push channel reading a server-sent events stream with ``httpx``.

    Parameters
    ----------
    url: str
        Absolute URL of the event stream (e.g., "http://host/metricsHub/sse").
    api_key: Optional[str]
        Optional bearer token.
    connect_timeout: float
        Seconds allowed to establish the stream; reads never time out.
    """

    def __init__(
        self, url: str, api_key: Optional[str] = None, connect_timeout: float = 10.0
    ) -> None:
        self._url = url
        headers = {"Accept": "text/event-stream"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            headers=headers, timeout=httpx.Timeout(connect_timeout, read=None)
        )
        self._task: Optional["asyncio.Task[None]"] = None
        self._connected = False
        self._metric_cb: Optional[MetricCallback] = None
        self._invalidate_cb: Optional[InvalidateCallback] = None
        self._connectivity_cb: Optional[ConnectivityCallback] = None

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    @property
    def connected(self) -> bool:
        return self._connected

    def on_metric(self, callback: Optional[MetricCallback]) -> None:
        self._metric_cb = callback

    def on_invalidate(self, callback: Optional[InvalidateCallback]) -> None:
        self._invalidate_cb = callback

    def on_connectivity(self, callback: Optional[ConnectivityCallback]) -> None:
        self._connectivity_cb = callback

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("push.connectivity", extra={"connected": connected})
        if self._connectivity_cb is not None:
            self._connectivity_cb(connected)

    async def start(self) -> None:
        """Open the stream in a background task. Idempotent."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="sse-push-channel")

    async def stop(self) -> None:
        """Close the stream and wait for the reader task to finish. Idempotent."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_connected(False)

    async def aclose(self) -> None:
        await self.stop()
        await self._client.aclose()

    async def _run(self) -> None:
        try:
            async with self._client.stream("GET", self._url) as resp:
                resp.raise_for_status()
                self._set_connected(True)
                await self.consume(resp.aiter_lines())
            logger.info("push.stream_closed", extra={"url": self._url})
        except httpx.HTTPError as exc:
            logger.warning(
                "push.connect_failed", extra={"url": self._url, "error": str(exc)}
            )
        finally:
            self._set_connected(False)

    async def consume(self, lines: AsyncIterable[str]) -> None:
        """Dispatch every event in ``lines`` to the registered callbacks."""
        async for event, data in iter_sse_events(lines):
            self._dispatch(event, data)

    def _dispatch(self, event: str, data: str) -> None:
        if event == INVALIDATE_EVENT:
            if self._invalidate_cb is not None:
                self._invalidate_cb()
            return
        if event != METRIC_EVENT:
            logger.debug("push.event_ignored", extra={"event": event})
            return
        try:
            payload = json.loads(data)
        except ValueError:
            logger.warning(
                "push.metric_undecodable", extra={"data_preview": data[:200]}
            )
            return
        if self._metric_cb is not None:
            self._metric_cb(payload)


class NullPushChannel:
    """Push channel that never connects.

    Used when no event stream is configured; the controller then reconciles
    fetched data only and reports ``connected=False``.
    """

    def __init__(self) -> None:
        self._started = False

    def on_metric(self, callback: Optional[MetricCallback]) -> None:
        _ = callback

    def on_invalidate(self, callback: Optional[InvalidateCallback]) -> None:
        _ = callback

    def on_connectivity(self, callback: Optional[ConnectivityCallback]) -> None:
        _ = callback

    async def start(self) -> None:
        if not self._started:
            self._started = True
            logger.info("push.disabled")

    async def stop(self) -> None:
        self._started = False

    async def aclose(self) -> None:
        await self.stop()
