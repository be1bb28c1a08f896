"""Dashboard runtime.

Wires the upstream adapters built from :class:`AppConfig` into a
:class:`ReconciliationController` and owns their lifecycle. The HTTP layer and
the CLI both host one runtime.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from ..adapters.graphql import MetricsGraphQLAdapter
from ..adapters.push import NullPushChannel, SsePushChannel
from ..adapters.rest import MetricsRestAdapter
from ..config.models import AppConfig
from ..engine.controller import ReconciliationController

logger = logging.getLogger(__name__)


class DashboardRuntime:
    """Owns the adapters and the reconciliation controller.

    Parameters
    ----------
    config: AppConfig
        Application configuration.
    controller: Optional[ReconciliationController]
        Pre-built controller (testing); when given, no adapters are created
        and ``config`` only informs diagnostics.
    """

    def __init__(
        self,
        config: AppConfig,
        controller: Optional[ReconciliationController] = None,
    ) -> None:
        self._config = config
        self._closables: List[Any] = []
        self._started: bool = False
        self._closed: bool = False
        if controller is not None:
            self._controller = controller
            return

        sc = config.source
        rest = MetricsRestAdapter(
            sc.base_url,
            sc.api_key,
            sc.timeout_seconds,
            max_retries=sc.max_retries,
            backoff_initial_ms=sc.backoff_initial_ms,
            backoff_multiplier=sc.backoff_multiplier,
        )
        self._closables.append(rest)
        summary: Optional[MetricsGraphQLAdapter] = None
        if sc.summary_enabled:
            summary = MetricsGraphQLAdapter(sc.base_url, sc.api_key, sc.timeout_seconds)
            self._closables.append(summary)
        channel: Any
        if sc.push_url:
            channel = SsePushChannel(sc.push_url, sc.api_key)
        else:
            channel = NullPushChannel()
        self._closables.append(channel)
        self._controller = ReconciliationController(
            rest, rest, channel, summary, config=config.reconciler
        )

    @property
    def controller(self) -> ReconciliationController:
        return self._controller

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the controller. Idempotent.

        Raises
        ------
        RuntimeError
            If the runtime was stopped; upstream clients are closed by then.
        """
        if self._started:
            logger.debug("runtime.start no-op: already started")
            return
        if self._closed:
            raise RuntimeError("runtime was stopped and cannot be restarted")
        self._started = True
        await self._controller.start()
        logger.info(
            "runtime.started",
            extra={
                "base_url": self._config.source.base_url,
                "push": bool(self._config.source.push_url),
            },
        )

    async def stop(self) -> None:
        """Stop the controller and close upstream clients. Idempotent."""
        if not self._started:
            logger.debug("runtime.stop no-op: not started")
            return
        self._started = False
        self._closed = True
        await self._controller.stop()
        for closable in self._closables:
            await closable.aclose()
        self._closables = []
        logger.info("runtime.stopped")


async def run_forever(runtime: DashboardRuntime) -> None:
    """Run the runtime until interrupted (development use)."""
    await runtime.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await runtime.stop()
