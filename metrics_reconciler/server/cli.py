"""Command-line interface to run the metrics reconciler.

This CLI loads application configuration, builds the dashboard runtime, and
either runs it in the foreground (logging reconciliation events) or serves it
over HTTP with uvicorn.

Usage
-----
    python -m metrics_reconciler.server.cli --config config.json
    python -m metrics_reconciler.server.cli --config config.json --http
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
from pathlib import Path
from typing import List, Optional

from ..config.models import AppConfig, EnvSettings
from ..engine.controller import Snapshot
from ..observability import setup_logging
from .app import DashboardRuntime, run_forever
from .http import create_app

logger = logging.getLogger(__name__)


def _log_snapshot(snapshot: Snapshot) -> None:
    logger.info(
        "cli.snapshot",
        extra={
            "mode": snapshot.mode.value,
            "records": len(snapshot.canonical_series),
            "types": sorted(snapshot.type_groups),
            "connected": snapshot.connected,
            "error": snapshot.last_error.message if snapshot.last_error else None,
        },
    )


def _init_from_config(config_path: Path) -> DashboardRuntime:
    """Build a runtime from a JSON config file.

    Parameters
    ----------
    config_path: Path
        Filesystem path to the JSON configuration file.

    Returns
    -------
    DashboardRuntime
        A runtime ready to start.
    """
    cfg = AppConfig.load(config_path)
    runtime = DashboardRuntime(cfg)
    runtime.controller.subscribe(_log_snapshot)
    return runtime


async def _run(config_path: Path) -> None:
    """Start the runtime in the foreground; block until interrupted."""
    await run_forever(_init_from_config(config_path))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Metrics reconciler")
    parser.add_argument("--config", help="Path to JSON app config")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
        ],
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    parser.add_argument(
        "--http",
        action="store_true",
        help="Serve the reconciled state over HTTP with uvicorn",
    )
    parser.add_argument(
        "--host", default="127.0.0.1", help="HTTP bind host (default 127.0.0.1)"
    )
    parser.add_argument("--port", type=int, default=8080, help="HTTP port")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint.

    Provides two modes:
    - foreground runtime loop (default) using --config
    - HTTP mode with FastAPI when --http is specified
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Determine effective log level
    env_level = EnvSettings().log_level.upper()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env_level)
    # Apply early so subsequent imports use configured level
    setup_logging(effective_level)

    if args.http:
        uvicorn = importlib.import_module("uvicorn")
        runtime = _init_from_config(Path(args.config)) if args.config else None
        app = create_app(runtime)
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_level=effective_level.lower(),
        )
        return

    if not args.config:
        parser.error("--config is required unless --http is used")
    asyncio.run(_run(Path(args.config)))


if __name__ == "__main__":
    main()
