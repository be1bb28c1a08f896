"""Runtime lifecycle smoke tests.

Starts and stops the runtime quickly to ensure no unhandled exceptions occur
during startup/shutdown. Uses a minimal config file pointing at an address
nothing listens on, so every fetch fails and is only reported.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from metrics_reconciler.adapters.push import NullPushChannel
from metrics_reconciler.server.cli import _init_from_config, build_parser


def _write_config(tmp_path: Path, **source) -> Path:
    cfg = {
        "source": {
            "base_url": "http://127.0.0.1:9",
            "timeout_seconds": 1,
            "max_retries": 0,
            **source,
        },
        "reconciler": {"buffer_capacity": 10},
    }
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(json.dumps(cfg))
    return cfg_path


@pytest.mark.asyncio
async def test_cli_init_from_config_tmp(tmp_path: Path) -> None:
    """Start and stop the runtime using a minimal temporary JSON config."""
    runtime = _init_from_config(_write_config(tmp_path))
    assert runtime.controller.config.buffer_capacity == 10

    await runtime.start()
    await runtime.start()
    await runtime.controller.settle()
    assert runtime.controller.last_error is not None
    assert runtime.controller.canonical_series == ()
    assert runtime.controller.connected is False

    await runtime.stop()
    await runtime.stop()
    assert not runtime.started


@pytest.mark.asyncio
async def test_runtime_cannot_restart_after_stop(tmp_path: Path) -> None:
    runtime = _init_from_config(_write_config(tmp_path, summary_enabled=False))
    await runtime.start()
    await runtime.stop()
    with pytest.raises(RuntimeError):
        await runtime.start()


def test_runtime_without_push_url_uses_null_channel(tmp_path: Path) -> None:
    runtime = _init_from_config(_write_config(tmp_path))
    # pylint: disable=protected-access
    assert isinstance(runtime.controller._channel, NullPushChannel)


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["--config", "c.json", "-v"])
    assert args.config == "c.json"
    assert args.verbose == 1
    assert args.http is False
    assert (args.host, args.port) == ("127.0.0.1", 8080)
