"""Tests for file and environment configuration."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from metrics_reconciler.config.models import AppConfig, EnvSettings


def test_app_config_load_with_defaults(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(json.dumps({"source": {"base_url": "http://localhost:5000"}}))

    cfg = AppConfig.load(cfg_path)
    assert cfg.source.push_url is None
    assert cfg.source.summary_enabled is True
    assert cfg.reconciler.buffer_capacity == 100
    assert cfg.reconciler.historical_max_items == 100
    assert cfg.reconciler.page_size == 20
    assert cfg.reconciler.invalidate_debounce_ms == 200


def test_app_config_rejects_invalid_tuning(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        json.dumps(
            {
                "source": {"base_url": "http://localhost:5000"},
                "reconciler": {"buffer_capacity": 0},
            }
        )
    )
    with pytest.raises(ValidationError):
        AppConfig.load(cfg_path)


def test_env_settings_prefix() -> None:
    env = {
        "METRICS_RECONCILER_LOG_LEVEL": "DEBUG",
        "METRICS_RECONCILER_HTTP_TOKEN": "secret",
        "METRICS_RECONCILER_CORS_ORIGINS": "http://a, http://b",
    }
    with patch.dict(os.environ, env, clear=True):
        settings = EnvSettings(_env_file=None)
    assert settings.log_level == "DEBUG"
    assert settings.http_token == "secret"
    assert settings.cors_origins == "http://a, http://b"
