"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration. JSON parsing prefers `orjson` when available and falls back to
the standard library's `json` module otherwise.
"""

from __future__ import annotations

import json as _json
from pathlib import Path
from typing import Any, Callable, Optional

try:
    import orjson as _orjson_mod  # type: ignore[assignment]
except ImportError:  # pragma: no cover - optional dependency
    _orjson_mod = None  # type: ignore[assignment]
    _loads_orjson: Optional[Callable[[bytes], Any]] = None
else:

    def _loads_orjson(buf: bytes) -> Any:
        return _orjson_mod.loads(buf)


from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceConfig(BaseModel):
    """Connection settings for the metrics backend.

    Attributes
    ----------
    base_url: str
        Base URL serving the REST API (``/api/metrics``) and ``/graphql``.
    push_url: Optional[str]
        Absolute URL of the server-sent events stream. Without it the
        controller runs on fetched data only.
    api_key: Optional[str]
        Optional bearer token used for every upstream call.
    timeout_seconds: int
        HTTP request timeout in seconds for fetches.
    """

    base_url: str = Field(..., description="Metrics API base URL")
    push_url: Optional[str] = Field(None, description="Event stream URL")
    api_key: Optional[str] = Field(None, description="Authentication token")
    timeout_seconds: int = Field(30, ge=1)
    max_retries: int = Field(1, ge=0, description="Number of retry attempts")
    backoff_initial_ms: int = Field(
        200, ge=0, description="Initial backoff in milliseconds"
    )
    backoff_multiplier: float = Field(
        2.0, ge=1.0, description="Backoff multiplier per attempt"
    )
    summary_enabled: bool = Field(
        True, description="Fetch per-type counts from the GraphQL endpoint"
    )


class ReconcilerConfig(BaseModel):
    """Tuning knobs for the reconciliation controller.

    Attributes
    ----------
    buffer_capacity: int
        Live buffer capacity; oldest-by-arrival records are evicted beyond it.
    historical_max_items: int
        Cap on records accumulated across historical pages.
    page_size: int
        Page size requested from the historical source.
    invalidate_debounce_ms: int
        Quiet period collapsing bursts of invalidation signals.
    latest_limit: int
        Number of records kept in the latest-values list.
    """

    buffer_capacity: int = Field(100, ge=1)
    historical_max_items: int = Field(100, ge=1)
    page_size: int = Field(20, ge=1, le=1000)
    invalidate_debounce_ms: int = Field(200, ge=0)
    latest_limit: int = Field(5, ge=1)


class AppConfig(BaseModel):
    """Top-level application configuration.

    Attributes
    ----------
    source: SourceConfig
        Metrics backend connection.
    reconciler: ReconcilerConfig
        Controller tuning.
    """

    source: SourceConfig
    reconciler: ReconcilerConfig = Field(default_factory=ReconcilerConfig)

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file."""
        raw = path.read_bytes()
        if _loads_orjson is not None:
            data = _loads_orjson(raw)
        else:
            data = _json.loads(raw.decode("utf-8"))
        return AppConfig.model_validate(data)


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    config_path: Optional[str]
        Path to the JSON app config used by the HTTP app when none is passed.
    http_token: Optional[str]
        Bearer token required on mutating HTTP endpoints when set.
    cors_origins: str
        Comma-separated list of allowed CORS origins.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="METRICS_RECONCILER_", extra="ignore"
    )

    log_level: str = Field("INFO")
    config_path: Optional[str] = None
    http_token: Optional[str] = None
    cors_origins: str = ""
