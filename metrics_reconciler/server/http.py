"""HTTP server exposing the reconciled dashboard state via FastAPI.

The HTTP layer is a thin read model over the controller's published outputs
plus two commands (``POST /filter`` and ``POST /refresh``). Commands are
applied asynchronously by the controller; clients observe their effect by
polling the read endpoints. Authentication and CORS are configurable via
environment variables.
"""

from __future__ import annotations

import importlib
import logging
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, List, Optional

import psutil
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .. import __version__
from ..config.models import AppConfig, EnvSettings
from ..domain.models import FilterState, ReconcileMode
from ..domain.type_configs import get_metric_type_config
from ..engine.grouping import available_locations, series_for_type
from ..observability import setup_logging
from .app import DashboardRuntime
from .models import (
    AcceptedResponse,
    GroupsResponse,
    LatestResponse,
    SeriesResponse,
    StatusResponse,
    TypeGroupResponse,
)

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(
    BaseHTTPMiddleware
):  # pylint: disable=too-few-public-methods
    """Tag each request with a correlation id and log its outcome and timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        req_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "http.request.failed",
                extra={
                    "req_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
                exc_info=True,
            )
            raise
        logger.debug(
            "http.request.completed",
            extra={
                "req_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        response.headers["x-correlation-id"] = req_id
        return response


# Export helper functions so dead-code linters recognize runtime usage.
# FastAPI registers these via decorators; static analysis alone may not see
# direct references otherwise.
__all__ = [
    "create_app",
    "_load_fastapi",
    "_build_app",
    "_apply_cors",
    "_make_auth_dependency",
    "_register_health",
    "_register_read_model",
    "_register_commands",
]


class HealthResponse(BaseModel):
    """Simple health/readiness response model."""

    status: str


class ErrorResponse(BaseModel):
    """Structured JSON error response for HTTP endpoints.

    Fields
    ------
    detail: str
        Human-readable explanation of the error.
    error_type: str
        Machine-readable error classification.
    """

    detail: str = Field(..., description="Human-readable error detail")
    error_type: str = Field(..., description="Machine-readable error type")


def _load_fastapi():
    """Dynamically import FastAPI pieces used by the app factory."""
    fastapi_mod = importlib.import_module("fastapi")
    cors_mod = importlib.import_module("fastapi.middleware.cors")
    exc_mod = importlib.import_module("fastapi.exceptions")
    resp_mod = importlib.import_module("fastapi.responses")
    st_exc_mod = importlib.import_module("starlette.exceptions")
    return {
        "fastapi_cls": getattr(fastapi_mod, "FastAPI"),
        "depends": getattr(fastapi_mod, "Depends"),
        "header": getattr(fastapi_mod, "Header"),
        "http_exc": getattr(fastapi_mod, "HTTPException"),
        "status": getattr(fastapi_mod, "status"),
        "cors_mw": getattr(cors_mod, "CORSMiddleware"),
        "validation_exc": getattr(exc_mod, "RequestValidationError"),
        "json_response": getattr(resp_mod, "JSONResponse"),
        "starlette_http_exc": getattr(st_exc_mod, "HTTPException"),
    }


def _build_app(fastapi_cls: Any, lifespan: Any | None = None):
    """Create base FastAPI app (optionally with lifespan)."""
    if lifespan is not None:
        return fastapi_cls(
            title="Metrics Reconciler", version=__version__, lifespan=lifespan
        )
    return fastapi_cls(title="Metrics Reconciler", version=__version__)


def _apply_cors(app: Any, cors_middleware_cls: Any, origins: str) -> None:
    """Enable CORS for the comma-separated ``origins`` when non-empty."""
    allow_origins: List[str] = [o.strip() for o in origins.split(",") if o.strip()]
    if allow_origins:
        app.add_middleware(
            cors_middleware_cls,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def _make_auth_dependency(
    header: Any, http_exc: Any, status_mod: Any, expected: Optional[str]
):
    """Return a dependency function that enforces optional bearer token."""

    def _auth_dependency(authorization: str | None = header(default=None)) -> None:
        if expected is None:
            return
        if not authorization or not authorization.startswith("Bearer "):
            raise http_exc(status_code=status_mod.HTTP_401_UNAUTHORIZED)
        token = authorization.split(" ", 1)[1]
        if token != expected:
            raise http_exc(status_code=status_mod.HTTP_403_FORBIDDEN)

    return _auth_dependency


def _log_process_memory() -> None:
    try:
        mem_info = psutil.Process().memory_info()
    except (psutil.Error, OSError):  # pragma: no cover
        return
    logger.info(
        "http.startup.memory",
        extra={
            "rss_mb": round(mem_info.rss / 1024 / 1024, 1),
            "vms_mb": round(mem_info.vms / 1024 / 1024, 1),
        },
    )


def _register_health(app: Any, runtime: DashboardRuntime) -> None:
    """Register health and readiness endpoints."""

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Liveness probe",
    )
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get(
        "/ready",
        response_model=HealthResponse,
        summary="Readiness probe",
    )
    async def ready() -> HealthResponse:
        return HealthResponse(status="ready" if runtime.started else "starting")


def _register_read_model(app: Any, runtime: DashboardRuntime) -> None:
    """Register read-only endpoints over the controller outputs."""
    controller = runtime.controller

    @app.get("/series", response_model=SeriesResponse, summary="Canonical series")
    async def series() -> SeriesResponse:
        items = controller.canonical_series
        return SeriesResponse(mode=controller.mode, count=len(items), items=list(items))

    @app.get(
        "/groups", response_model=GroupsResponse, summary="Series grouped by type"
    )
    async def groups(location: Optional[str] = None) -> GroupsResponse:
        index = controller.type_groups
        out: List[TypeGroupResponse] = []
        for metric_type in index:
            out.append(
                TypeGroupResponse(
                    type=metric_type,
                    config=get_metric_type_config(metric_type),
                    locations=available_locations(index[metric_type]),
                    items=list(series_for_type(index, metric_type, location)),
                )
            )
        return GroupsResponse(location=location or None, groups=out)

    @app.get("/latest", response_model=LatestResponse, summary="Latest values")
    async def latest() -> LatestResponse:
        return LatestResponse(items=list(controller.latest_values))

    @app.get("/summary", summary="Per-type record counts")
    async def summary() -> Any:
        current = controller.summary
        return current.model_dump(by_alias=True) if current is not None else None

    @app.get("/status", response_model=StatusResponse, summary="Controller status")
    async def status() -> StatusResponse:
        return StatusResponse(
            version=__version__,
            mode=controller.mode,
            filter=controller.filter_state,
            connected=controller.connected,
            buffered=len(controller.buffered),
            buffer_capacity=controller.config.buffer_capacity,
            last_error=controller.last_error,
            summary=controller.summary,
            type_counts={t: len(r) for t, r in controller.type_groups.items()},
        )

    _ = (series, groups, latest, summary, status)


def _register_commands(
    app: Any, runtime: DashboardRuntime, depends: Any, http_exc: Any, auth_dep: Any
) -> None:
    """Register the filter and refresh commands."""
    controller = runtime.controller

    @app.post(
        "/filter",
        response_model=AcceptedResponse,
        status_code=202,
        dependencies=[depends(auth_dep)],
        summary="Apply a new filter",
    )
    async def set_filter(filter_state: FilterState) -> AcceptedResponse:
        if (
            filter_state.has_time_window
            and filter_state.from_date > filter_state.to_date  # type: ignore[operator]
        ):
            raise http_exc(
                status_code=400,
                detail=ErrorResponse(
                    detail="fromDate must not be after toDate",
                    error_type="validation_error",
                ).model_dump(),
            )
        controller.set_filter(filter_state)
        logger.info(
            "http.filter.accepted",
            extra={"filter": filter_state.model_dump(mode="json")},
        )
        # Mode is derived from the filter, so it is known before the event lands
        return AcceptedResponse(mode=ReconcileMode.for_filter(filter_state))

    @app.post(
        "/refresh",
        response_model=AcceptedResponse,
        status_code=202,
        dependencies=[depends(auth_dep)],
        summary="Clear the live buffer and refetch",
    )
    async def refresh() -> AcceptedResponse:
        controller.refresh()
        return AcceptedResponse(mode=controller.mode)

    _ = (set_filter, refresh)


def _runtime_from_settings(settings: EnvSettings) -> DashboardRuntime:
    if not settings.config_path:
        raise RuntimeError(
            "No runtime given and METRICS_RECONCILER_CONFIG_PATH is not set"
        )
    return DashboardRuntime(AppConfig.load(Path(settings.config_path)))


def create_app(runtime: Optional[DashboardRuntime] = None):
    """Create and configure the FastAPI application.

    Parameters
    ----------
    runtime: Optional[DashboardRuntime]
        Runtime to serve. When omitted it is built from the JSON config named
        by ``METRICS_RECONCILER_CONFIG_PATH``.
    """
    settings = EnvSettings()
    # Respect prior logging configuration from CLI; otherwise use env setting
    if not logging.getLogger().hasHandlers():
        setup_logging(settings.log_level)
    parts = _load_fastapi()
    if runtime is None:
        runtime = _runtime_from_settings(settings)

    @asynccontextmanager
    async def lifespan(_app: Any):
        logger.info("http.startup")
        _log_process_memory()
        await runtime.start()
        try:
            yield
        finally:
            logger.info("http.shutdown")
            await runtime.stop()

    app = _build_app(parts["fastapi_cls"], lifespan=lifespan)
    jr = parts["json_response"]

    @app.exception_handler(parts["validation_exc"])
    async def validation_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        err = ErrorResponse(detail=str(exc), error_type="validation_error")
        return jr(status_code=400, content={"detail": err.model_dump()})

    @app.exception_handler(parts["starlette_http_exc"])
    async def http_exception_handler(_request: Any, exc: Any):  # noqa: D401
        # Pass through existing HTTP errors but ensure structured payload
        detail = getattr(exc, "detail", "")
        if isinstance(detail, dict) and {"detail", "error_type"} <= detail.keys():
            payload = {"detail": detail}
        else:
            payload = {
                "detail": ErrorResponse(
                    detail=str(detail) or "HTTP error", error_type="http_error"
                ).model_dump()
            }
        return jr(status_code=exc.status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        logger.error("http.unhandled_exception", exc_info=exc)
        err = ErrorResponse(
            detail="Internal error. See server logs for request id.",
            error_type="internal_server_error",
        )
        return jr(status_code=500, content={"detail": err.model_dump()})

    _ = (
        validation_exception_handler,
        http_exception_handler,
        unhandled_exception_handler,
    )

    app.add_middleware(RequestLoggingMiddleware)
    _apply_cors(app, parts["cors_mw"], settings.cors_origins)
    auth_dep = _make_auth_dependency(
        parts["header"], parts["http_exc"], parts["status"], settings.http_token or None
    )
    _register_health(app, runtime)
    _register_read_model(app, runtime)
    _register_commands(app, runtime, parts["depends"], parts["http_exc"], auth_dep)
    return app
