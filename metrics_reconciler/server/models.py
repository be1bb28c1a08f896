"""HTTP request/response models for the dashboard runtime."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.models import FilterState, MetricRecord, MetricsSummary, ReconcileMode
from ..domain.type_configs import MetricTypeConfig
from ..errors import ErrorInfo


class SeriesResponse(BaseModel):
    """Canonical series as currently published."""

    model_config = ConfigDict(populate_by_name=True)

    mode: ReconcileMode
    count: int
    items: List[MetricRecord] = Field(default_factory=list)


class TypeGroupResponse(BaseModel):
    """One metric type with its presentation config and records."""

    type: str
    config: MetricTypeConfig
    locations: List[str] = Field(default_factory=list)
    items: List[MetricRecord] = Field(default_factory=list)


class GroupsResponse(BaseModel):
    """Per-type slices of the canonical series."""

    location: Optional[str] = None
    groups: List[TypeGroupResponse] = Field(default_factory=list)


class LatestResponse(BaseModel):
    """Most recent matching records, newest first."""

    items: List[MetricRecord] = Field(default_factory=list)


class StatusResponse(BaseModel):
    """Controller diagnostics."""

    version: str
    mode: ReconcileMode
    filter: FilterState
    connected: bool
    buffered: int
    buffer_capacity: int
    last_error: Optional[ErrorInfo] = None
    summary: Optional[MetricsSummary] = None
    type_counts: Dict[str, int] = Field(default_factory=dict)


class AcceptedResponse(BaseModel):
    """Acknowledgement for commands applied asynchronously by the controller."""

    status: str = "accepted"
    mode: ReconcileMode
