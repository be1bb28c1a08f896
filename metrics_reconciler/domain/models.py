"""Canonical data model shared by the engine, adapters, and presentation.

These Pydantic models represent the metric records, filter predicates, and
upstream result shapes that flow through reconciliation. Wire payloads use
camelCase keys (``createdAt``, ``averageValues``, ``totalPages``); models
accept either the alias or the field name so tests and adapters can build them
directly.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils.timestamps import parse_timestamp

SENTINEL_ID = 0
"""Identity reserved for derived records that are not individually addressable."""

Scalar = Union[bool, int, float, str]


def _require_timestamp(value: Any) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    return parsed


def _optional_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return _require_timestamp(value)


class MetricRecord(BaseModel):
    """Single metric observation.

    Attributes
    ----------
    id: int
        Identity of the record upstream. ``0`` marks a derived record.
    type: str
        Category of the metric (sensor class, e.g. "motion").
    name: str
        Instance or location label.
    payload: Dict[str, Scalar]
        Ordered mapping of payload key to scalar value.
    created_at: datetime
        Observation timestamp (UTC); the authoritative ordering key.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    type: str
    name: str = ""
    payload: Dict[str, Scalar] = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, value: Any) -> datetime:
        return _require_timestamp(value)

    @property
    def is_sentinel(self) -> bool:
        """True for aggregate-derived records."""
        return self.id == SENTINEL_ID


class FilterState(BaseModel):
    """Active type/location/time-range predicate.

    Empty strings are treated as absent. The time window is active only when
    both bounds are present; a single bound disables time filtering entirely.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Optional[str] = None
    name: Optional[str] = None
    from_date: Optional[datetime] = Field(None, alias="fromDate")
    to_date: Optional[datetime] = Field(None, alias="toDate")

    @field_validator("type", "name", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("from_date", "to_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[datetime]:
        return _optional_timestamp(value)

    @property
    def has_time_window(self) -> bool:
        return self.from_date is not None and self.to_date is not None

    def mode_changed(self, other: "FilterState") -> bool:
        """Return True if ``other`` selects a different reconciliation mode."""
        return self.has_time_window != other.has_time_window

    def matches(self, record: MetricRecord) -> bool:
        """Apply the type equality and name substring predicates."""
        if self.type and record.type != self.type:
            return False
        if self.name and self.name not in record.name:
            return False
        return True

    def contains(self, ts: datetime) -> bool:
        """Inclusive window test; always True when the window is disabled."""
        if self.from_date is None or self.to_date is None:
            return True
        return self.from_date <= ts <= self.to_date

    def without_window(self) -> "FilterState":
        """Copy carrying only the type/name predicates."""
        return FilterState(type=self.type, name=self.name)


class DailyAggregate(BaseModel):
    """Server-computed per-day averages for one (type, name) pair."""

    model_config = ConfigDict(populate_by_name=True)

    date: datetime
    type: str
    name: str = ""
    average_values: Dict[str, float] = Field(
        default_factory=dict, alias="averageValues"
    )
    count: int = Field(0, ge=0)

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> datetime:
        return _require_timestamp(value)


class HistoricalPage(BaseModel):
    """One page of the historical bulk read."""

    model_config = ConfigDict(populate_by_name=True)

    items: List[MetricRecord] = Field(default_factory=list)
    page: int = Field(1, ge=1)
    total_pages: int = Field(0, ge=0, alias="totalPages")
    total_count: int = Field(0, ge=0, alias="totalCount")
    page_size: int = Field(20, ge=1, alias="pageSize")


class TypeAggregation(BaseModel):
    """Record count for one metric type."""

    type: str
    count: int = Field(0, ge=0)


class MetricsSummary(BaseModel):
    """Server-side counts matching the active type/name filter."""

    model_config = ConfigDict(populate_by_name=True)

    total_count: int = Field(0, ge=0, alias="totalCount")
    type_aggregations: List[TypeAggregation] = Field(
        default_factory=list, alias="typeAggregations"
    )


class ReconcileMode(str, Enum):
    """Reconciliation regime selected by the filter's time window."""

    LIVE = "live"
    WINDOWED = "windowed"

    @classmethod
    def for_filter(cls, filter_state: FilterState) -> "ReconcileMode":
        return cls.WINDOWED if filter_state.has_time_window else cls.LIVE


Series = Tuple[MetricRecord, ...]
TypeGroups = Dict[str, Series]
