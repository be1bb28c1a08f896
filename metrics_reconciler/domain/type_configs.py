"""Presentation hints per metric type.

The presentation layer picks a chart style from the metric type of each
group in the type grouping index. Unknown types fall back to a plain line
chart with average aggregation.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Visualization(str, Enum):
    LINE = "line"
    BAR = "bar"
    GAUGE = "gauge"
    BINARY = "binary"
    MULTI_SERIES = "multi-series"
    HEATMAP = "heatmap"


class MetricTypeConfig(BaseModel):
    """How to render one metric type.

    Attributes
    ----------
    type: str
        Metric type the config applies to.
    visualization: Visualization
        Chart style.
    unit: Optional[str]
        Display unit for values (e.g., "W").
    aggregation: str
        Aggregation applied when bucketing ("avg", "sum", "max", "min", "count").
    payload_keys: List[str]
        Payload keys plotted, one series per key for multi-series charts.
    """

    type: str
    visualization: Visualization = Visualization.LINE
    unit: Optional[str] = None
    scale: str = "linear"
    aggregation: str = "avg"
    payload_keys: List[str] = Field(default_factory=list)


METRIC_TYPE_CONFIGS: Dict[str, MetricTypeConfig] = {
    "motion": MetricTypeConfig(
        type="motion",
        visualization=Visualization.BINARY,
        unit="",
        aggregation="count",
        payload_keys=["motionDetected"],
    ),
    "energy": MetricTypeConfig(
        type="energy",
        visualization=Visualization.LINE,
        unit="W",
        payload_keys=["energy"],
    ),
    "air_quality": MetricTypeConfig(
        type="air_quality",
        visualization=Visualization.MULTI_SERIES,
        unit="",
        payload_keys=["co2", "pm25", "humidity"],
    ),
}


def get_metric_type_config(metric_type: str) -> MetricTypeConfig:
    """Return the config for ``metric_type`` (case-insensitive) or a default."""
    known = METRIC_TYPE_CONFIGS.get(metric_type.lower())
    if known is not None:
        return known
    return MetricTypeConfig(type=metric_type)
