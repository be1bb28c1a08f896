"""Shared helpers for the domain model."""

from .timestamps import day_bounds, format_timestamp, parse_timestamp

__all__ = ["day_bounds", "format_timestamp", "parse_timestamp"]
