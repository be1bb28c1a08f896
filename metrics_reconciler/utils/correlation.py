"""Fetch correlation ids for structured logging.

The controller tags every upstream fetch it issues (e.g. ``historical#7``)
before awaiting the adapter. The tag lives in a ContextVar, so adapter log
records emitted from inside the fetch task carry the same ``fetch_id``
without threading it through every call signature.
"""

from __future__ import annotations

from contextvars import ContextVar

_fetch_id_var: ContextVar[str] = ContextVar("fetch_id", default="")


def set_fetch_id(fetch_id: str) -> None:
    """Set the correlation id for the current fetch task."""

    _fetch_id_var.set(fetch_id)


def get_fetch_id() -> str:
    """Return the current fetch correlation id, or empty string."""

    return _fetch_id_var.get()
