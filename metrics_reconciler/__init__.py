"""
Metrics reconciler Python package.

This package hosts the real-time metrics reconciliation engine, the upstream
adapters it consumes, and a thin runtime/HTTP surface. See README.md.
"""

from .__version__ import __version__

__all__ = ["__version__"]
