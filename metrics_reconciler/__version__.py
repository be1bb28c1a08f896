"""
Version information for the metrics reconciler.

The package version is read from the installed distribution metadata; a
source checkout falls back to the ``[project]`` table of pyproject.toml.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("metrics-reconciler")
except PackageNotFoundError:
    import tomllib
    from pathlib import Path

    try:
        with open(Path(__file__).parent.parent / "pyproject.toml", "rb") as f:
            __version__ = tomllib.load(f)["project"]["version"]
    except (OSError, KeyError, tomllib.TOMLDecodeError):
        __version__ = "0.0.0-dev"
