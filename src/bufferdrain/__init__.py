"""Drain buffer volumes of scaled-down stateful log workers."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("bufferdrain")
except PackageNotFoundError:
    # package is not installed
    __version__ = "0.0.0"
