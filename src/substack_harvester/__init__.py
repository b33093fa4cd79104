"""substack-harvester: Resilient batch harvester for Substack data."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("substack-harvester")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
