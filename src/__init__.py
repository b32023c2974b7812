# src/__init__.py - v1
"""resilientai: resilient AI operations with contextual response caching."""

from resilientai.version import __version__

__all__ = ["__version__"]
