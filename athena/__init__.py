"""Athena: an extensible agent runtime built from plugins, tools and events."""

from .core import Athena

__version__ = "0.1.0"

__all__ = ["Athena", "__version__"]
