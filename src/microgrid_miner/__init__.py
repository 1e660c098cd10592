"""Microgrid twin-prime mining client."""

__version__ = "0.3.0"
