"""Pitwall - interactive coding-agent runtime."""

__version__ = "0.1.0"
