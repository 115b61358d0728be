"""Skiff - keep deployment environments in sync with your compose sources."""

__version__ = "0.3.0"
