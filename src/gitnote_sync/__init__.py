"""Offline-first sync of a local document store with a GitHub repository."""

__version__ = "0.4.0"
