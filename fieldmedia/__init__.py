"""Offline-resilient photo upload queue and versioned photo annotations."""

__version__ = "0.1.0"
