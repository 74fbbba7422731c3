"""Offline-first synchronization core for Users and Progress entries."""

__version__ = "0.1.0"
